import os

import uvicorn

from sciencelab.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    port = int(os.environ.get("PORT", 8000))
    dev = os.environ.get("ENV", "dev") == "dev"

    uvicorn.run(
        "sciencelab.main:app",
        host="127.0.0.1" if dev else "0.0.0.0",
        port=port,
        reload=dev,
        log_level="debug" if settings.debug else "info",
    )
