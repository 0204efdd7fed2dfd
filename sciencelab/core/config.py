from __future__ import annotations

import os
from functools import lru_cache
from dotenv import load_dotenv, find_dotenv

_env_path = find_dotenv(".env") or ".env"
load_dotenv(_env_path, override=False)


class Settings:
    """Central configuration (env driven)."""

    def __init__(self) -> None:
        # Supabase
        raw_url = os.getenv("SUPABASE_URL", "")
        self.supabase_url: str = raw_url.rstrip("/")
        self.supabase_anon_key: str = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY", "")
        self.supabase_service_role_key: str = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or ""
        )
        # Service role key wins when both are set
        self.supabase_key: str = self.supabase_service_role_key or self.supabase_anon_key
        self.supabase_query_timeout: float = float(os.getenv("SUPABASE_QUERY_TIMEOUT", "5"))
        self.auth_whoami_timeout: float = float(os.getenv("AUTH_WHOAMI_TIMEOUT", "5"))
        # Calendar used for streak days
        self.app_timezone: str = os.getenv("APP_TIMEZONE", "UTC")
        # App meta
        self.app_name: str = "Science Lab Backend"
        self.app_version: str = os.getenv("APP_VERSION", "dev")
        self.debug: bool = os.getenv("DEBUG", "False").lower() == "true"
        self.allow_origins: list[str] = [
            o.strip().rstrip("/")
            for o in os.getenv(
                "ALLOW_ORIGINS",
                "http://localhost:5173,http://localhost:8080,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
