import sys
import os

# Ensure repo root on sys.path for imports like `sciencelab...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Settings are read once; keep tests independent of a developer's .env
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("APP_TIMEZONE", "UTC")
