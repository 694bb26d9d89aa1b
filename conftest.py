"""Root test configuration.

Environment defaults are set before any project module is imported, because
settings, the engine and the rate limiter are built at import time.
"""

import os

from dotenv import load_dotenv

# Optional overrides, e.g. TEST_DATABASE_URL pointing at a local Postgres
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the env vars above
get_settings.cache_clear()
