import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env file only in development environment
if os.getenv("ENVIRONMENT", "development") == "development":
    load_dotenv()  # Load environment variables from .env file


def _int_env(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}; using default {default}")
        return default


def _float_env(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}; using default {default}")
        return default


# Database Configuration
# DATABASE_URL takes precedence (e.g. sqlite:///analytics.db for local runs)
DATABASE_URL = os.getenv("DATABASE_URL")
DB_HOST = os.getenv("DB_HOST")
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_PORT = os.getenv("DB_PORT")

# API Keys
DEFILLAMA_API_KEY = os.getenv("DEFILLAMA_API_KEY")

# Provider rate limits (requests per trailing window)
GECKOTERMINAL_RATE_LIMIT = _int_env("GECKOTERMINAL_RATE_LIMIT", 30)
GECKOTERMINAL_WINDOW_SECONDS = _float_env("GECKOTERMINAL_WINDOW_SECONDS", 60.0)
DEFILLAMA_RATE_LIMIT = _int_env("DEFILLAMA_RATE_LIMIT", 100)
DEFILLAMA_WINDOW_SECONDS = _float_env("DEFILLAMA_WINDOW_SECONDS", 3600.0)

# HTTP timeouts
HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)
HTTP_HARD_TIMEOUT_SECONDS = _float_env("HTTP_HARD_TIMEOUT_SECONDS", 30.0)

# Collection
DELAY_BETWEEN_POOLS_SECONDS = _float_env("DELAY_BETWEEN_POOLS_SECONDS", 2.0)
BACKFILL_TARGET_DAYS = _int_env("BACKFILL_TARGET_DAYS", 180)
BACKFILL_MAX_RETRIES = _int_env("BACKFILL_MAX_RETRIES", 3)
BACKFILL_RETRY_BASE_SECONDS = _float_env("BACKFILL_RETRY_BASE_SECONDS", 1.0)

# Scheduling
TIER3_POOL_LIMIT = _int_env("TIER3_POOL_LIMIT", 50)
TIER3_MIN_TVL_USD = _float_env("TIER3_MIN_TVL_USD", 1_000_000.0)
ANALYTICS_FRESHNESS_HOURS = _float_env("ANALYTICS_FRESHNESS_HOURS", 24.0)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
