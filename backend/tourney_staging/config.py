import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite://")
SQL_ECHO = _env_flag("SQL_ECHO")

# Remote staging service (matches, groups, couples, standings live there)
STAGING_API_URL = os.getenv("STAGING_API_URL", "http://localhost:8000/api")
STAGING_API_TOKEN = os.getenv("STAGING_API_TOKEN", "")
STAGING_API_TIMEOUT = float(os.getenv("STAGING_API_TIMEOUT", "10"))

# Live timer
TIMER_STATE_PATH = os.getenv("TIMER_STATE_PATH", ".staging/live_timer.json")
TIMER_TICK_SECONDS = float(os.getenv("TIMER_TICK_SECONDS", "1"))
TIMER_DEFAULT_LIMIT_MINUTES = int(os.getenv("TIMER_DEFAULT_LIMIT_MINUTES", "30"))

# Court board
UPCOMING_WINDOW_MINUTES = int(os.getenv("UPCOMING_WINDOW_MINUTES", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
