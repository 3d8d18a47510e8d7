"""Application configuration.

Environment variables override all defaults.
The facility runs on Hong Kong time (UTC+8); "today" for the daily
medication workflow is always the facility's local date, never the server's.
"""

import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List


# Load .env for local development (safe no-op if not installed)
try:
    from dotenv import load_dotenv  # type: ignore

    _BACKEND_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)
except Exception:
    pass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./carehome.db")

    # Facility clock (UTC+8 by default)
    FACILITY_UTC_OFFSET_HOURS: int = int(os.getenv("FACILITY_UTC_OFFSET_HOURS", "8"))

    # Daily occurrence generation
    GENERATE_ON_STARTUP: bool = _env_bool("GENERATE_ON_STARTUP", "true")
    GENERATION_CHECK_INTERVAL_SECONDS: int = int(os.getenv("GENERATION_CHECK_INTERVAL_SECONDS", "900"))
    BATCH_GENERATION_MAX_DAYS: int = int(os.getenv("BATCH_GENERATION_MAX_DAYS", "31"))

    # CORS (specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = [
        o.strip()
        for o in os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if o.strip()
    ]

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    @classmethod
    def facility_tz(cls) -> timezone:
        return timezone(timedelta(hours=cls.FACILITY_UTC_OFFSET_HOURS))

    @classmethod
    def facility_now(cls) -> datetime:
        """Current wall-clock time at the facility (timezone-aware)."""
        return datetime.now(cls.facility_tz())

    @classmethod
    def facility_today(cls) -> date:
        return cls.facility_now().date()


settings = Settings()
