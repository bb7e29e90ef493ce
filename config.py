import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        identity_secret: str,
        identity_max_age_secs: int,
        db_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.db_timeout_secs = db_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    identity_secret = os.getenv(
        "LEDGER_IDENTITY_SECRET",
        "5b0c1f9e7a2d4c68b3e1a9f04d7c2e6b8a1f3d5c7e9b0a2c4d6f8e1a3b5c7d9f",
    )
    identity_max_age_secs = int(os.getenv("LEDGER_IDENTITY_MAX_AGE_SECS", "7200"))
    db_timeout_secs = float(os.getenv("LEDGER_DB_TIMEOUT_SECS", "5"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        db_timeout_secs=db_timeout_secs,
        log_level=log_level,
    )
