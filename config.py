import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        encryption_key: str,
        push_webhook_url: Optional[str],
        push_timeout_secs: float,
        recurring_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.encryption_key = encryption_key
        self.push_webhook_url = push_webhook_url
        self.push_timeout_secs = push_timeout_secs
        self.recurring_interval_minutes = recurring_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Jakarta")
    encryption_key = os.getenv(
        "LEDGER_ENCRYPTION_KEY", "default_key_must_be_32_chars_long!"
    )
    push_webhook_url = os.getenv("LEDGER_PUSH_WEBHOOK_URL") or None
    push_timeout_secs = float(os.getenv("LEDGER_PUSH_TIMEOUT_SECS", "10"))
    recurring_interval_minutes = int(
        os.getenv("LEDGER_RECURRING_INTERVAL_MINUTES", "1")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        encryption_key=encryption_key,
        push_webhook_url=push_webhook_url,
        push_timeout_secs=push_timeout_secs,
        recurring_interval_minutes=recurring_interval_minutes,
    )
