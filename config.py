import os
from functools import lru_cache
from pathlib import Path


DEFAULT_EXCLUDED_NOTE_PATTERNS = "opening balance,initial balance,rollover"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        excluded_note_patterns: tuple[str, ...],
        log_level: str,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.excluded_note_patterns = excluded_note_patterns
        self.log_level = log_level
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CASHBACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_patterns(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cashback.db"
    database_url = os.getenv("CASHBACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CASHBACK_TIMEZONE", "Asia/Ho_Chi_Minh")
    excluded_note_patterns = _split_patterns(
        os.getenv("CASHBACK_EXCLUDED_NOTE_PATTERNS", DEFAULT_EXCLUDED_NOTE_PATTERNS)
    )
    log_level = os.getenv("CASHBACK_LOG_LEVEL", "INFO").upper()
    scheduler_enabled = os.getenv("CASHBACK_SCHEDULER_ENABLED", "1") not in (
        "0",
        "false",
        "no",
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        excluded_note_patterns=excluded_note_patterns,
        log_level=log_level,
        scheduler_enabled=scheduler_enabled,
    )
