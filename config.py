import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

DEFAULT_TEMPLATE_NAME = "Default"

# (category, budget_amount, rollover_enabled)
DEFAULT_TEMPLATE_CATEGORIES: tuple[tuple[str, str, bool], ...] = (
    ("Food", "500", True),
    ("Transportation", "300", False),
    ("Entertainment", "200", True),
    ("Shopping", "400", False),
    ("Bills", "800", False),
    ("Healthcare", "150", True),
)


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        batch_chunk_size: int,
        default_owner: Optional[str],
        scheduler_enabled: bool,
        recurring_run_at: tuple[int, int],
        default_template_categories: tuple[tuple[str, str, bool], ...],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.batch_chunk_size = batch_chunk_size
        self.default_owner = default_owner
        self.scheduler_enabled = scheduler_enabled
        self.recurring_run_at = recurring_run_at
        self.default_template_categories = default_template_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDSMART_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_run_at(raw: str) -> tuple[int, int]:
    hour, _, minute = raw.partition(":")
    return int(hour), int(minute or 0)


def _load_default_template() -> tuple[tuple[str, str, bool], ...]:
    raw = os.getenv("SPENDSMART_DEFAULT_TEMPLATE_JSON")
    if not raw:
        return DEFAULT_TEMPLATE_CATEGORIES
    entries = json.loads(raw)
    return tuple(
        (
            str(entry["category"]),
            str(entry["budget_amount"]),
            bool(entry.get("rollover_enabled", False)),
        )
        for entry in entries
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendsmart.db"
    database_url = os.getenv("SPENDSMART_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDSMART_TIMEZONE", "Europe/Berlin")
    batch_chunk_size = int(os.getenv("SPENDSMART_BATCH_CHUNK_SIZE", "25"))
    default_owner = os.getenv("SPENDSMART_DEFAULT_OWNER") or None
    return Settings(
        database_url=database_url,
        timezone=timezone,
        batch_chunk_size=batch_chunk_size,
        default_owner=default_owner,
        scheduler_enabled=_env_flag("SPENDSMART_SCHEDULER_ENABLED", True),
        recurring_run_at=_parse_run_at(os.getenv("SPENDSMART_RECURRING_RUN_AT", "03:15")),
        default_template_categories=_load_default_template(),
    )
