"""Application configuration utilities for the warehouse backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  The module
only handles configuration concerns; nothing here talks to the network or to
the local cache.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load any variables defined in a local .env file. The call is idempotent, so
# importing it at module import time keeps the API ergonomic.
load_dotenv()

logger = logging.getLogger(__name__)

# Unset until a macro deployment is configured through WAREHOUSE_SCRIPT_URL.
DEFAULT_SCRIPT_URL = ""
MACRO_URL_PREFIX = "https://script.google.com/"
DEFAULT_AUTHORIZED_USERS = "Mountain,Uri,Simon,George,Barry,Jason,Nick"


class WriteAckMode(str, enum.Enum):
    """How a write request to the remote store is acknowledged."""

    CONFIRMED = "confirmed"
    FIRE_AND_FORGET = "fire_and_forget"


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        script_url: URL of the spreadsheet macro endpoint that persists the
            records.
        database_file: SQLite file used as the durable local cache for the
            record snapshot and the session settings.
        export_dir: Directory receiving generated ``.xlsx`` reports.
        timezone: Civil calendar all dates are normalised to.
        request_timeout: Seconds before an HTTP request to the macro is
            abandoned.
        fetch_retries: Extra attempts made by fetch-all after a failure.
        retry_delay: Fixed pause in seconds between fetch-all attempts.
        refresh_interval: Seconds between background refreshes.
        page_size: Page length of the paged ("all") record view.
        recent_limit: Length of the "most recent" record view.
        write_ack_mode: Whether writes check the macro response.
        rollback_on_failure: Restore the previous local state when a remote
            write fails.
        idle_warning_seconds: Inactivity after which the session warns.
        idle_timeout_seconds: Inactivity after which the session is closed.
        authorized_users: Names allowed to sign in; empty accepts any name.
    """

    project_root: Path
    script_url: str
    database_file: Path
    export_dir: Path
    timezone: str = "Asia/Taipei"
    request_timeout: float = 30.0
    fetch_retries: int = 2
    retry_delay: float = 1.0
    refresh_interval: float = 30.0
    page_size: int = 15
    recent_limit: int = 10
    write_ack_mode: WriteAckMode = WriteAckMode.CONFIRMED
    rollback_on_failure: bool = True
    idle_warning_seconds: float = 540.0
    idle_timeout_seconds: float = 600.0
    authorized_users: tuple[str, ...] = ()

    @property
    def is_remote_configured(self) -> bool:
        """Return ``True`` when :attr:`script_url` points at a macro deployment."""

        url = self.script_url.strip()
        return bool(url) and url.startswith(MACRO_URL_PREFIX)


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.  Malformed numeric
    values are logged and replaced by their defaults.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "WAREHOUSE_DB_FILE",
            project_root / "warehouse_cache.db",
        )
    )
    export_dir = Path(
        getenv_with_default(
            "WAREHOUSE_EXPORT_DIR",
            project_root / "exports",
        )
    )
    script_url = getenv_with_default("WAREHOUSE_SCRIPT_URL", DEFAULT_SCRIPT_URL) or ""

    ack_raw = (getenv_with_default("WAREHOUSE_WRITE_ACK_MODE", "confirmed") or "").strip().lower()
    try:
        write_ack_mode = WriteAckMode(ack_raw)
    except ValueError:
        logger.warning("Unknown WAREHOUSE_WRITE_ACK_MODE %r, using 'confirmed'", ack_raw)
        write_ack_mode = WriteAckMode.CONFIRMED

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        script_url=script_url.strip(),
        database_file=database_file,
        export_dir=export_dir,
        timezone=getenv_with_default("WAREHOUSE_TIMEZONE", "Asia/Taipei") or "Asia/Taipei",
        request_timeout=_getenv_number("WAREHOUSE_REQUEST_TIMEOUT", 30.0),
        fetch_retries=int(_getenv_number("WAREHOUSE_FETCH_RETRIES", 2)),
        retry_delay=_getenv_number("WAREHOUSE_RETRY_DELAY", 1.0),
        refresh_interval=_getenv_number("WAREHOUSE_REFRESH_INTERVAL", 30.0),
        page_size=int(_getenv_number("WAREHOUSE_PAGE_SIZE", 15)),
        recent_limit=int(_getenv_number("WAREHOUSE_RECENT_LIMIT", 10)),
        write_ack_mode=write_ack_mode,
        rollback_on_failure=_getenv_flag("WAREHOUSE_ROLLBACK_ON_FAILURE", True),
        idle_warning_seconds=_getenv_number("WAREHOUSE_IDLE_WARNING", 540.0),
        idle_timeout_seconds=_getenv_number("WAREHOUSE_IDLE_TIMEOUT", 600.0),
        authorized_users=_getenv_list("WAREHOUSE_AUTHORIZED_USERS", DEFAULT_AUTHORIZED_USERS),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform and easy to serialise.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)


def _getenv_number(name: str, default: float) -> float:
    raw = getenv_with_default(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _getenv_flag(name: str, default: bool) -> bool:
    raw = getenv_with_default(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _getenv_list(name: str, default: str) -> tuple[str, ...]:
    raw = getenv_with_default(name, default) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())
