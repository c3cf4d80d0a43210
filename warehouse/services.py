"""High-level application services orchestrating the warehouse backend."""
from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from . import aggregation, dates, pagination, report, suggestions
from .config import AppConfig
from .database import FILTER_STATE_KEY, LAST_SYNC_KEY, SQLiteRepository
from .filters import filter_records
from .models import (
    AggregationScope,
    BatchOutcome,
    DashboardSummary,
    FilterState,
    KindScope,
    LoginResult,
    MutationOutcome,
    Transaction,
)
from .mutations import MutationCoordinator
from .remote_client import RemoteClient
from .session import IdleStatus, IdleWatchdog, SessionState, update_filters
from .store import RecordStore

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS = "Please choose a user and enter the password."
UNKNOWN_USER = "This user is not allowed to sign in."


class WarehouseService:
    """Coordinates the session, the record store, the views and the writes."""

    def __init__(
        self,
        config: AppConfig,
        repository: SQLiteRepository,
        client: RemoteClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._repository = repository
        self._client = client
        self._store = RecordStore(repository)
        self._session = SessionState()
        self._watchdog = IdleWatchdog(config.idle_warning_seconds, config.idle_timeout_seconds, clock)
        self._refresh_lock = threading.Lock()
        self._coordinator = MutationCoordinator(
            config,
            self._store,
            client,
            current_user=lambda: self._session.user,
            reconcile=self.refresh,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Restore the cached snapshot and the persisted view selections.

        The signed-in user is never restored: every process starts signed out.
        """

        self._store.load_cached()
        filters = FilterState()
        raw_filters = self._repository.get_setting(FILTER_STATE_KEY)
        if raw_filters:
            try:
                filters = FilterState.from_dict(json.loads(raw_filters))
            except (TypeError, ValueError):
                logger.warning("Discarding unreadable cached filter state")
        self._session = SessionState(filters=filters)
        self._watchdog.touch()

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def current_user(self) -> Optional[str]:
        return self._session.user

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def last_sync_at(self) -> Optional[str]:
        return self._repository.get_setting(LAST_SYNC_KEY)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    def login(self, username: str, password: str) -> LoginResult:
        username = (username or "").strip()
        if not username or not password:
            return LoginResult(authorized=False, message=MISSING_CREDENTIALS)
        allowed = self._config.authorized_users
        if allowed and username not in allowed:
            logger.info("Login refused for unlisted user %s", username)
            return LoginResult(authorized=False, message=UNKNOWN_USER)

        result = self._client.login(username, password)
        if not result.authorized:
            logger.info("Login rejected for %s", username)
            return result

        self._session = SessionState(user=username, filters=self._session.filters)
        self._watchdog.touch()
        logger.info("%s signed in", username)
        self.refresh()
        return result

    def logout(self) -> None:
        """Tear the session down and forget everything cached for it."""

        if self._session.user:
            logger.info("%s signed out", self._session.user)
        self._session = SessionState()
        self._store.clear()
        self._repository.clear_session()

    def touch(self) -> IdleStatus:
        self._watchdog.touch()
        return self._watchdog.status()

    def idle_status(self) -> IdleStatus:
        """Current idle state; an expired session is logged out on the spot."""

        status = self._watchdog.status()
        if status.state == "expired" and self.is_authenticated:
            logger.info("Idle timeout reached, closing the session")
            self.logout()
        return status

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------
    @property
    def filters(self) -> FilterState:
        return self._session.filters

    def update_filters(self, changes: dict[str, Any]) -> FilterState:
        filters = update_filters(self._session.filters, changes)
        self._session = SessionState(user=self._session.user, filters=filters)
        self._repository.set_setting(FILTER_STATE_KEY, json.dumps(filters.to_dict()))
        return filters

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------
    def refresh(self, cancel: Optional[threading.Event] = None) -> int:
        """Refetch every record and merge it into the store.

        Returns the number of records held afterwards.  An empty fetch result
        cannot be told apart from a failed fetch, so it never wipes a
        non-empty local snapshot.
        """

        if not self.is_authenticated:
            return 0
        with self._refresh_lock:
            since = self._store.begin_refresh()
            remote = self._client.fetch_all(cancel)
            if not remote and len(self._store):
                logger.warning("Fetch-all returned no records; keeping %d cached records", len(self._store))
                return len(self._store)
            merged = self._store.reconcile(remote, since)
            self._repository.set_setting(LAST_SYNC_KEY, dates.now(self._config.timezone).isoformat(timespec="seconds"))
            logger.info("Refreshed %d records", len(merged))
            return len(merged)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def save(self, tx: Transaction) -> MutationOutcome:
        self._watchdog.touch()
        return self._coordinator.upsert(tx)

    def save_batch(self, rows: Iterable[Transaction]) -> BatchOutcome:
        self._watchdog.touch()
        return self._coordinator.save_batch(rows)

    def delete(self, record_id: str) -> MutationOutcome:
        self._watchdog.touch()
        return self._coordinator.delete(record_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def filtered_records(self, filters: Optional[FilterState] = None) -> list[Transaction]:
        return filter_records(self._store.snapshot(), filters or self._session.filters)

    def records_view(self, filters: Optional[FilterState] = None) -> dict[str, object]:
        """Filtered records plus the display window for the current page."""

        filters = filters or self._session.filters
        filtered = self.filtered_records(filters)
        pages = pagination.total_pages(len(filtered), self._config.page_size)
        page = pagination.clamp_page(filters.current_page, pages)
        window = pagination.paginate(
            filtered,
            filters.view_scope,
            page,
            page_size=self._config.page_size,
            recent_limit=self._config.recent_limit,
        )
        return {
            "records": window,
            "total": len(filtered),
            "page": page,
            "total_pages": pages,
            "view_scope": filters.view_scope,
            "available_years": aggregation.available_years(
                self._store.snapshot(), dates.today(self._config.timezone)
            ),
        }

    def dashboard(self, year: Optional[str] = None, kinds: KindScope = KindScope.INBOUND) -> dict[str, object]:
        current_date = dates.today(self._config.timezone)
        year = year or current_date[:4]
        records = self._store.snapshot()
        scope = AggregationScope(year=year, kinds=kinds)
        summary: DashboardSummary = aggregation.dashboard_summary(records, year, current_date, kinds)
        return {
            "summary": summary,
            "trend": aggregation.monthly_trend(records, scope),
            "categories": aggregation.category_distribution(records, scope),
            "available_years": aggregation.available_years(records, current_date, include_upcoming=True),
        }

    def repair_ranking(self, scope: AggregationScope):
        return aggregation.repair_ranking(self._store.snapshot(), scope)

    def material_suggestions(self, fragment: str) -> list[str]:
        return suggestions.material_suggestions(self._store.snapshot(), fragment)

    def material_details(self, name: str) -> Optional[dict[str, str]]:
        return suggestions.material_details(self._store.snapshot(), name)

    def export(self, filename: str) -> Optional[Path]:
        """Export the records matching the current filters."""

        return report.export_report(
            self.filtered_records(),
            filename,
            self._config.export_dir,
            dates.today(self._config.timezone),
        )
