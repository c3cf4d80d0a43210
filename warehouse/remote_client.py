"""HTTP client for the spreadsheet macro endpoint."""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Optional

import requests

from .config import AppConfig, WriteAckMode
from .models import LoginResult, Transaction, TransactionKind
from .sync_adapter import (
    build_delete_payload,
    build_login_payload,
    build_upsert_payload,
    records_from_wire,
)

logger = logging.getLogger(__name__)

CONNECTIVITY_MESSAGE = "Unable to reach the remote store, please try again later."
AUTH_FAILED_MESSAGE = "Password verification failed, please try again."


class FetchCancelled(Exception):
    """Raised when a caller cancels an in-flight fetch-all."""


class RemoteClient:
    """Talk to the macro deployment configured in :class:`AppConfig`.

    Every method converts transport problems into the degraded results the
    rest of the backend expects: an empty record list for reads, ``False``
    for writes and an unauthorised :class:`LoginResult` for logins.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def is_configured(self) -> bool:
        return self._config.is_remote_configured

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def fetch_all(self, cancel: Optional[threading.Event] = None) -> list[Transaction]:
        """Return every record held by the remote store.

        Failed attempts are retried ``fetch_retries`` times with a fixed
        ``retry_delay`` pause.  When the budget is spent the method returns an
        empty list, so callers cannot tell an empty store from a failed fetch.
        Setting ``cancel`` aborts the fetch with :class:`FetchCancelled`.
        """

        if not self._config.script_url:
            return []

        attempts = max(0, self._config.fetch_retries) + 1
        for attempt in range(attempts):
            if cancel is not None and cancel.is_set():
                raise FetchCancelled("fetch-all cancelled")
            try:
                response = requests.get(
                    self._config.script_url,
                    params={"action": "fetch", "_": int(time.time() * 1000)},
                    timeout=self._config.request_timeout,
                )
                response.raise_for_status()
                payload = response.json()
            except (requests.RequestException, ValueError) as exc:
                if attempt + 1 >= attempts:
                    logger.warning("Fetch-all failed after %d attempts: %s", attempts, exc)
                    return []
                logger.info("Fetch-all attempt %d failed (%s), retrying", attempt + 1, exc)
                self._pause(cancel)
                continue
            return records_from_wire(payload, self._config.timezone)
        return []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def upsert(self, tx: Transaction, action: str) -> bool:
        return self._post(build_upsert_payload(tx, action, self._config.timezone))

    def delete(self, record_id: str, kind: Optional[TransactionKind] = None) -> bool:
        return self._post(build_delete_payload(record_id, kind))

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def login(self, username: str, password: str) -> LoginResult:
        if not self._config.script_url:
            return LoginResult(authorized=False, message=CONNECTIVITY_MESSAGE, network_error=True)
        try:
            response = requests.post(
                self._config.script_url,
                data=json.dumps(build_login_payload(username, password)),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self._config.request_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Login request failed: %s", exc)
            return LoginResult(authorized=False, message=CONNECTIVITY_MESSAGE, network_error=True)

        if isinstance(body, dict) and body.get("authorized") is True:
            return LoginResult(authorized=True)
        message = body.get("message") if isinstance(body, dict) else None
        return LoginResult(authorized=False, message=message or AUTH_FAILED_MESSAGE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _post(self, payload: dict[str, Any]) -> bool:
        if not self._config.script_url:
            return False
        try:
            response = requests.post(
                self._config.script_url,
                data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self._config.request_timeout,
            )
            if self._config.write_ack_mode is WriteAckMode.FIRE_AND_FORGET:
                return True
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Remote %s for %s failed: %s", payload.get("action"), payload.get("id"), exc)
            return False

        if isinstance(body, dict) and body.get("result") == "ok":
            return True
        logger.warning(
            "Remote %s for %s rejected: %s",
            payload.get("action"),
            payload.get("id"),
            body.get("message") if isinstance(body, dict) else body,
        )
        return False

    def _pause(self, cancel: Optional[threading.Event]) -> None:
        delay = max(0.0, self._config.retry_delay)
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise FetchCancelled("fetch-all cancelled")


__all__ = ["AUTH_FAILED_MESSAGE", "CONNECTIVITY_MESSAGE", "FetchCancelled", "RemoteClient"]
