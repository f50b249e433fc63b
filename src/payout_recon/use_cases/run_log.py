"""Per-run progress messages for status polling.

A run's log lines are mirrored into a short-lived in-memory buffer keyed by
run id; the status endpoint drains it. Every read-modify-write of the buffer
holds the store lock, acquired with a bounded wait and always released.
"""

from __future__ import annotations

import logging
import threading
import time

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10.0
MESSAGE_TTL_SECONDS = 150.0


class RunLogStore:
    def __init__(
        self,
        *,
        ttl_seconds: float = MESSAGE_TTL_SECONDS,
        lock_timeout_seconds: float = LOCK_TIMEOUT_SECONDS,
        clock=time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, list[str]]] = {}

    def _expire(self, now: float) -> None:
        stale = [k for k, (ts, _) in self._entries.items() if now - ts > self._ttl]
        for k in stale:
            del self._entries[k]

    def append(self, run_id: str, message: str) -> bool:
        if not self._lock.acquire(timeout=self._lock_timeout):
            logger.error("Run log lock not acquired; dropping message for %s", run_id)
            return False
        try:
            now = self._clock()
            self._expire(now)
            _, messages = self._entries.get(run_id, (now, []))
            messages.append(message)
            self._entries[run_id] = (now, messages)
            return True
        finally:
            self._lock.release()

    def drain(self, run_id: str) -> list[str]:
        """Return and forget every queued message for `run_id`."""

        if not self._lock.acquire(timeout=self._lock_timeout):
            logger.error("Run log lock not acquired; no status for %s", run_id)
            return []
        try:
            self._expire(self._clock())
            _, messages = self._entries.pop(run_id, (0.0, []))
            return messages
        finally:
            self._lock.release()

    def clear(self) -> None:
        if not self._lock.acquire(timeout=self._lock_timeout):
            return
        try:
            self._entries.clear()
        finally:
            self._lock.release()


class RunLogHandler(logging.Handler):
    """Mirror records that carry a `run_id` attribute into a `RunLogStore`."""

    def __init__(self, store: RunLogStore, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.store = store

    def emit(self, record: logging.LogRecord) -> None:
        run_id = getattr(record, "run_id", None)
        if not run_id:
            return
        try:
            self.store.append(run_id, record.getMessage())
        except Exception:  # noqa: BLE001
            self.handleError(record)


# Process-wide store used by the API and the engine's default wiring.
run_log_store = RunLogStore()


def install_run_log_handler(store: RunLogStore = run_log_store, logger_name: str = "src.payout_recon") -> RunLogHandler:
    """Attach a `RunLogHandler` to the package logger once and return it."""

    pkg_logger = logging.getLogger(logger_name)
    for h in pkg_logger.handlers:
        if isinstance(h, RunLogHandler) and h.store is store:
            return h
    handler = RunLogHandler(store)
    pkg_logger.addHandler(handler)
    if pkg_logger.level == logging.NOTSET or pkg_logger.level > logging.INFO:
        pkg_logger.setLevel(logging.INFO)
    return handler
