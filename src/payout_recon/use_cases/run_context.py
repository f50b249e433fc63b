"""Run-scoped state for one reconciliation run.

Everything a run accumulates (URLs accessed, files added, per-payout
outcomes, the fatal error if any) lives on one `ReconciliationRun` that is
threaded through the engine and handed to the summary report.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.payout_recon.use_cases.models import PayoutOutcome

logger = logging.getLogger("src.payout_recon.run")


@dataclass(frozen=True, slots=True)
class FileAdded:
    transaction_id: str
    file_url: str


@dataclass(slots=True)
class ReconciliationRun:
    start: datetime | None = None
    end: datetime | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    urls_accessed: list[str] = field(default_factory=list)
    files_added: list[FileAdded] = field(default_factory=list)
    outcomes: list[PayoutOutcome] = field(default_factory=list)
    fatal_error: str | None = None
    summary_sent: bool = False
    # Fan-out workers record URLs concurrently.
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def log(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(logger, {"run_id": self.run_id})

    def record_url(self, url: str) -> None:
        with self._lock:
            self.urls_accessed.append(url)
        self.log.info("Accessed URL: %s", url)

    def record_file(self, transaction_id: str, file_url: str) -> None:
        with self._lock:
            self.files_added.append(FileAdded(transaction_id=transaction_id, file_url=file_url))

    @property
    def reconciled(self) -> list[PayoutOutcome]:
        return [o for o in self.outcomes if o.status == "reconciled"]

    @property
    def failed(self) -> list[PayoutOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def ok(self) -> bool:
        return self.fatal_error is None and not self.failed
