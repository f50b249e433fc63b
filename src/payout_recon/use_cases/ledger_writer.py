"""Apply derived rows to the ledger, or undo a partially applied payout.

`apply` sends one batch: the derived rows are inserted below the payout row
and the payout row's amount is zeroed, so a later run cannot match it again.

`rollback` restores the ledger from a snapshot of the rows from the payout
row to the end of the sheet, taken before the payout was processed: rows
inserted below the payout row are deleted and the snapshot is written back
over the same range. Created receipt files are deleted first, best-effort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from src.payout_recon.errors import RollbackFailure, WriteFailure
from src.payout_recon.use_cases.models import ColumnMap, DerivedRow, MatchedPayout, ReceiptAsset

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    def read_rows(self) -> list[list[Any]]: ...

    def insert_rows_after(
        self,
        row_index: int,
        rows: list[list[Any]],
        *,
        anchor_updates: dict[int, Any] | None = None,
    ) -> None: ...

    def delete_rows(self, start_row: int, count: int) -> None: ...

    def write_rows(self, start_row: int, rows: list[list[Any]]) -> None: ...


class FileDeleter(Protocol):
    def delete_file(self, file_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    anchor_row: int
    total_rows: int
    rows: tuple[tuple[Any, ...], ...]


def take_snapshot(all_rows: list[list[Any]], anchor_row: int) -> LedgerSnapshot:
    """Capture rows `anchor_row`..end (1-based; `all_rows[0]` is sheet row 1)."""

    width = max((len(r) for r in all_rows), default=0)
    tail = all_rows[anchor_row - 1 :]
    return LedgerSnapshot(
        anchor_row=anchor_row,
        total_rows=len(all_rows),
        rows=tuple(tuple(list(r) + [""] * (width - len(r))) for r in tail),
    )


class LedgerWriter:
    def __init__(self, ledger: Ledger, files: FileDeleter | None = None) -> None:
        self._ledger = ledger
        self._files = files

    def snapshot(self, anchor_row: int) -> LedgerSnapshot:
        return take_snapshot(self._ledger.read_rows(), anchor_row)

    def apply(self, matched: MatchedPayout, derived: list[DerivedRow], columns: ColumnMap) -> int:
        """Insert `derived` below the payout row and zero its amount; return rows inserted."""

        values = [d.to_values(matched.row.values, columns) for d in derived]
        try:
            self._ledger.insert_rows_after(
                matched.row.row_index,
                values,
                anchor_updates={columns.amount: 0},
            )
        except Exception as e:  # noqa: BLE001
            raise WriteFailure(f"Failed to write rows for payout {matched.payout.id}: {e}") from e
        logger.info(
            "Inserted %d row(s) after row %d for payout %s",
            len(values),
            matched.row.row_index,
            matched.payout.id,
        )
        return len(values)

    def delete_files(self, assets: list[ReceiptAsset]) -> None:
        if self._files is None:
            return
        for asset in assets:
            try:
                self._files.delete_file(asset.file_id)
                logger.info("Deleted file: %s", asset.filename)
            except Exception as e:  # noqa: BLE001
                logger.error("Failed to delete file %s: %s", asset.file_id, e)

    def rollback(self, snapshot: LedgerSnapshot | None, assets: list[ReceiptAsset]) -> None:
        self.delete_files(assets)
        if snapshot is None:
            return

        try:
            current = self._ledger.read_rows()
            extra = len(current) - snapshot.total_rows
            if extra > 0:
                self._ledger.delete_rows(snapshot.anchor_row + 1, extra)
                logger.info("Deleted %d inserted row(s) after row %d", extra, snapshot.anchor_row)
            self._ledger.write_rows(snapshot.anchor_row, [list(r) for r in snapshot.rows])
        except Exception as e:  # noqa: BLE001
            raise RollbackFailure(
                f"Rollback from row {snapshot.anchor_row} failed; the ledger may be inconsistent: {e}"
            ) from e
        logger.info("Restored %d row(s) from row %d", len(snapshot.rows), snapshot.anchor_row)
