from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from src.payout_recon.errors import RollbackFailure, WriteFailure
from src.payout_recon.use_cases.ledger_scanner import resolve_columns
from src.payout_recon.use_cases.ledger_writer import LedgerWriter, take_snapshot
from src.payout_recon.use_cases.models import DerivedRow, LedgerRow, MatchedPayout, PayoutRecord, ReceiptAsset

HEADER = ["Date", "Description", "Amount", "ReceiptURL", "Category", "Note"]


class _MemoryLedger:
    def __init__(self, rows: list[list]) -> None:
        self.rows = [list(r) for r in rows]
        self.fail_after_insert = False
        self.fail_write = False

    def read_rows(self) -> list[list]:
        return [list(r) for r in self.rows]

    def insert_rows_after(self, row_index, rows, *, anchor_updates=None) -> None:
        self.rows[row_index:row_index] = [list(r) for r in rows]
        for col, value in (anchor_updates or {}).items():
            self.rows[row_index - 1][col] = value
        if self.fail_after_insert:
            raise RuntimeError("connection reset mid-batch")

    def delete_rows(self, start_row, count) -> None:
        del self.rows[start_row - 1 : start_row - 1 + count]

    def write_rows(self, start_row, rows) -> None:
        if self.fail_write:
            raise RuntimeError("sheet is protected")
        for i, r in enumerate(rows):
            self.rows[start_row - 1 + i] = list(r)


class _Files:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.deleted: list[str] = []
        self._failing = failing or set()

    def delete_file(self, file_id: str) -> None:
        if file_id in self._failing:
            raise RuntimeError("drive unavailable")
        self.deleted.append(file_id)


def _sheet() -> list[list]:
    return [
        HEADER,
        [datetime(2024, 2, 29), "Coffee", -4.25, "", "Food", "=1+1"],
        [datetime(2024, 3, 1), "Orig Co Name:stripe deposit", 299.0, "", "Transfer", "keep"],
        [datetime(2024, 3, 2), "Rent", -1000, "", "Housing", ""],
    ]


def _matched() -> MatchedPayout:
    row = LedgerRow(
        row_index=3,
        date=date(2024, 3, 1),
        description="Orig Co Name:stripe deposit",
        amount=Decimal("299.00"),
        values=tuple(_sheet()[2]),
        category="Transfer",
    )
    return MatchedPayout(row=row, payout=PayoutRecord(id="po_1", arrival_epoch=0, amount_minor_units=29900))


def _derived(amount: str, kind: str = "transaction") -> DerivedRow:
    return DerivedRow(
        kind=kind,
        date=datetime(2024, 2, 28),
        description=f"{kind} {amount}",
        amount=Decimal(amount),
        receipt_url="https://drive.test/r",
        institution="Stripe",
        account_number="ba_1",
        account_id="",
        category="Transfer",
        transaction_id="txn_1" if kind == "transaction" else "",
    )


def test_apply_inserts_below_anchor_and_zeroes_it() -> None:
    ledger = _MemoryLedger(_sheet())
    writer = LedgerWriter(ledger)
    columns = resolve_columns(HEADER)

    inserted = writer.apply(_matched(), [_derived("300.00"), _derived("-1.00", "fee")], columns)

    assert inserted == 2
    assert ledger.rows[2][2] == 0
    assert ledger.rows[3][:3] == [datetime(2024, 2, 28), "transaction 300.00", Decimal("300.00")]
    assert ledger.rows[4][1] == "fee -1.00"
    # unknown columns are copied from the payout row
    assert ledger.rows[3][5] == "keep"
    assert ledger.rows[5][1] == "Rent"


def test_apply_wraps_ledger_errors() -> None:
    ledger = _MemoryLedger(_sheet())
    ledger.fail_after_insert = True

    with pytest.raises(WriteFailure, match="po_1"):
        LedgerWriter(ledger).apply(_matched(), [_derived("299.00")], resolve_columns(HEADER))


def test_rollback_restores_the_affected_range_exactly() -> None:
    original = _sheet()
    ledger = _MemoryLedger(original)
    files = _Files(failing={"f2"})
    writer = LedgerWriter(ledger, files)
    snapshot = writer.snapshot(3)

    ledger.fail_after_insert = True
    with pytest.raises(WriteFailure):
        writer.apply(_matched(), [_derived("300.00"), _derived("-1.00", "fee")], resolve_columns(HEADER))
    assert len(ledger.rows) == 6

    assets = [
        ReceiptAsset(source_url="u1", destination_url="d1", file_id="f1", filename="a.pdf", mime_type="application/pdf"),
        ReceiptAsset(source_url="u2", destination_url="d2", file_id="f2", filename="b.pdf", mime_type="application/pdf"),
    ]
    writer.rollback(snapshot, assets)

    assert ledger.rows == original
    # a failing delete does not stop the others
    assert files.deleted == ["f1"]


def test_rollback_without_snapshot_only_deletes_files() -> None:
    ledger = _MemoryLedger(_sheet())
    files = _Files()

    LedgerWriter(ledger, files).rollback(
        None,
        [ReceiptAsset(source_url="u", destination_url="d", file_id="f9", filename="x", mime_type="image/png")],
    )

    assert files.deleted == ["f9"]
    assert ledger.rows == _sheet()


def test_failed_rollback_raises_rollback_failure() -> None:
    ledger = _MemoryLedger(_sheet())
    writer = LedgerWriter(ledger)
    snapshot = writer.snapshot(3)
    ledger.fail_write = True

    with pytest.raises(RollbackFailure, match="row 3"):
        writer.rollback(snapshot, [])


def test_take_snapshot_pads_rows_to_sheet_width() -> None:
    snap = take_snapshot([["A", "B", "C"], ["x"], ["y", "z"]], 2)

    assert snap.anchor_row == 2
    assert snap.total_rows == 3
    assert snap.rows == (("x", "", ""), ("y", "z", ""))
