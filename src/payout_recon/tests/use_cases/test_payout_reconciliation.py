from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from src.payout_recon.config.settings import ReconciliationSettings
from src.payout_recon.errors import UpstreamError
from src.payout_recon.integrations.drive_receipt_store import StoredFile
from src.payout_recon.integrations.stripe_client import FetchedDocument
from src.payout_recon.use_cases.models import BalanceTransaction, ChargeRecord, FeeDetail, PayoutRecord
from src.payout_recon.use_cases.payout_reconciliation import PayoutReconciliationEngine

PREFIX = "Orig Co Name:stripe Orig ID:x8598"
HEADER = [
    "Date",
    "Description",
    "Amount",
    "ReceiptURL",
    "Institution",
    "Account #",
    "Account ID",
    "Category",
    "Transaction ID",
]
RECEIPT = "https://pay.stripe.com/receipts/r1"
RECEIPT_2 = "https://pay.stripe.com/receipts/r2"


def _epoch(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


def _sheet() -> list[list]:
    return [
        list(HEADER),
        [datetime(2024, 3, 1), f"{PREFIX} 0301", 498.5, "", "Chase", "1234", "acc1", "Transfer", "t-100"],
        [datetime(2024, 3, 1), "Coffee", -4.25, "", "Chase", "1234", "acc1", "Food", "t-101"],
        [datetime(2024, 3, 2), f"{PREFIX} 0302", 500.0, "", "Chase", "1234", "acc1", "Transfer", "t-102"],
        [datetime(2024, 3, 3), "Rent", -1000, "", "Chase", "1234", "acc1", "Housing", "t-103"],
    ]


class _MemoryLedger:
    def __init__(self, rows: list[list]) -> None:
        self.rows = [list(r) for r in rows]
        self.mutations: list[str] = []
        self.fail_restore = False
        self.failing_inserts = 0

    def read_rows(self) -> list[list]:
        return [list(r) for r in self.rows]

    def insert_rows_after(self, row_index, rows, *, anchor_updates=None) -> None:
        self.mutations.append("insert")
        if self.failing_inserts:
            self.failing_inserts -= 1
            raise RuntimeError("quota exceeded")
        self.rows[row_index:row_index] = [list(r) for r in rows]
        for col, value in (anchor_updates or {}).items():
            self.rows[row_index - 1][col] = value

    def delete_rows(self, start_row, count) -> None:
        self.mutations.append("delete")
        del self.rows[start_row - 1 : start_row - 1 + count]

    def write_rows(self, start_row, rows) -> None:
        self.mutations.append("write")
        if self.fail_restore:
            raise RuntimeError("sheet is protected")
        for i, r in enumerate(rows):
            self.rows[start_row - 1 + i] = list(r)


def _tx(tx_id, amount, *, source, fees=(), status="available", category="charge") -> BalanceTransaction:
    return BalanceTransaction(
        id=tx_id,
        amount_minor_units=amount,
        status=status,
        source=source,
        reporting_category=category,
        type=category,
        description=f"desc {tx_id}",
        created_epoch=_epoch(2024, 2, 28, 12),
        fee_details=tuple(fees),
    )


class _StubStripe:
    def __init__(self) -> None:
        self.payouts = [
            PayoutRecord(id="po_1", arrival_epoch=_epoch(2024, 3, 1), amount_minor_units=49850, destination="ba_1"),
            PayoutRecord(id="po_2", arrival_epoch=_epoch(2024, 3, 2), amount_minor_units=50000, destination="ba_1"),
        ]
        fee = FeeDetail(type="stripe_fee", amount_minor_units=150, description="Stripe processing fees")
        self.transactions = {
            "po_1": [
                _tx("txn_a", 30000, source="ch_1", fees=[fee]),
                _tx("txn_b", 20000, source="ch_2"),
                _tx("txn_pending", 7777, source="ch_3", status="pending"),
                _tx("txn_po1", -49850, source="po_1", category="payout"),
            ],
            # 500.00 - 1.50 does not add up to the 500.00 deposit
            "po_2": [_tx("txn_c", 50000, source="ch_4", fees=[fee])],
        }
        self.charges = {
            "ch_1": ChargeRecord(id="ch_1", receipt_url=RECEIPT, customer_name="Ada"),
            "ch_2": ChargeRecord(id="ch_2", receipt_url=RECEIPT, customer_name=None),
            "ch_4": ChargeRecord(id="ch_4", receipt_url=RECEIPT_2, customer_name="Bob"),
        }
        self.charge_requests: list[list[str]] = []
        self.fail_listing = False

    def list_payouts(self, *, start=None, end=None, record_url=None):
        if record_url:
            record_url("https://api.stripe.com/v1/payouts?limit=100")
        if self.fail_listing:
            raise UpstreamError("Stripe request failed", url="https://api.stripe.com/v1/payouts", status_code=500)
        return list(self.payouts)

    def list_balance_transactions_for_payouts(self, payout_ids, *, record_url=None):
        return {pid: list(self.transactions.get(pid, [])) for pid in payout_ids}

    def get_charges(self, charge_ids, *, record_url=None):
        ids = list(charge_ids)
        self.charge_requests.append(ids)
        return {c: self.charges[c] for c in ids if c in self.charges}

    def fetch_documents(self, urls, *, record_url=None):
        out = []
        for u in urls:
            if record_url:
                record_url(u)
            out.append(FetchedDocument(url=u, status_code=200, mime_type="application/pdf", content=b"%PDF"))
        return out


class _StubStore:
    def __init__(self) -> None:
        self.saved: list[str] = []
        self.deleted: list[str] = []

    def save_bytes(self, content, *, mime_type, filename):
        self.saved.append(filename)
        n = len(self.saved)
        return StoredFile(file_id=f"file{n}", url=f"https://drive.test/file{n}")

    def save_html_as_pdf(self, html, *, filename):
        return self.save_bytes(html.encode(), mime_type="application/pdf", filename=filename)

    def delete_file(self, file_id):
        self.deleted.append(file_id)


class _StubMailer:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, *, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})


def _engine(ledger, stripe, store=None, mailer=None, **settings) -> PayoutReconciliationEngine:
    return PayoutReconciliationEngine(
        ledger=ledger,
        stripe=stripe,
        settings=ReconciliationSettings(summary_email="ops@example.com", **settings),
        receipt_store=store,
        mailer=mailer,
    )


def test_run_reconciles_good_payout_and_discards_mismatch() -> None:
    ledger = _MemoryLedger(_sheet())
    stripe = _StubStripe()
    store = _StubStore()
    mailer = _StubMailer()

    run = _engine(ledger, stripe, store, mailer).run("2024-03-01", "2024-03-31")

    assert run.fatal_error is None
    assert [(o.payout_id, o.status) for o in run.outcomes] == [("po_1", "reconciled"), ("po_2", "failed")]
    assert "Total processed amount (498.50) does not match payout amount (500.00)" in run.failed[0].error

    rows = ledger.rows
    assert len(rows) == 8
    # payout row zeroed, derived rows below it in order
    assert rows[1][1] == f"{PREFIX} 0301" and rows[1][2] == 0
    assert [r[2] for r in rows[2:5]] == [Decimal("300.00"), Decimal("-1.50"), Decimal("200.00")]
    assert [r[8] for r in rows[2:5]] == ["txn_a", "", "txn_b"]
    assert [r[7] for r in rows[2:5]] == ["Transfer", "Finance Fee", "Transfer"]
    assert all(r[4] == "Stripe" and r[5] == "ba_1" and r[6] == "" for r in rows[2:5])
    assert all(r[3] == "https://drive.test/file1" for r in rows[2:5])
    # failed payout restored exactly
    assert rows[5:] == _sheet()[2:]

    # one shared receipt for po_1, one for po_2 (deleted on rollback)
    assert store.saved == ["20240228 Ada charge desc txn_a.pdf", "20240228 Bob charge desc txn_c.pdf"]
    assert store.deleted == ["file2"]
    assert [f.file_url for f in run.files_added] == ["https://drive.test/file1"]
    assert stripe.charge_requests[0] == ["ch_1", "ch_2"]
    assert RECEIPT in run.urls_accessed

    assert len(mailer.sent) == 1
    sent = mailer.sent[0]
    assert sent["to"] == "ops@example.com"
    assert sent["subject"] == "Stripe Updates to Transactions"
    assert "Payouts processed: 1" in sent["body"]
    assert "Payouts failed: 1" in sent["body"]
    assert run.summary_sent


def test_rerun_does_not_match_zeroed_payout_rows() -> None:
    ledger = _MemoryLedger(_sheet())
    stripe = _StubStripe()
    engine = _engine(ledger, stripe, _StubStore())

    engine.run("2024-03-01", "2024-03-31")
    after_first = ledger.read_rows()
    second = engine.run("2024-03-01", "2024-03-31")

    assert [o.payout_id for o in second.reconciled] == []
    assert ledger.rows == after_first


def test_zero_matched_payouts_means_no_mutation_and_summary_still_sent() -> None:
    ledger = _MemoryLedger(_sheet())
    stripe = _StubStripe()
    stripe.payouts = []
    mailer = _StubMailer()

    run = _engine(ledger, stripe, _StubStore(), mailer).run("2024-03-01", "2024-03-31")

    assert ledger.mutations == []
    assert run.outcomes == []
    assert run.fatal_error is None
    body = mailer.sent[0]["body"]
    assert "Payouts processed: 0" in body
    assert "Payouts failed: 0" in body
    assert "Files added: 0" in body


def test_missing_column_aborts_run_but_summary_is_sent() -> None:
    sheet = _sheet()
    sheet[0] = ["Date", "Description", "Amount"]
    ledger = _MemoryLedger(sheet)
    mailer = _StubMailer()

    run = _engine(ledger, _StubStripe(), None, mailer).run()

    assert "ReceiptURL" in run.fatal_error
    assert ledger.mutations == []
    assert "Run aborted" in mailer.sent[0]["body"]


def test_listing_failure_is_fatal() -> None:
    stripe = _StubStripe()
    stripe.fail_listing = True
    ledger = _MemoryLedger(_sheet())

    run = _engine(ledger, stripe).run("2024-03-01", "2024-03-31")

    assert "status=500" in run.fatal_error
    assert ledger.mutations == []


def test_failed_rollback_aborts_remaining_payouts() -> None:
    ledger = _MemoryLedger(_sheet())
    ledger.failing_inserts = 1
    ledger.fail_restore = True

    run = _engine(ledger, _StubStripe()).run("2024-03-01", "2024-03-31")

    assert "inconsistent" in run.fatal_error
    assert [o.payout_id for o in run.outcomes] == ["po_1"]
    assert run.outcomes[0].status == "failed"


def test_mismatch_leaves_ledger_untouched() -> None:
    ledger = _MemoryLedger(_sheet())
    stripe = _StubStripe()
    stripe.payouts = stripe.payouts[1:]
    store = _StubStore()

    run = _engine(ledger, stripe, store).run("2024-03-01", "2024-03-31")

    assert [o.status for o in run.outcomes] == ["failed"]
    assert ledger.mutations == []
    assert ledger.rows == _sheet()
    assert store.deleted == ["file1"]
    assert run.files_added == []


def test_mismatch_on_first_payout_does_not_block_the_next() -> None:
    ledger = _MemoryLedger(_sheet())
    # a restore write would fail; a mismatch must never reach it
    ledger.fail_restore = True
    stripe = _StubStripe()
    stripe.transactions["po_1"] = [_tx("txn_x", 100, source="ch_9")]
    stripe.transactions["po_2"] = [_tx("txn_c", 50000, source="ch_4")]

    run = _engine(ledger, stripe, _StubStore()).run("2024-03-01", "2024-03-31")

    assert run.fatal_error is None
    assert [o.payout_id for o in run.reconciled] == ["po_2"]
    assert [o.payout_id for o in run.failed] == ["po_1"]
    assert ledger.mutations == ["insert"]
    assert ledger.rows[1][2] == 498.5
    assert ledger.rows[3][1] == f"{PREFIX} 0302" and ledger.rows[3][2] == 0
    assert ledger.rows[4][8] == "txn_c"
    assert ledger.rows[5][1] == "Rent"


def test_failed_write_is_rolled_back_and_next_payout_lands_under_its_row() -> None:
    ledger = _MemoryLedger(_sheet())
    ledger.failing_inserts = 1
    stripe = _StubStripe()
    stripe.transactions["po_2"] = [_tx("txn_c", 50000, source="ch_4")]
    store = _StubStore()

    run = _engine(ledger, stripe, store).run("2024-03-01", "2024-03-31")

    assert run.fatal_error is None
    assert "quota exceeded" in run.failed[0].error
    assert [o.payout_id for o in run.reconciled] == ["po_2"]
    assert ledger.mutations == ["insert", "write", "insert"]
    # po_1 restored as it was; po_2's rows sit directly below its own row
    assert ledger.rows[:3] == _sheet()[:3]
    assert ledger.rows[3][1] == f"{PREFIX} 0302" and ledger.rows[3][2] == 0
    assert ledger.rows[4][8] == "txn_c"
    assert ledger.rows[5] == _sheet()[4]
    assert store.deleted == ["file1"]
    assert [f.file_url for f in run.files_added] == ["https://drive.test/file2"]


def test_no_summary_without_recipient() -> None:
    mailer = _StubMailer()
    engine = PayoutReconciliationEngine(
        ledger=_MemoryLedger(_sheet()),
        stripe=_StubStripe(),
        settings=ReconciliationSettings(),
        mailer=mailer,
    )

    run = engine.run("2024-04-01", "2024-04-30")

    assert mailer.sent == []
    assert not run.summary_sent
