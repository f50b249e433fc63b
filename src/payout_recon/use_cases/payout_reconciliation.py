"""Payout reconciliation engine.

Flow of one run:

1. Read the ledger, resolve its columns, select payout rows in the range.
2. List processor payouts for the range and pair them with the rows.
3. Fetch the balance transactions of every matched payout in one fan-out.
4. Per payout, in sheet order: fetch charges, save receipts, decompose,
   verify the total, then apply. A failure before the write only deletes the
   saved receipts; a failed write is rolled back from the snapshot. Either
   way the run moves on to the next payout.
5. Email the summary, whatever happened above.

Run-level failures (missing columns, listing errors, a failed rollback) stop
the run and are recorded as `run.fatal_error`; `run()` itself does not raise.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Protocol

from src.payout_recon.config.settings import ConfigManager, ReconciliationSettings
from src.payout_recon.errors import PayoutProcessingError
from src.payout_recon.use_cases.decomposition import decompose_payout, verify_conservation
from src.payout_recon.use_cases.ledger_scanner import parse_date_bound, resolve_columns, scan_payout_rows
from src.payout_recon.use_cases.ledger_writer import Ledger, LedgerSnapshot, LedgerWriter
from src.payout_recon.use_cases.models import (
    BalanceTransaction,
    ColumnMap,
    MatchedPayout,
    PayoutOutcome,
    ReceiptAsset,
    TransactionDetail,
)
from src.payout_recon.use_cases.payout_matcher import match_payouts
from src.payout_recon.use_cases.receipt_resolver import ReceiptResolver, ReceiptStore
from src.payout_recon.use_cases.run_context import ReconciliationRun
from src.payout_recon.use_cases.summary_report import compile_summary

logger = logging.getLogger(__name__)

CHARGE_PREFIX = "ch_"


class Mailer(Protocol):
    def send(self, *, to: str, subject: str, body: str) -> Any: ...


class PayoutReconciliationEngine:
    def __init__(
        self,
        *,
        ledger: Ledger,
        stripe: Any,
        settings: ReconciliationSettings,
        receipt_store: ReceiptStore | None = None,
        mailer: Mailer | None = None,
    ) -> None:
        self.ledger = ledger
        self.stripe = stripe
        self.settings = settings
        self.mailer = mailer
        self.receipts = ReceiptResolver(receipt_store, stripe)
        self.writer = LedgerWriter(ledger, receipt_store)

    @classmethod
    def from_env(cls, *, config: ConfigManager | None = None) -> "PayoutReconciliationEngine":
        from src.payout_recon.integrations.drive_receipt_store import DriveReceiptStore
        from src.payout_recon.integrations.gmail_sender import GmailSender
        from src.payout_recon.integrations.google_sheets_ledger import GoogleSheetsLedger
        from src.payout_recon.integrations.stripe_client import StripeClient

        manager = config or ConfigManager.from_env()
        settings = ReconciliationSettings.from_config(manager)

        store = None
        if settings.receipts_folder_url:
            store = DriveReceiptStore.from_env(folder_url=settings.receipts_folder_url)
        mailer = GmailSender.from_env() if os.environ.get("GMAIL_SENDER") else None

        return cls(
            ledger=GoogleSheetsLedger.from_env(),
            stripe=StripeClient.from_env(api_key=manager.get_property("STRIPE_API_KEY")),
            settings=settings,
            receipt_store=store,
            mailer=mailer,
        )

    def run(
        self,
        start: date | datetime | str | None = None,
        end: date | datetime | str | None = None,
        *,
        run: ReconciliationRun | None = None,
    ) -> ReconciliationRun:
        if run is None:
            run = ReconciliationRun()
        log = run.log
        try:
            if start is not None:
                run.start = parse_date_bound(start)
            if end is not None:
                run.end = parse_date_bound(end)
            log.info(
                "Starting payout reconciliation from %s to %s",
                run.start.isoformat() if run.start else "the beginning",
                run.end.isoformat() if run.end else "now",
            )
            self._reconcile(run)
        except Exception as e:  # noqa: BLE001
            run.fatal_error = str(e)
            log.error("Reconciliation aborted: %s", e)
        finally:
            run.finished_at = datetime.now(timezone.utc)
            self._send_summary(run)
            log.info(
                "Reconciliation finished: %d reconciled, %d failed",
                len(run.reconciled),
                len(run.failed),
            )
        return run

    def _reconcile(self, run: ReconciliationRun) -> None:
        log = run.log
        all_rows = self.ledger.read_rows()
        if not all_rows:
            log.info("Ledger is empty; nothing to reconcile")
            return
        columns = resolve_columns(all_rows[0])

        candidates = scan_payout_rows(
            all_rows,
            columns,
            self.settings.payout_description_prefix,
            run.start,
            run.end,
        )
        log.info("Found %d payout row(s) in the ledger", len(candidates))
        if not candidates:
            return

        payouts = self.stripe.list_payouts(start=run.start, end=run.end, record_url=run.record_url)
        log.info("Fetched %d payout(s) from Stripe", len(payouts))
        matches = match_payouts(candidates, payouts)
        log.info("Matched %d payout(s)", len(matches))
        if not matches:
            return

        transactions = self.stripe.list_balance_transactions_for_payouts(
            [m.payout.id for m in matches],
            record_url=run.record_url,
        )

        # Rows inserted for earlier payouts push later payout rows down.
        offset = 0
        for matched in matches:
            if offset:
                matched = replace(matched, row=replace(matched.row, row_index=matched.row.row_index + offset))
            offset += self._process_payout(run, matched, transactions.get(matched.payout.id, []), columns)

    def _process_payout(
        self,
        run: ReconciliationRun,
        matched: MatchedPayout,
        transactions: list[BalanceTransaction],
        columns: ColumnMap,
    ) -> int:
        """Reconcile one payout; return the number of rows it inserted."""

        log = run.log
        row = matched.row
        payout = matched.payout
        outcome = PayoutOutcome(payout_id=payout.id, row=row, status="failed")
        run.outcomes.append(outcome)

        created: list[ReceiptAsset] = []
        snapshot: LedgerSnapshot | None = None
        mutated = False
        try:
            snapshot = self.writer.snapshot(row.row_index)
            available = [t for t in transactions if t.is_available]
            log.info(
                "Processing payout %s (row %d): %d available transaction(s)",
                payout.id,
                row.row_index,
                len(available),
            )

            charge_ids = [t.source for t in available if t.source and t.source.startswith(CHARGE_PREFIX)]
            charges = self.stripe.get_charges(charge_ids, record_url=run.record_url)

            details: list[TransactionDetail] = []
            for t in available:
                charge = charges.get(t.source or "")
                details.append(
                    TransactionDetail(
                        transaction=t,
                        source=t.source or payout.id,
                        customer_name=charge.customer_name if charge else None,
                        receipt_url=charge.receipt_url if charge else None,
                    )
                )

            saved = self.receipts.resolve(details, created=created, record_url=run.record_url)
            details = [replace(d, saved_receipt_url=saved.get(d.receipt_url or "")) for d in details]

            derived = decompose_payout(matched, details, self.settings)
            verify_conservation(derived, row.amount)
            mutated = True
            inserted = self.writer.apply(matched, derived, columns)
        except Exception as e:  # noqa: BLE001
            err = PayoutProcessingError(row_date=row.date.isoformat(), description=row.description, cause=e)
            outcome.error = str(err)
            log.error("%s", err)
            if mutated:
                # RollbackFailure propagates and aborts the run.
                self.writer.rollback(snapshot, created)
            else:
                # Nothing reached the ledger; only the saved receipts go.
                self.writer.delete_files(created)
            return 0

        outcome.status = "reconciled"
        outcome.details = details
        outcome.derived_rows = derived
        by_url = {a.source_url: a for a in created}
        for d in details:
            asset = by_url.pop(d.receipt_url or "", None)
            if asset is not None:
                run.record_file(d.transaction.id, asset.destination_url)
        log.info("Payout %s reconciled: %d row(s) inserted", payout.id, inserted)
        return inserted

    def _send_summary(self, run: ReconciliationRun) -> None:
        to = self.settings.summary_email
        if not to or self.mailer is None:
            run.log.info("No summary email configured; skipping summary")
            return
        subject, body = compile_summary(run)
        try:
            self.mailer.send(to=to, subject=subject, body=body)
        except Exception as e:  # noqa: BLE001
            run.log.error("Failed to send summary email to %s: %s", to, e)
            return
        run.summary_sent = True
        run.log.info("Summary email sent to %s", to)
