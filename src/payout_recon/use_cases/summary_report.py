"""Plain-text run summary sent by email at the end of every run."""

from __future__ import annotations

from datetime import date, datetime

from src.payout_recon.use_cases.models import PayoutOutcome
from src.payout_recon.use_cases.run_context import ReconciliationRun

SUMMARY_SUBJECT = "Stripe Updates to Transactions"


def _fmt_date(value: date | datetime | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()


def _payout_section(outcome: PayoutOutcome) -> list[str]:
    row = outcome.row
    lines = [
        f"Payout ID: {outcome.payout_id}",
        f"  Date: {_fmt_date(row.date)}",
        f"  Amount: {row.amount:.2f}",
        f"  Description: {row.description}",
        f"  Institution: {row.institution or '-'}",
        f"  Account #: {row.account_number or '-'}",
        f"  Category: {row.category or '-'}",
        "  Transactions:",
    ]
    for detail in outcome.details:
        tx = detail.transaction
        if not tx.is_available:
            continue
        lines.append(
            f"    - {_fmt_date(tx.created)} | {tx.amount:.2f} | {tx.type}: {tx.description}"
            f" | Customer: {detail.customer_name or '-'}"
            f" | Receipt: {detail.saved_receipt_url or detail.receipt_url or '-'}"
        )
    lines.append(f"  Rows inserted: {len(outcome.derived_rows)}")
    return lines


def compile_summary(run: ReconciliationRun) -> tuple[str, str]:
    """Return `(subject, body)` for `run`."""

    lines = [
        "Stripe payout reconciliation summary",
        f"Run: {run.run_id}",
        f"Date range: {_fmt_date(run.start)} to {_fmt_date(run.end)}",
        "",
        f"Payouts processed: {len(run.reconciled)}",
        f"Payouts failed: {len(run.failed)}",
        f"Files added: {len(run.files_added)}",
        f"URLs accessed: {len(run.urls_accessed)}",
    ]

    if run.fatal_error:
        lines += ["", f"Run aborted: {run.fatal_error}"]

    for outcome in run.reconciled:
        lines.append("")
        lines.extend(_payout_section(outcome))

    if run.failed:
        lines += ["", "Failures:"]
        for outcome in run.failed:
            lines.append(
                f"  - {outcome.payout_id} (Date: {_fmt_date(outcome.row.date)}, "
                f"Description: {outcome.row.description}): {outcome.error}"
            )

    if run.files_added:
        lines += ["", "Files added:"]
        lines += [f"  - {f.transaction_id}: {f.file_url}" for f in run.files_added]

    if run.urls_accessed:
        lines += ["", "URLs accessed:"]
        lines += [f"  - {u}" for u in run.urls_accessed]

    return SUMMARY_SUBJECT, "\n".join(lines) + "\n"
