"""Run a payout reconciliation from the terminal.

This prints:
- The date range and the number of payout rows reconciled/failed
- Each reconciled payout with the rows inserted below it
- The fatal error, when the run was aborted

Exit codes: 0 all matched payouts reconciled, 1 at least one payout failed
(and was rolled back), 2 the run was aborted.

Writes to the ledger require GOOGLE_SHEETS_ALLOW_WRITE=1.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

# Allow running as: `python scripts/reconcile_payouts.py`
# by ensuring the repository root (parent of `scripts/`) is on sys.path.
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from dotenv import load_dotenv

# Load .env as early as possible (before importing other modules that may
# also load dotenv and/or fall back to .env.example).
load_dotenv(override=False)

from src.payout_recon.use_cases.payout_reconciliation import PayoutReconciliationEngine
from src.payout_recon.use_cases.summary_report import compile_summary


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reconcile Stripe payouts against the ledger.")
    p.add_argument("--start", help="Start date (YYYY-MM-DD or ISO timestamp)")
    p.add_argument("--end", help="End date (YYYY-MM-DD or ISO timestamp)")
    p.add_argument("--print-summary", action="store_true", help="Print the summary email body")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, os.environ.get("RECON_LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        engine = PayoutReconciliationEngine.from_env()
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    run = engine.run(args.start, args.end)

    print("=== Payout reconciliation ===")
    print(f"Run: {run.run_id}")
    print(f"Range: {run.start or '-'} -> {run.end or '-'}")
    print(f"Reconciled: {len(run.reconciled)}  Failed: {len(run.failed)}")
    for outcome in run.reconciled:
        print(f"- {outcome.payout_id} (row {outcome.row.row_index}): {len(outcome.derived_rows)} row(s)")
    for outcome in run.failed:
        print(f"- FAILED {outcome.payout_id}: {outcome.error}", file=sys.stderr)

    if args.print_summary:
        _, body = compile_summary(run)
        print()
        print(body)

    if run.fatal_error:
        print(f"ERROR: {run.fatal_error}", file=sys.stderr)
        return 2
    return 1 if run.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
