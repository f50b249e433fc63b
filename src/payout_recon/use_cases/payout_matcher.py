"""Pair ledger payout rows with processor payouts by date and amount."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from src.payout_recon.use_cases.models import LedgerRow, MatchedPayout, PayoutRecord, epoch_to_utc

logger = logging.getLogger(__name__)

# Ledger day of a deposit = UTC day of (arrival_date + 8h).
ARRIVAL_OFFSET_SECONDS = 8 * 3600
AMOUNT_TOLERANCE = Decimal("0.01")


def _matches(row: LedgerRow, payout: PayoutRecord) -> bool:
    arrival_day = epoch_to_utc(payout.arrival_epoch + ARRIVAL_OFFSET_SECONDS).date()
    if arrival_day != row.date:
        return False
    return abs(payout.amount - row.amount) < AMOUNT_TOLERANCE


def find_matching_payout(
    row: LedgerRow,
    payouts: Iterable[PayoutRecord],
    *,
    exclude: set[str] | None = None,
) -> PayoutRecord | None:
    """Return the first payout (in listing order) that matches `row`."""

    for payout in payouts:
        if exclude and payout.id in exclude:
            continue
        if _matches(row, payout):
            return payout
    logger.info(
        "No matching payout found for row %d (date=%s, amount=%s)",
        row.row_index,
        row.date.isoformat(),
        row.amount,
    )
    return None


def match_payouts(rows: Iterable[LedgerRow], payouts: list[PayoutRecord]) -> list[MatchedPayout]:
    """Match rows in order; each payout is paired with at most one row."""

    used: set[str] = set()
    matched: list[MatchedPayout] = []
    for row in rows:
        payout = find_matching_payout(row, payouts, exclude=used)
        if payout is None:
            continue
        used.add(payout.id)
        matched.append(MatchedPayout(row=row, payout=payout))
    return matched
