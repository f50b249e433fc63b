"""Expand one matched payout into transaction and fee rows.

No network calls here. The rows are returned in insertion order: each
transaction row is followed by its fee rows, transactions in listing order.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from src.payout_recon.config.settings import ReconciliationSettings
from src.payout_recon.errors import AmountMismatch
from src.payout_recon.use_cases.models import DerivedRow, MatchedPayout, TransactionDetail

CONSERVATION_TOLERANCE = Decimal("0.01")
PAYOUT_CATEGORY = "payout"


def transaction_description(detail: TransactionDetail, original_description: str) -> str:
    tx = detail.transaction
    text = f"{tx.reporting_category}:"
    if detail.customer_name:
        text += f" | Customer: {detail.customer_name}"
    text += f" | {tx.type}: {tx.description} | {original_description} | Source: {detail.source}"
    return text


def fee_description(fee_type: str, fee_text: str, detail: TransactionDetail, original_description: str) -> str:
    tx = detail.transaction
    text = f"{tx.reporting_category}:"
    if detail.customer_name:
        text += f" | Customer: {detail.customer_name}"
    text += f" | {fee_type}: {fee_text} | {original_description} | Source: {detail.source}"
    return text


def is_payout_itself(detail: TransactionDetail, payout_id: str) -> bool:
    return detail.transaction.reporting_category == PAYOUT_CATEGORY and detail.source == payout_id


def decompose_payout(
    matched: MatchedPayout,
    details: Iterable[TransactionDetail],
    settings: ReconciliationSettings,
) -> list[DerivedRow]:
    row = matched.row
    payout = matched.payout
    out: list[DerivedRow] = []

    for detail in details:
        tx = detail.transaction
        if not tx.is_available:
            continue
        if is_payout_itself(detail, payout.id):
            continue

        category = (
            settings.payout_category_label
            if tx.reporting_category == PAYOUT_CATEGORY
            else (row.category or "")
        )
        receipt = detail.saved_receipt_url or detail.receipt_url or ""
        account_number = payout.destination or ""

        out.append(
            DerivedRow(
                kind="transaction",
                date=tx.created,
                description=transaction_description(detail, row.description),
                amount=tx.amount,
                receipt_url=receipt,
                institution=settings.institution_name,
                account_number=account_number,
                account_id="",
                category=category,
                transaction_id=tx.id,
            )
        )

        for fee in tx.fee_details:
            out.append(
                DerivedRow(
                    kind="fee",
                    date=tx.created,
                    description=fee_description(fee.type, fee.description, detail, row.description),
                    amount=-fee.amount,
                    receipt_url=receipt,
                    institution=settings.institution_name,
                    account_number=account_number,
                    account_id="",
                    category=settings.fee_category_label or category,
                    transaction_id="",
                )
            )

    return out


def verify_conservation(rows: Iterable[DerivedRow], expected: Decimal) -> Decimal:
    """Return the signed total of `rows`; raise `AmountMismatch` if it drifts from `expected`."""

    total = sum((r.amount for r in rows), Decimal("0"))
    if abs(total - expected) > CONSERVATION_TOLERANCE:
        raise AmountMismatch(expected=expected, actual=total)
    return total
