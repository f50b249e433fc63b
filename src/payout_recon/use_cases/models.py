"""Data shapes shared by the reconciliation use cases.

Processor payloads are parsed once at the edge (`from_api`) so the rest of the
engine works with typed records and `Decimal` amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

# Optional columns map to None when the sheet does not carry them.
REQUIRED_COLUMNS: dict[str, str] = {
    "date": "Date",
    "description": "Description",
    "amount": "Amount",
    "receipt_url": "ReceiptURL",
}
OPTIONAL_COLUMNS: dict[str, str] = {
    "institution": "Institution",
    "account_number": "Account #",
    "account_id": "Account ID",
    "category": "Category",
    "transaction_id": "Transaction ID",
}


def minor_to_decimal(value: Any) -> Decimal:
    """Convert processor minor units to a currency amount (absent -> 0)."""

    if value is None or value == "":
        return Decimal("0")
    return (Decimal(str(value)) / Decimal(100)).quantize(Decimal("0.01"))


def epoch_to_utc(epoch: int | None) -> datetime | None:
    if epoch is None:
        return None
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """0-based positions of the ledger columns the engine reads or writes."""

    width: int
    date: int
    description: int
    amount: int
    receipt_url: int
    institution: int | None = None
    account_number: int | None = None
    account_id: int | None = None
    category: int | None = None
    transaction_id: int | None = None


@dataclass(frozen=True, slots=True)
class LedgerRow:
    row_index: int
    date: date
    description: str
    amount: Decimal
    values: tuple[Any, ...]
    receipt_url: str | None = None
    institution: str | None = None
    account_number: str | None = None
    account_id: str | None = None
    category: str | None = None


@dataclass(frozen=True, slots=True)
class PayoutRecord:
    id: str
    arrival_epoch: int
    amount_minor_units: int
    destination: str | None = None
    created_epoch: int | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "PayoutRecord":
        return cls(
            id=str(raw["id"]),
            arrival_epoch=int(raw.get("arrival_date") or 0),
            amount_minor_units=int(raw.get("amount") or 0),
            destination=raw.get("destination"),
            created_epoch=raw.get("created"),
        )

    @property
    def amount(self) -> Decimal:
        return minor_to_decimal(self.amount_minor_units)


@dataclass(frozen=True, slots=True)
class FeeDetail:
    type: str
    amount_minor_units: int | None
    description: str

    @property
    def amount(self) -> Decimal:
        return minor_to_decimal(self.amount_minor_units)


@dataclass(frozen=True, slots=True)
class BalanceTransaction:
    id: str
    amount_minor_units: int | None
    status: str
    source: str | None
    reporting_category: str
    type: str
    description: str
    created_epoch: int | None
    fee_details: tuple[FeeDetail, ...] = ()

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "BalanceTransaction":
        fees = tuple(
            FeeDetail(
                type=str(f.get("type") or ""),
                amount_minor_units=f.get("amount"),
                description=str(f.get("description") or ""),
            )
            for f in (raw.get("fee_details") or [])
            if isinstance(f, dict)
        )
        source = raw.get("source")
        if isinstance(source, dict):
            # Expanded sources carry the id inside the object.
            source = source.get("id")
        return cls(
            id=str(raw["id"]),
            amount_minor_units=raw.get("amount"),
            status=str(raw.get("status") or ""),
            source=source or None,
            reporting_category=str(raw.get("reporting_category") or ""),
            type=str(raw.get("type") or ""),
            description=str(raw.get("description") or ""),
            created_epoch=raw.get("created"),
            fee_details=fees,
        )

    @property
    def amount(self) -> Decimal:
        return minor_to_decimal(self.amount_minor_units)

    @property
    def is_available(self) -> bool:
        return self.status == "available"

    @property
    def created(self) -> datetime | None:
        return epoch_to_utc(self.created_epoch)


@dataclass(frozen=True, slots=True)
class ChargeRecord:
    id: str
    receipt_url: str | None = None
    customer_name: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "ChargeRecord":
        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
        return cls(
            id=str(raw["id"]),
            receipt_url=raw.get("receipt_url") or None,
            customer_name=metadata.get("customer_name") or None,
        )


@dataclass(frozen=True, slots=True)
class TransactionDetail:
    """A balance transaction joined with its charge data and saved receipt."""

    transaction: BalanceTransaction
    source: str
    customer_name: str | None = None
    receipt_url: str | None = None
    saved_receipt_url: str | None = None


@dataclass(frozen=True, slots=True)
class DerivedRow:
    kind: str  # "transaction" | "fee"
    date: datetime | None
    description: str
    amount: Decimal
    receipt_url: str
    institution: str
    account_number: str
    account_id: str
    category: str
    transaction_id: str

    def to_values(self, base_values: tuple[Any, ...] | list[Any], columns: ColumnMap) -> list[Any]:
        """Render onto a copy of the anchor row, touching only known columns."""

        values = list(base_values) + [""] * max(0, columns.width - len(base_values))
        values[columns.amount] = self.amount
        values[columns.description] = self.description
        values[columns.date] = self.date
        values[columns.receipt_url] = self.receipt_url
        for attr in ("institution", "account_number", "account_id", "category", "transaction_id"):
            col = getattr(columns, attr)
            if col is not None:
                values[col] = getattr(self, attr)
        return values


@dataclass(frozen=True, slots=True)
class ReceiptAsset:
    source_url: str
    destination_url: str
    file_id: str
    filename: str
    mime_type: str


@dataclass(frozen=True, slots=True)
class MatchedPayout:
    row: LedgerRow
    payout: PayoutRecord


@dataclass(slots=True)
class PayoutOutcome:
    payout_id: str
    row: LedgerRow
    status: str  # "reconciled" | "failed" | "skipped"
    details: list[TransactionDetail] = field(default_factory=list)
    derived_rows: list[DerivedRow] = field(default_factory=list)
    error: str | None = None
