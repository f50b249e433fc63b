"""Ledger row scanning: header resolution and payout-row selection.

No network calls here: functions accept rows already read from the ledger
(header first, as returned by `GoogleSheetsLedger.read_rows`).
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from src.payout_recon.errors import ColumnNotFound
from src.payout_recon.use_cases.models import OPTIONAL_COLUMNS, REQUIRED_COLUMNS, ColumnMap, LedgerRow

logger = logging.getLogger(__name__)


def resolve_columns(headers: Iterable[Any]) -> ColumnMap:
    """Locate the ledger columns by header name, ignoring case.

    Raises `ColumnNotFound` for the first required header that is missing.
    """

    header = [str(h if h is not None else "").strip() for h in headers]
    lookup: dict[str, int] = {}
    for i, name in enumerate(header):
        # First occurrence wins when a header is duplicated.
        lookup.setdefault(name.lower(), i)

    positions: dict[str, int | None] = {}
    for field_name, column_name in REQUIRED_COLUMNS.items():
        idx = lookup.get(column_name.lower())
        if idx is None:
            raise ColumnNotFound(column_name)
        positions[field_name] = idx
    for field_name, column_name in OPTIONAL_COLUMNS.items():
        positions[field_name] = lookup.get(column_name.lower())

    return ColumnMap(width=len(header), **positions)


def parse_amount(value: Any) -> Decimal | None:
    """Parse a ledger amount cell ('1,234.56', '$-12.00', 42.1 ...)."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    s = str(value).strip().replace(",", "").replace("$", "")
    if not s:
        return None
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1]
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def parse_date_bound(value: date | datetime | str | None) -> datetime | None:
    """Turn a user-supplied range bound into a datetime.

    - `date` -> local midnight of that day.
    - strings with a `T` or `Z` marker are absolute timestamps (ISO 8601).
    - other strings must be `YYYY-MM-DD` and mean local midnight.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    s = str(value).strip()
    if not s:
        return None
    if "T" in s or "Z" in s:
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    try:
        return datetime.strptime(s, "%Y-%m-%d")
    except ValueError as e:
        raise ValueError(f"Invalid date (expected YYYY-MM-DD): {value!r}") from e


def _day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _cell_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def scan_payout_rows(
    rows: list[list[Any]],
    columns: ColumnMap,
    prefix: str,
    start: date | datetime | None = None,
    end: date | datetime | None = None,
) -> list[LedgerRow]:
    """Return the payout rows, in sheet order.

    A row qualifies when its description starts with `prefix`, its date cell
    holds a date value and that date lies inside the inclusive [start, end]
    bounds. Dates are compared at day granularity.
    """

    start_day = _day(start) if start is not None else None
    end_day = _day(end) if end is not None else None

    out: list[LedgerRow] = []
    for i, raw in enumerate(rows[1:], start=2):
        row = list(raw) + [""] * max(0, columns.width - len(raw))

        description = str(row[columns.description] or "")
        if not description.startswith(prefix):
            continue

        row_date = row[columns.date]
        if not isinstance(row_date, (date, datetime)):
            continue
        day = _day(row_date)
        if start_day is not None and day < start_day:
            continue
        if end_day is not None and day > end_day:
            continue

        amount = parse_amount(row[columns.amount])
        if amount is None:
            logger.warning("Skipping payout row %d: unreadable amount %r", i, row[columns.amount])
            continue

        def _opt(col: int | None) -> str | None:
            return _cell_text(row[col]) if col is not None else None

        out.append(
            LedgerRow(
                row_index=i,
                date=day,
                description=description,
                amount=amount,
                values=tuple(row),
                receipt_url=_cell_text(row[columns.receipt_url]),
                institution=_opt(columns.institution),
                account_number=_opt(columns.account_number),
                account_id=_opt(columns.account_id),
                category=_opt(columns.category),
            )
        )

    return out
