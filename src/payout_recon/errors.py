"""Error taxonomy for payout reconciliation.

Run-fatal: ColumnNotFound, AuthenticationError, UpstreamError (listing calls),
RollbackFailure.
Payout-scoped: AmountMismatch, WriteFailure, wrapped in PayoutProcessingError
once compensation has run.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(ReconciliationError):
    """A property is not on the allow-list or is written to a forbidden scope."""


class ColumnNotFound(ReconciliationError):
    def __init__(self, column_name: str) -> None:
        super().__init__(f"Column '{column_name}' not found in the sheet headers.")
        self.column_name = column_name


class AuthenticationError(ReconciliationError):
    """No processor credential is configured."""


class UpstreamError(ReconciliationError):
    def __init__(self, message: str, *, url: str, status_code: int | None = None, body: str = "") -> None:
        detail = f"{message} (url={url}"
        if status_code is not None:
            detail += f", status={status_code}"
        detail += f"): {body}" if body else ")"
        super().__init__(detail)
        self.url = url
        self.status_code = status_code
        self.body = body


class AmountMismatch(ReconciliationError):
    def __init__(self, *, expected, actual) -> None:
        super().__init__(
            f"Total processed amount ({actual:.2f}) does not match payout amount ({expected:.2f}). "
            "Transactions will not be inserted."
        )
        self.expected = expected
        self.actual = actual


class WriteFailure(ReconciliationError):
    """The ledger rejected a write while applying derived rows."""


class RollbackFailure(ReconciliationError):
    """Compensation failed; the ledger may be inconsistent."""


class PayoutProcessingError(ReconciliationError):
    """A payout failed; anything it saved or wrote was undone."""

    def __init__(self, *, row_date, description: str, cause: Exception) -> None:
        super().__init__(
            f"Transaction processing failed for Date: {row_date}, Description: {description}. Error: {cause}"
        )
        self.row_date = row_date
        self.description = description
        self.cause = cause
