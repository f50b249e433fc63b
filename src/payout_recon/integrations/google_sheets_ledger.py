"""Google Sheets ledger (service-account based).

Goals
- Provide a small, testable integration wrapper around the Sheets API for the
  "Transactions" tab: read every row, insert derived rows after an anchor row,
  delete rows, and overwrite a block of rows.
- Keep all network calls here; keep cell conversion deterministic and
  unit-testable.

Rows are exchanged as 0-based lists of Python values; row numbers in method
signatures are 1-based sheet rows (the header is row 1).

Writes go through `spreadsheets.batchUpdate`, which the API applies
atomically: either every request in the body succeeds or none does.
"""

from __future__ import annotations

import os
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from src.payout_recon.integrations.google_services import (
    build_google_service,
    default_service_account_path,
)

load_dotenv()

# Convenience: allow local runs with only `.env.example` filled.
if not os.environ.get("SPREADSHEET_ID"):
    load_dotenv(dotenv_path=os.path.abspath(".env.example"), override=False)

# Sheets serial dates count days from 1899-12-30.
_SERIAL_EPOCH = datetime(1899, 12, 30)


def serial_to_datetime(serial: float | int) -> datetime:
    return _SERIAL_EPOCH + timedelta(days=float(serial))


def datetime_to_serial(value: date | datetime, *, tz: ZoneInfo | None = None) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is not None and tz is not None:
            value = value.astimezone(tz)
        naive = value.replace(tzinfo=None)
    else:
        naive = datetime(value.year, value.month, value.day)
    delta = naive - _SERIAL_EPOCH
    return delta / timedelta(days=1)


def to_cell_data(value: Any, *, tz: ZoneInfo | None = None) -> dict[str, Any]:
    """Render a Python value as Sheets `CellData` (userEnteredValue only)."""

    if value is None or value == "":
        return {}
    if isinstance(value, bool):
        return {"userEnteredValue": {"boolValue": value}}
    if isinstance(value, (date, datetime)):
        return {"userEnteredValue": {"numberValue": datetime_to_serial(value, tz=tz)}}
    if isinstance(value, (int, float, Decimal)):
        return {"userEnteredValue": {"numberValue": float(value)}}
    text = str(value)
    if text.startswith("="):
        return {"userEnteredValue": {"formulaValue": text}}
    return {"userEnteredValue": {"stringValue": text}}


def normalize_rows(
    raw_rows: list[list[Any]],
    *,
    date_headers: tuple[str, ...] = ("Date",),
) -> list[list[Any]]:
    """Pad rows to the header width and turn serial dates into datetimes."""

    if not raw_rows:
        return []
    header = [str(h) for h in raw_rows[0]]
    width = len(header)
    wanted = {h.lower() for h in date_headers}
    date_cols = [i for i, h in enumerate(header) if h.strip().lower() in wanted]

    out: list[list[Any]] = [header]
    for raw in raw_rows[1:]:
        row = list(raw) + [""] * max(0, width - len(raw))
        for c in date_cols:
            v = row[c]
            if isinstance(v, (int, float)) and not isinstance(v, bool):
                row[c] = serial_to_datetime(v)
        out.append(row)
    return out


class GoogleSheetsLedger:
    def __init__(
        self,
        *,
        spreadsheet_id: str,
        service_account_path: str,
        sheet_title: str = "Transactions",
        timezone: str = "America/Los_Angeles",
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._service_account_path = os.path.expanduser(service_account_path)
        self._sheet_title = sheet_title
        self._tz = ZoneInfo(timezone)
        self._sheet_id: int | None = None
        self._service: Any = None

    @classmethod
    def from_env(cls) -> "GoogleSheetsLedger":
        spreadsheet_id = os.environ.get("SPREADSHEET_ID")
        if not spreadsheet_id:
            raise ValueError("Missing SPREADSHEET_ID")

        return cls(
            spreadsheet_id=spreadsheet_id,
            service_account_path=default_service_account_path(),
            sheet_title=os.environ.get("LEDGER_SHEET_TITLE", "Transactions"),
            timezone=os.environ.get("LEDGER_TIMEZONE", "America/Los_Angeles"),
        )

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    @property
    def sheet_title(self) -> str:
        return self._sheet_title

    def _sheets(self) -> Any:
        if self._service is None:
            self._service = build_google_service(
                "sheets",
                "v4",
                scopes=["https://www.googleapis.com/auth/spreadsheets"],
                service_account_path=self._service_account_path,
            )
        return self._service

    def _resolve_sheet_id(self) -> int:
        if self._sheet_id is not None:
            return self._sheet_id
        meta = (
            self._sheets()
            .spreadsheets()
            .get(
                spreadsheetId=self._spreadsheet_id,
                fields="sheets(properties(sheetId,title))",
            )
            .execute(num_retries=2)
        )
        for s in meta.get("sheets", []):
            props = s.get("properties") or {}
            if props.get("title") == self._sheet_title:
                self._sheet_id = int(props["sheetId"])
                return self._sheet_id
        raise LookupError(f"Sheet '{self._sheet_title}' not found. Please check the sheet name.")

    def read_rows(self) -> list[list[Any]]:
        """Return every row of the sheet, header first, as raw cell values.

        Formulas are returned as formula text so a later overwrite restores
        them unchanged.
        """

        resp = (
            self._sheets()
            .spreadsheets()
            .values()
            .get(
                spreadsheetId=self._spreadsheet_id,
                range=f"'{self._sheet_title}'",
                valueRenderOption="FORMULA",
                dateTimeRenderOption="SERIAL_NUMBER",
            )
            .execute(num_retries=2)
        )
        rows = resp.get("values", [])
        return normalize_rows(rows if isinstance(rows, list) else [])

    def _ensure_writable(self) -> None:
        if os.environ.get("GOOGLE_SHEETS_ALLOW_WRITE", "").strip() != "1":
            raise PermissionError(
                "Google Sheets write disabled. Set GOOGLE_SHEETS_ALLOW_WRITE=1 to enable updates."
            )

    def _update_cells_request(self, *, start_row: int, start_col: int, rows: list[list[Any]]) -> dict[str, Any]:
        return {
            "updateCells": {
                "start": {
                    "sheetId": self._resolve_sheet_id(),
                    "rowIndex": start_row - 1,
                    "columnIndex": start_col,
                },
                "rows": [{"values": [to_cell_data(v, tz=self._tz) for v in row]} for row in rows],
                "fields": "userEnteredValue",
            }
        }

    def _batch_update(self, requests_body: list[dict[str, Any]]) -> dict[str, Any]:
        return (
            self._sheets()
            .spreadsheets()
            .batchUpdate(spreadsheetId=self._spreadsheet_id, body={"requests": requests_body})
            .execute(num_retries=2)
        )

    def insert_rows_after(
        self,
        row_index: int,
        rows: list[list[Any]],
        *,
        anchor_updates: dict[int, Any] | None = None,
    ) -> None:
        """Insert `rows` directly below `row_index` and update anchor cells, in one batch."""

        self._ensure_writable()
        requests_body: list[dict[str, Any]] = []
        if rows:
            requests_body.append(
                {
                    "insertDimension": {
                        "range": {
                            "sheetId": self._resolve_sheet_id(),
                            "dimension": "ROWS",
                            "startIndex": row_index,
                            "endIndex": row_index + len(rows),
                        },
                        "inheritFromBefore": True,
                    }
                }
            )
            requests_body.append(self._update_cells_request(start_row=row_index + 1, start_col=0, rows=rows))
        for col, value in sorted((anchor_updates or {}).items()):
            requests_body.append(self._update_cells_request(start_row=row_index, start_col=col, rows=[[value]]))

        if requests_body:
            self._batch_update(requests_body)

    def delete_rows(self, start_row: int, count: int) -> None:
        self._ensure_writable()
        if count <= 0:
            return
        self._batch_update(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": self._resolve_sheet_id(),
                            "dimension": "ROWS",
                            "startIndex": start_row - 1,
                            "endIndex": start_row - 1 + count,
                        }
                    }
                }
            ]
        )

    def write_rows(self, start_row: int, rows: list[list[Any]]) -> None:
        """Overwrite the block starting at `start_row` (column A) with `rows`."""

        self._ensure_writable()
        if not rows:
            return
        self._batch_update([self._update_cells_request(start_row=start_row, start_col=0, rows=rows)])
