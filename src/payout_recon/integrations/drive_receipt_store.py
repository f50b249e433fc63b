"""Google Drive receipt store.

Receipts are saved into one Drive folder. HTML receipts are converted to PDF
by round-tripping through a temporary Google Doc (upload as HTML with a Docs
target type, export as PDF), which needs no local rendering engine.

Created files are trashed (not hard-deleted) on rollback.
"""

from __future__ import annotations

import io
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from src.payout_recon.integrations.google_services import (
    build_google_service,
    default_service_account_path,
)

load_dotenv()

logger = logging.getLogger(__name__)

_FOLDER_ID_RE = re.compile(r"[-\w]{25,}")
_GOOGLE_DOC_MIME = "application/vnd.google-apps.document"


def folder_id_from_url(folder_url: str) -> str:
    """Extract the Drive folder id from a folder URL (or accept a bare id)."""

    m = _FOLDER_ID_RE.search(folder_url or "")
    if not m:
        raise ValueError("Invalid Google Drive folder URL.")
    return m.group(0)


@dataclass(frozen=True, slots=True)
class StoredFile:
    file_id: str
    url: str


class DriveReceiptStore:
    def __init__(self, *, folder_url: str, service_account_path: str) -> None:
        self._folder_id = folder_id_from_url(folder_url)
        self._service_account_path = os.path.expanduser(service_account_path)
        self._service: Any = None

    @classmethod
    def from_env(cls, *, folder_url: str | None = None) -> "DriveReceiptStore":
        url = folder_url or os.environ.get("RECEIPTS_FOLDER_URL")
        if not url:
            raise ValueError("Missing RECEIPTS_FOLDER_URL")
        return cls(folder_url=url, service_account_path=default_service_account_path())

    @property
    def folder_id(self) -> str:
        return self._folder_id

    def _drive(self) -> Any:
        if self._service is None:
            self._service = build_google_service(
                "drive",
                "v3",
                scopes=["https://www.googleapis.com/auth/drive"],
                service_account_path=self._service_account_path,
            )
        return self._service

    def _create(self, *, body: dict[str, Any], content: bytes, mime_type: str) -> dict[str, Any]:
        from googleapiclient.http import MediaIoBaseUpload

        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        return (
            self._drive()
            .files()
            .create(
                body=body,
                media_body=media,
                fields="id,webViewLink",
                supportsAllDrives=True,
            )
            .execute(num_retries=2)
        )

    def save_bytes(self, content: bytes, *, mime_type: str, filename: str) -> StoredFile:
        created = self._create(
            body={"name": filename, "parents": [self._folder_id], "mimeType": mime_type},
            content=content,
            mime_type=mime_type,
        )
        file_id = created["id"]
        url = created.get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view"
        return StoredFile(file_id=file_id, url=url)

    def save_html_as_pdf(self, html: str, *, filename: str) -> StoredFile:
        temp = self._create(
            body={"name": filename, "mimeType": _GOOGLE_DOC_MIME},
            content=html.encode("utf-8"),
            mime_type="text/html",
        )
        try:
            pdf = (
                self._drive()
                .files()
                .export(fileId=temp["id"], mimeType="application/pdf")
                .execute(num_retries=2)
            )
            return self.save_bytes(pdf, mime_type="application/pdf", filename=filename)
        finally:
            try:
                self._drive().files().delete(fileId=temp["id"], supportsAllDrives=True).execute(num_retries=2)
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to delete temporary document %s: %s", temp["id"], e)

    def delete_file(self, file_id: str) -> None:
        (
            self._drive()
            .files()
            .update(fileId=file_id, body={"trashed": True}, supportsAllDrives=True)
            .execute(num_retries=2)
        )
