"""Receipt retrieval and persistence for one payout.

Receipt URLs are deduplicated, fetched in one batch and saved into the
receipt store: HTML receipts are normalized and converted to PDF, anything
else is stored as-is with its declared type. Every saved file is appended to
the caller's `created` list as soon as it exists, so a later failure can
delete it.
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import datetime
from typing import Protocol

from src.payout_recon.integrations.receipt_html import normalize_receipt_html, sanitize_file_name
from src.payout_recon.integrations.stripe_client import FetchedDocument, UrlRecorder
from src.payout_recon.use_cases.models import ReceiptAsset, TransactionDetail

logger = logging.getLogger(__name__)

_PDF_TYPES = {"text/html", "application/pdf"}


class ReceiptStore(Protocol):
    def save_bytes(self, content: bytes, *, mime_type: str, filename: str): ...

    def save_html_as_pdf(self, html: str, *, filename: str): ...

    def delete_file(self, file_id: str) -> None: ...


class DocumentFetcher(Protocol):
    def fetch_documents(self, urls, *, record_url: UrlRecorder | None = None) -> list[FetchedDocument]: ...


def extension_for(mime_type: str) -> str:
    if mime_type in _PDF_TYPES:
        return ".pdf"
    return mimetypes.guess_extension(mime_type or "") or ""


def build_receipt_filename(
    *,
    created: datetime | None,
    customer_name: str | None,
    reporting_category: str,
    description: str,
    extension: str = ".pdf",
) -> str:
    parts = [created.strftime("%Y%m%d") if created else "undated"]
    if customer_name:
        parts.append(customer_name)
    tail = f"{reporting_category} {description}".strip()
    if tail:
        parts.append(tail)
    return sanitize_file_name(" ".join(parts) + extension)


class ReceiptResolver:
    def __init__(self, store: ReceiptStore | None, fetcher: DocumentFetcher) -> None:
        self._store = store
        self._fetcher = fetcher

    def resolve(
        self,
        details: list[TransactionDetail],
        *,
        created: list[ReceiptAsset],
        record_url: UrlRecorder | None = None,
    ) -> dict[str, str]:
        """Save the receipts of `details`; return `{source_url: saved_url}`.

        Failed fetches and saves are logged and left out of the mapping.
        """

        first_detail: dict[str, TransactionDetail] = {}
        for d in details:
            if d.receipt_url and d.receipt_url not in first_detail:
                first_detail[d.receipt_url] = d
        if not first_detail:
            return {}
        if self._store is None:
            logger.warning("No receipts folder configured; %d receipt(s) not saved", len(first_detail))
            return {}

        documents = self._fetcher.fetch_documents(list(first_detail), record_url=record_url)

        saved: dict[str, str] = {}
        for doc in documents:
            if not doc.ok:
                logger.warning("Failed to fetch receipt from URL: %s (status %s)", doc.url, doc.status_code)
                continue
            detail = first_detail[doc.url]
            tx = detail.transaction
            filename = build_receipt_filename(
                created=tx.created,
                customer_name=detail.customer_name,
                reporting_category=tx.reporting_category,
                description=tx.description,
                extension=extension_for(doc.mime_type),
            )
            try:
                if doc.mime_type == "text/html":
                    html = normalize_receipt_html(doc.text, original_url=doc.url)
                    stored = self._store.save_html_as_pdf(html, filename=filename)
                    mime_type = "application/pdf"
                else:
                    stored = self._store.save_bytes(doc.content, mime_type=doc.mime_type, filename=filename)
                    mime_type = doc.mime_type
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to save receipt %s: %s", doc.url, e)
                continue

            created.append(
                ReceiptAsset(
                    source_url=doc.url,
                    destination_url=stored.url,
                    file_id=stored.file_id,
                    filename=filename,
                    mime_type=mime_type,
                )
            )
            saved[doc.url] = stored.url
            logger.info("Saved receipt %s as %s", doc.url, filename)

        return saved
