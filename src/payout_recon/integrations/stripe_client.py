"""Stripe REST connector.

Purpose
- Provide a small, testable wrapper for the *read-only* Stripe calls the
  reconciliation needs: payouts, balance transactions, charges, receipts.
- Keep pagination and fan-out batching in one place.

This module is intentionally independent of FastAPI and of the reconciliation
rules; it returns parsed records and raises `UpstreamError` on HTTP failures.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import requests
from dotenv import load_dotenv

from src.payout_recon.errors import AuthenticationError, UpstreamError
from src.payout_recon.integrations.fanout import SKIP, run_batch
from src.payout_recon.use_cases.models import BalanceTransaction, ChargeRecord, PayoutRecord

load_dotenv(override=False)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

UrlRecorder = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class FetchedDocument:
    url: str
    status_code: int
    mime_type: str
    content: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def _full_url(url: str, params: list[tuple[str, str]] | None) -> str:
    return requests.Request("GET", url, params=params or None).prepare().url or url


def epoch_seconds(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp())


class StripeClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.stripe.com",
        timeout_seconds: int = 30,
        concurrency: int | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._concurrency = concurrency

    @classmethod
    def from_env(cls, *, api_key: str | None = None) -> "StripeClient":
        load_dotenv(override=False)
        return cls(
            api_key=api_key or os.environ.get("STRIPE_API_KEY"),
            base_url=os.environ.get("STRIPE_API_BASE_URL", "https://api.stripe.com"),
            timeout_seconds=int(os.environ.get("STRIPE_HTTP_TIMEOUT_SECONDS", "30")),
        )

    def _bearer(self) -> str:
        if not self._api_key:
            raise AuthenticationError("Stripe API key not found in configuration (STRIPE_API_KEY).")
        return self._api_key

    def _request_json(
        self,
        url: str,
        *,
        params: list[tuple[str, str]] | None = None,
        record_url: UrlRecorder | None = None,
    ) -> dict[str, Any]:
        full = _full_url(url, params)
        if record_url is not None:
            record_url(full)
        logger.debug("Accessed URL: %s", full)

        resp = requests.request(
            "GET",
            url,
            headers={
                "Authorization": f"Bearer {self._bearer()}",
                "Accept": "application/json",
            },
            params=params,
            timeout=self._timeout_seconds,
        )

        if resp.status_code >= 400:
            raise UpstreamError(
                "Stripe request failed",
                url=full,
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp.json()

    def list_payouts(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        record_url: UrlRecorder | None = None,
    ) -> list[PayoutRecord]:
        """List payouts created inside [start, end], following `starting_after` cursors."""

        self._bearer()
        url = f"{self._base_url}/v1/payouts"
        date_params: list[tuple[str, str]] = []
        if start is not None:
            date_params.append(("created[gte]", str(epoch_seconds(start))))
        if end is not None:
            date_params.append(("created[lte]", str(epoch_seconds(end))))

        payouts: list[PayoutRecord] = []
        cursor: str | None = None
        while True:
            params = [("limit", str(PAGE_SIZE))]
            if cursor:
                params.append(("starting_after", cursor))
            params.extend(date_params)

            page = self._request_json(url, params=params, record_url=record_url)
            data = page.get("data") or []
            payouts.extend(PayoutRecord.from_api(p) for p in data)
            logger.info("Fetched %d payouts (total %d)", len(data), len(payouts))

            if not page.get("has_more") or not data:
                break
            cursor = str(data[-1]["id"])

        return payouts

    def _balance_transactions_page(
        self,
        payout_id: str,
        cursor: str | None,
        record_url: UrlRecorder | None,
    ) -> dict[str, Any]:
        params = [("limit", str(PAGE_SIZE)), ("payout", payout_id)]
        if cursor:
            params.append(("starting_after", cursor))
        try:
            return self._request_json(
                f"{self._base_url}/v1/balance_transactions",
                params=params,
                record_url=record_url,
            )
        except UpstreamError as e:
            raise UpstreamError(
                f"Failed to fetch transactions for payout {payout_id}",
                url=e.url,
                status_code=e.status_code,
                body=e.body,
            ) from e

    def list_balance_transactions_for_payouts(
        self,
        payout_ids: Iterable[str],
        *,
        record_url: UrlRecorder | None = None,
    ) -> dict[str, list[BalanceTransaction]]:
        """Fetch every balance transaction of each payout.

        One parallel batch covers the first page of every payout; payouts that
        report `has_more` are fetched again in the next batch using their own
        cursor, until none has more pages. Any failure aborts the whole call.
        """

        self._bearer()
        ids = list(dict.fromkeys(payout_ids))
        out: dict[str, list[BalanceTransaction]] = {pid: [] for pid in ids}
        todo: list[tuple[str, str | None]] = [(pid, None) for pid in ids]

        while todo:
            pages = run_batch(
                todo,
                lambda job: (job[0], self._balance_transactions_page(job[0], job[1], record_url)),
                concurrency=self._concurrency,
            )
            todo = []
            for payout_id, page in pages:
                data = page.get("data") or []
                out[payout_id].extend(BalanceTransaction.from_api(t) for t in data)
                if page.get("has_more") and data:
                    todo.append((payout_id, str(data[-1]["id"])))

        return out

    def get_charges(
        self,
        charge_ids: Iterable[str],
        *,
        record_url: UrlRecorder | None = None,
    ) -> dict[str, ChargeRecord]:
        """Fetch charges in one parallel batch; failures are logged and omitted."""

        self._bearer()
        unique = list(dict.fromkeys(c for c in charge_ids if c))

        def _fetch(charge_id: str) -> tuple[str, ChargeRecord] | object:
            try:
                raw = self._request_json(
                    f"{self._base_url}/v1/charges/{charge_id}",
                    record_url=record_url,
                )
            except (UpstreamError, requests.RequestException) as e:
                logger.warning("Failed to fetch charge %s: %s", charge_id, e)
                return SKIP
            return charge_id, ChargeRecord.from_api(raw)

        fetched = run_batch(unique, _fetch, concurrency=self._concurrency)
        return dict(fetched)  # type: ignore[arg-type]

    def fetch_documents(
        self,
        urls: Iterable[str],
        *,
        record_url: UrlRecorder | None = None,
    ) -> list[FetchedDocument]:
        """GET arbitrary (receipt) URLs in one parallel batch, unauthenticated.

        Non-2xx responses are returned as-is; transport errors are logged and
        the URL is dropped from the result.
        """

        unique = list(dict.fromkeys(u for u in urls if u))

        def _fetch(url: str) -> FetchedDocument | object:
            if record_url is not None:
                record_url(url)
            logger.debug("Accessed URL: %s", url)
            try:
                resp = requests.request("GET", url, timeout=self._timeout_seconds)
            except requests.RequestException as e:
                logger.warning("Failed to fetch receipt from URL: %s: %s", url, e)
                return SKIP
            content_type = (resp.headers or {}).get("Content-Type") or "application/octet-stream"
            return FetchedDocument(
                url=url,
                status_code=resp.status_code,
                mime_type=content_type.split(";")[0].strip().lower(),
                content=resp.content or b"",
            )

        return run_batch(unique, _fetch, concurrency=self._concurrency)
