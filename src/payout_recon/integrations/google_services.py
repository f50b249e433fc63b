"""Service-account backed Google API clients (Sheets, Drive, Gmail)."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def default_service_account_path() -> str:
    return os.environ.get("GOOGLE_SA_FILE") or os.path.expanduser("~/Desktop/service-account.json")


def build_google_service(
    api: str,
    version: str,
    *,
    scopes: list[str],
    service_account_path: str,
    subject: str | None = None,
) -> Any:
    # Lazy import so unit tests that only use the deterministic helpers
    # do not require Google client libs.
    from google.oauth2 import service_account
    from googleapiclient.discovery import build

    path = os.path.expanduser(service_account_path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Service account file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        sa = json.load(f)
    creds = service_account.Credentials.from_service_account_info(sa, scopes=scopes)
    if subject:
        # Domain-wide delegation (needed to send mail as a workspace user).
        creds = creds.with_subject(subject)

    return build(api, version, credentials=creds, cache_discovery=False)
