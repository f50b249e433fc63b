"""Gmail API sender for the run summary.

Service accounts can only send mail through domain-wide delegation, so the
sender address (`GMAIL_SENDER`) is also the impersonated workspace user.
"""

from __future__ import annotations

import base64
import os
from email.message import EmailMessage
from typing import Any

from dotenv import load_dotenv

from src.payout_recon.integrations.google_services import (
    build_google_service,
    default_service_account_path,
)

load_dotenv()


def build_raw_message(*, sender: str, to: str, subject: str, body: str) -> str:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")


class GmailSender:
    def __init__(self, *, sender: str, service_account_path: str) -> None:
        self._sender = sender
        self._service_account_path = os.path.expanduser(service_account_path)
        self._service: Any = None

    @classmethod
    def from_env(cls) -> "GmailSender":
        sender = os.environ.get("GMAIL_SENDER")
        if not sender:
            raise ValueError("Missing GMAIL_SENDER")
        return cls(sender=sender, service_account_path=default_service_account_path())

    def _gmail(self) -> Any:
        if self._service is None:
            self._service = build_google_service(
                "gmail",
                "v1",
                scopes=["https://www.googleapis.com/auth/gmail.send"],
                service_account_path=self._service_account_path,
                subject=self._sender,
            )
        return self._service

    def send(self, *, to: str, subject: str, body: str) -> dict[str, Any]:
        raw = build_raw_message(sender=self._sender, to=to, subject=subject, body=body)
        return (
            self._gmail()
            .users()
            .messages()
            .send(userId="me", body={"raw": raw})
            .execute(num_retries=2)
        )
