"""Pytest configuration.

Ensures local packages can be imported consistently during test collection.
"""

import sys
from pathlib import Path

import pytest


def _prepend_sys_path(path: Path) -> None:
    resolved = str(path.resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)


REPO_ROOT = Path(__file__).resolve().parent

# Allow importing `src.*` package explicitly.
_prepend_sys_path(REPO_ROOT)


@pytest.fixture(autouse=True)
def recon_env(monkeypatch, tmp_path):
    """Keep tests away from real credentials and property files."""
    monkeypatch.delenv("STRIPE_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_SHEETS_ALLOW_WRITE", raising=False)
    monkeypatch.setenv("RECON_DOCUMENT_PROPERTIES_PATH", str(tmp_path / "document.json"))
    monkeypatch.setenv("RECON_USER_PROPERTIES_PATH", str(tmp_path / "user.json"))
