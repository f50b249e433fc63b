from __future__ import annotations

import threading
import time

import pytest

from src.payout_recon.integrations.fanout import SKIP, default_concurrency, run_batch


def test_run_batch_preserves_input_order() -> None:
    def slow_square(n: int) -> int:
        time.sleep(0.01 * (5 - n))
        return n * n

    assert run_batch([1, 2, 3, 4], slow_square, concurrency=4) == [1, 4, 9, 16]


def test_run_batch_respects_concurrency_cap() -> None:
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def work(_: int) -> None:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1

    run_batch(range(10), work, concurrency=2)
    assert state["peak"] <= 2


def test_run_batch_drops_skipped_items() -> None:
    assert run_batch([1, 2, 3], lambda n: SKIP if n == 2 else n, concurrency=2) == [1, 3]


def test_run_batch_propagates_first_error() -> None:
    def boom(n: int) -> int:
        if n == 2:
            raise ValueError("bad item")
        return n

    with pytest.raises(ValueError, match="bad item"):
        run_batch([1, 2, 3], boom, concurrency=1)


def test_run_batch_rejects_invalid_concurrency() -> None:
    with pytest.raises(ValueError):
        run_batch([1], lambda n: n, concurrency=0)


def test_default_concurrency_is_clamped(monkeypatch) -> None:
    monkeypatch.setenv("RECON_FANOUT_CONCURRENCY", "500")
    assert default_concurrency() == 32
    monkeypatch.setenv("RECON_FANOUT_CONCURRENCY", "nope")
    assert default_concurrency() == 8
