"""Fan-out batches over a bounded thread pool.

A batch is a set of independent IO calls (one per payout, charge or receipt)
issued together and awaited as a unit. Results come back in input order;
mappers may return `SKIP` to drop an element. The first failure propagates
and calls not yet started are cancelled.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

SKIP: object = object()


def default_concurrency() -> int:
    raw = os.environ.get("RECON_FANOUT_CONCURRENCY")
    try:
        value = int(raw) if raw else 8
    except ValueError:
        value = 8
    return max(1, min(value, 32))


def run_batch(
    items: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int | None = None,
) -> list[OutT]:
    limit = concurrency if concurrency is not None else default_concurrency()
    if not isinstance(limit, int) or limit < 1:
        raise ValueError("concurrency must be a positive integer")

    batch = list(items)
    if not batch:
        return []

    with ThreadPoolExecutor(max_workers=min(limit, len(batch))) as pool:
        futures = [pool.submit(mapper, item) for item in batch]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        failed = next((f for f in futures if f in done and f.exception() is not None), None)
        if failed is not None:
            pool.shutdown(wait=False, cancel_futures=True)
            raise failed.exception()

    return [r for r in (f.result() for f in futures) if r is not SKIP]
