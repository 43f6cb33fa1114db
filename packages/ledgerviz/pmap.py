"""Order-preserving, bounded thread fan-out for independent per-source work.

``p_map(items, mapper, concurrency=N)`` runs ``mapper`` over ``items`` on at
most ``N`` worker threads and returns the results in input order, whatever
order the workers finish in.

- ``stop_on_error`` (default True): the first mapper error propagates and
  not-yet-started work is cancelled. When False, every item runs and the
  failures are raised together as an ``ExceptionGroup``.
- ``cancel``: a :class:`threading.Event`. Once set, nothing new is submitted,
  queued work is cancelled, and :class:`concurrent.futures.CancelledError` is
  raised. Calls already running are allowed to finish; their results are
  discarded.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, CancelledError, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

# How often a waiting coordinator re-checks the cancel event.
_POLL_SECONDS = 0.05


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    cancel: threading.Event | None = None,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight."""

    if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future[OutT], int] = {}
    submitted = 0

    def _cancelled() -> bool:
        return cancel is not None and cancel.is_set()

    def _submit(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        nonlocal submitted
        if _cancelled():
            return None
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        submitted += 1
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            timeout = _POLL_SECONDS if cancel is not None else None
            done, active = wait(active, timeout=timeout, return_when=FIRST_COMPLETED)
            if _cancelled():
                pool.shutdown(wait=False, cancel_futures=True)
                raise CancelledError("p_map: cancelled")

            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)

            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if _cancelled():
        raise CancelledError("p_map: cancelled")
    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in range(submitted)]


__all__ = ["p_map"]
