from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError

import pytest

from ledgerviz.pmap import p_map


def test_preserves_input_order_when_work_finishes_out_of_order():
    def slow_first(i: int) -> int:
        time.sleep(0.05 if i == 0 else 0.0)
        return i * 10

    assert p_map(range(5), slow_first, concurrency=3) == [0, 10, 20, 30, 40]


def test_concurrency_is_bounded():
    lock = threading.Lock()
    inflight = 0
    peak = 0

    def work(i: int) -> int:
        nonlocal inflight, peak
        with lock:
            inflight += 1
            peak = max(peak, inflight)
        time.sleep(0.02)
        with lock:
            inflight -= 1
        return i

    assert p_map(range(8), work, concurrency=2) == list(range(8))
    assert peak <= 2


@pytest.mark.parametrize("bad", [0, -1, True, 1.5])
def test_rejects_invalid_concurrency(bad):
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=bad)


def test_first_error_propagates():
    def boom(i: int) -> int:
        if i == 2:
            raise RuntimeError("boom")
        return i

    with pytest.raises(RuntimeError, match="boom"):
        p_map(range(4), boom, concurrency=1)


def test_collects_all_errors_when_not_stopping():
    def boom(i: int) -> int:
        if i % 2:
            raise ValueError(str(i))
        return i

    with pytest.raises(ExceptionGroup) as ei:
        p_map(range(4), boom, concurrency=2, stop_on_error=False)
    assert sorted(str(e) for e in ei.value.exceptions) == ["1", "3"]


def test_cancel_before_start_runs_nothing():
    cancel = threading.Event()
    cancel.set()
    calls: list[int] = []
    with pytest.raises(CancelledError):
        p_map(range(3), calls.append, concurrency=2, cancel=cancel)
    assert calls == []


def test_cancel_mid_run_stops_submitting():
    cancel = threading.Event()
    started: list[int] = []

    def work(i: int) -> int:
        started.append(i)
        if i == 0:
            cancel.set()
        time.sleep(0.01)
        return i

    with pytest.raises(CancelledError):
        p_map(range(50), work, concurrency=1, cancel=cancel)
    assert len(started) < 50


def test_empty_input():
    assert p_map([], lambda x: x, concurrency=4) == []
