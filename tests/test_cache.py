import threading
import time

import pytest

from lavaspectro.cache import SpectrogramCache


def test_store_and_get_return_immutable_frames() -> None:
    cache = SpectrogramCache()

    assert cache.get("track") is None
    stored = cache.store("track", [bytearray(b"\x01\x02"), b"\x03\x04"])

    assert stored == (b"\x01\x02", b"\x03\x04")
    assert cache.get("track") == stored
    assert isinstance(cache.get("track"), tuple)
    assert "track" in cache
    assert len(cache) == 1


def test_store_overwrites_and_clear_empties() -> None:
    cache = SpectrogramCache()
    cache.store("track", [b"\x01"])
    cache.store("track", [b"\x02"])

    assert cache.get("track") == (b"\x02",)
    cache.clear()
    assert len(cache) == 0


def test_get_or_compute_runs_once_then_serves_cache() -> None:
    cache = SpectrogramCache()
    calls: list[str] = []

    def compute() -> list[bytes]:
        calls.append("x")
        return [b"\x05" * 4]

    first, first_computed = cache.get_or_compute("track", compute)
    second, second_computed = cache.get_or_compute("track", compute)

    assert first == second == (b"\x05" * 4,)
    assert first_computed is True
    assert second_computed is False
    assert calls == ["x"]


def test_get_or_compute_does_not_store_none() -> None:
    cache = SpectrogramCache()
    calls: list[str] = []

    def compute() -> None:
        calls.append("x")
        return None

    assert cache.get_or_compute("track", compute) == (None, True)
    assert cache.get_or_compute("track", compute) == (None, True)
    assert "track" not in cache
    assert len(calls) == 2


def test_get_or_compute_propagates_errors_without_caching() -> None:
    cache = SpectrogramCache()

    def broken() -> list[bytes]:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        cache.get_or_compute("track", broken)

    frames, computed = cache.get_or_compute("track", lambda: [b"\x01"])
    assert frames == (b"\x01",)
    assert computed is True


def test_concurrent_misses_share_one_computation() -> None:
    cache = SpectrogramCache()
    started = threading.Event()
    release = threading.Event()
    calls: list[str] = []
    results: list[tuple[object, bool]] = []
    results_lock = threading.Lock()

    def compute() -> list[bytes]:
        calls.append("x")
        started.set()
        release.wait(timeout=5.0)
        return [b"\x07" * 8]

    def worker() -> None:
        outcome = cache.get_or_compute("track", compute)
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    threads[0].start()
    assert started.wait(timeout=5.0)
    for thread in threads[1:]:
        thread.start()
    time.sleep(0.05)
    release.set()
    for thread in threads:
        thread.join(timeout=5.0)

    assert calls == ["x"]
    assert len(results) == 4
    assert {frames for frames, _computed in results} == {(b"\x07" * 8,)}
    assert sum(1 for _frames, computed in results if computed) == 1


def test_waiters_see_leader_error() -> None:
    cache = SpectrogramCache()
    started = threading.Event()
    release = threading.Event()
    errors: list[BaseException] = []

    def compute() -> list[bytes]:
        started.set()
        release.wait(timeout=5.0)
        raise ValueError("render failed")

    def worker() -> None:
        try:
            cache.get_or_compute("track", compute)
        except ValueError as exc:
            errors.append(exc)

    leader = threading.Thread(target=worker)
    leader.start()
    assert started.wait(timeout=5.0)
    waiter = threading.Thread(target=worker)
    waiter.start()
    time.sleep(0.05)
    release.set()
    leader.join(timeout=5.0)
    waiter.join(timeout=5.0)

    assert len(errors) == 2
    assert "track" not in cache
