from __future__ import annotations

import pytest

from relay_hub.integrations import SessionCache


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_mark_then_contains() -> None:
    cache = SessionCache(max_entries=10, ttl_seconds=60, clock=_FakeClock())

    assert cache.contains("c1") is False
    cache.mark("c1")
    assert cache.contains("c1") is True
    assert len(cache) == 1


def test_entries_expire_after_ttl_from_write() -> None:
    clock = _FakeClock()
    cache = SessionCache(max_entries=10, ttl_seconds=60, clock=clock)
    cache.mark("c1")

    clock.now = 59.0
    assert cache.contains("c1") is True
    clock.now = 60.0
    assert cache.contains("c1") is False
    assert len(cache) == 0


def test_rewrite_extends_ttl() -> None:
    clock = _FakeClock()
    cache = SessionCache(max_entries=10, ttl_seconds=60, clock=clock)
    cache.mark("c1")
    clock.now = 50.0
    cache.mark("c1")
    clock.now = 100.0

    assert cache.contains("c1") is True


def test_least_recently_used_entry_is_evicted_over_capacity() -> None:
    cache = SessionCache(max_entries=2, ttl_seconds=60, clock=_FakeClock())
    cache.mark("a")
    cache.mark("b")
    assert cache.contains("a") is True

    cache.mark("c")

    assert cache.contains("b") is False
    assert cache.contains("a") is True
    assert cache.contains("c") is True
    assert len(cache) == 2


def test_forget_and_clear() -> None:
    cache = SessionCache(max_entries=10, ttl_seconds=60, clock=_FakeClock())
    cache.mark("a")
    cache.mark("b")

    assert cache.forget("a") is True
    assert cache.forget("a") is False
    assert cache.contains("a") is False

    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize(("max_entries", "ttl_seconds"), [(0, 60), (10, 0)])
def test_rejects_non_positive_bounds(max_entries: int, ttl_seconds: float) -> None:
    with pytest.raises(ValueError):
        SessionCache(max_entries=max_entries, ttl_seconds=ttl_seconds)
