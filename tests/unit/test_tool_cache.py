import threading

import pytest

from infra_analyst.agent.cache import MISS, ToolCache, make_cache_key
from infra_analyst.config import CacheConfig


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_set_then_get_until_ttl_elapses() -> None:
    clock = FakeClock()
    cache = ToolCache(clock=clock)

    cache.set("k", {"total": 3}, ttl_seconds=60)
    assert cache.get("k") == {"total": 3}

    clock.advance(59.9)
    assert cache.get("k") == {"total": 3}

    clock.advance(0.1)
    assert cache.get("k") is MISS
    assert len(cache) == 0


def test_unknown_key_is_a_miss() -> None:
    cache = ToolCache()

    assert cache.get("nope") is MISS
    assert not MISS


def test_lru_eviction_keeps_recently_used() -> None:
    clock = FakeClock()
    cache = ToolCache(CacheConfig(capacity=2), clock=clock)

    cache.set("a", 1, ttl_seconds=100)
    cache.set("b", 2, ttl_seconds=100)
    assert cache.get("a") == 1
    cache.set("c", 3, ttl_seconds=100)

    assert cache.get("b") is MISS
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats()["evictions"] == 1


def test_expired_entries_evicted_before_live_ones() -> None:
    clock = FakeClock()
    cache = ToolCache(CacheConfig(capacity=2), clock=clock)

    cache.set("short", 1, ttl_seconds=5)
    cache.set("long", 2, ttl_seconds=500)
    clock.advance(10)
    cache.set("new", 3, ttl_seconds=500)

    assert cache.get("long") == 2
    assert cache.get("new") == 3


def test_invalidate_by_substring() -> None:
    cache = ToolCache()
    cache.set(make_cache_key("get_costs", {"account_ids": [1]}), "a")
    cache.set(make_cache_key("get_costs", {"account_ids": [2]}), "b")
    cache.set(make_cache_key("get_resources", {}), "c")

    assert cache.invalidate("get_costs") == 2
    assert len(cache) == 1
    assert cache.invalidate("get_costs") == 0


def test_get_or_set_computes_once() -> None:
    cache = ToolCache()
    calls = []

    def factory() -> int:
        calls.append(1)
        return 42

    assert cache.get_or_set("k", factory, 30) == (42, False)
    assert cache.get_or_set("k", factory, 30) == (42, True)
    assert len(calls) == 1

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(0.5)


def test_cache_key_ignores_param_order_and_none() -> None:
    first = make_cache_key("get_resources", {"account_ids": [2, 1], "status": "stopped", "region": None})
    second = make_cache_key("get_resources", {"status": "stopped", "account_ids": [1, 2]})

    assert first == second
    assert first.startswith("get_resources:")


def test_non_positive_ttl_rejected() -> None:
    with pytest.raises(ValueError):
        ToolCache().set("k", 1, ttl_seconds=0)


def test_concurrent_writers_respect_capacity() -> None:
    cache = ToolCache(CacheConfig(capacity=50))

    def worker(offset: int) -> None:
        for i in range(200):
            key = f"k{offset}-{i}"
            cache.set(key, i, ttl_seconds=60)
            cache.get(key)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 50
    assert cache.stats()["evictions"] == 8 * 200 - 50


def _in_thread(target) -> tuple[threading.Thread, dict]:
    outcome: dict = {}

    def _run() -> None:
        try:
            outcome["value"] = target()
        except Exception as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=_run)
    thread.start()
    return thread, outcome


def test_concurrent_misses_share_one_factory_call() -> None:
    cache = ToolCache()
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def _slow_factory() -> dict:
        calls.append(1)
        entered.set()
        release.wait(5)
        return {"accounts": 2}

    leader, leader_out = _in_thread(lambda: cache.get_or_set("get_accounts:{}", _slow_factory))
    assert entered.wait(5)
    follower, follower_out = _in_thread(lambda: cache.get_or_set("get_accounts:{}", _slow_factory))
    threading.Event().wait(0.1)
    release.set()
    leader.join(5)
    follower.join(5)

    assert len(calls) == 1
    assert leader_out["value"] == ({"accounts": 2}, False)
    assert follower_out["value"] == ({"accounts": 2}, True)


def test_waiting_callers_receive_the_factory_error() -> None:
    cache = ToolCache()
    entered = threading.Event()
    release = threading.Event()

    def _failing_factory() -> dict:
        entered.set()
        release.wait(5)
        raise RuntimeError("store timed out")

    leader, leader_out = _in_thread(lambda: cache.get_or_set("k", _failing_factory))
    assert entered.wait(5)
    follower, follower_out = _in_thread(lambda: cache.get_or_set("k", _failing_factory))
    threading.Event().wait(0.1)
    release.set()
    leader.join(5)
    follower.join(5)

    assert isinstance(leader_out["error"], RuntimeError)
    assert cache.get("k") is MISS
    # Waiting or arriving late, the second caller sees the failure too.
    assert isinstance(follower_out["error"], RuntimeError)
    assert cache.get_or_set("k", lambda: 7) == (7, False)
