"""Tests for the compiled-expression cache."""
from __future__ import annotations

import threading

from schema_gateway.transformations.cache import ExpressionCache, expression_key


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_get_returns_cached_value():
    cache = ExpressionCache(10)
    compiled = object()

    cache.put("$.name", compiled, 60_000)

    assert cache.get("$.name") is compiled
    assert cache.get("$.other") is None
    assert cache.size() == 1


def test_entry_expires_after_ttl():
    clock = _Clock()
    cache = ExpressionCache(10, time_func=clock)
    cache.put("$.name", "compiled", 1_000)

    clock.advance(0.999)
    assert cache.get("$.name") == "compiled"

    clock.advance(0.002)
    assert cache.get("$.name") is None
    assert cache.size() == 0


def test_lru_eviction_respects_recent_reads():
    cache = ExpressionCache(3)
    cache.put("a", "A", 60_000)
    cache.put("b", "B", 60_000)
    cache.put("c", "C", 60_000)

    # "a" is the oldest insertion but was read most recently.
    assert cache.get("a") == "A"
    cache.put("d", "D", 60_000)

    assert cache.size() == 3
    assert cache.get("b") is None
    assert cache.get("a") == "A"
    assert cache.get("c") == "C"
    assert cache.get("d") == "D"


def test_replacing_an_entry_does_not_evict_others():
    cache = ExpressionCache(2)
    cache.put("a", "A1", 60_000)
    cache.put("b", "B", 60_000)

    cache.put("a", "A2", 60_000)

    assert cache.get("a") == "A2"
    assert cache.get("b") == "B"


def test_sources_sharing_a_long_prefix_do_not_collide():
    prefix = '{"padding": "' + "x" * 150 + '", '
    first = prefix + '"value": a}'
    second = prefix + '"value": b}'
    cache = ExpressionCache(10)

    cache.put(first, "first", 60_000)
    cache.put(second, "second", 60_000)

    assert expression_key(first) != expression_key(second)
    assert cache.get(first) == "first"
    assert cache.get(second) == "second"
    assert cache.size() == 2


def test_clear_empties_cache():
    cache = ExpressionCache(5)
    cache.put("a", "A", 60_000)
    cache.put("b", "B", 60_000)

    cache.clear()

    assert len(cache) == 0
    assert cache.get("a") is None


def test_concurrent_puts_stay_within_capacity():
    cache = ExpressionCache(50)

    def writer(offset: int) -> None:
        for index in range(200):
            cache.put(f"expr-{offset}-{index}", index, 60_000)
            cache.get(f"expr-{offset}-{index // 2}")

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert cache.size() == 50
