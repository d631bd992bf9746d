from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetstore.cache import TTLCache, generate_cache_key


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_generate_cache_key_is_stable() -> None:
    assert generate_cache_key("todos", user_id=3, status="open") == "todos:status=open:user_id=3"
    assert generate_cache_key("todos", status=None) == "todos"


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = TTLCache(30, clock=clock)
    cache.set("todos", [1])

    clock.now += 29
    assert cache.get("todos") == [1]
    clock.now += 1
    assert cache.get("todos") is None
    assert cache.size() == 0


def test_zero_ttl_disables_caching() -> None:
    cache = TTLCache(0)
    cache.set("todos", [1])

    assert cache.get("todos") is None


def test_invalidate_pattern_drops_matching_keys() -> None:
    cache = TTLCache(30)
    cache.set("book:todos:all", 1)
    cache.set("book:todos:open", 2)
    cache.set("book:users:all", 3)

    assert cache.invalidate_pattern(r"^book:todos") == 2
    assert cache.get("book:users:all") == 3

    cache.invalidate("book:users:all")
    assert cache.size() == 0
    cache.set("x", 1)
    cache.clear()
    assert cache.get("x") is None


def test_set_is_skipped_when_invalidated_during_the_read() -> None:
    cache = TTLCache(30)
    seen = cache.generation()

    cache.invalidate_pattern(r"^book:todos")

    assert cache.set("book:todos:all", ["stale"], generation=seen) is False
    assert cache.get("book:todos:all") is None
    assert cache.set("book:todos:all", ["fresh"], generation=cache.generation()) is True
    assert cache.get("book:todos:all") == ["fresh"]
