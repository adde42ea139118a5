from catalog_sync.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("a", b"segment")

    clock.now = 9.9
    assert cache.get("a") == b"segment"
    clock.now = 10
    assert cache.get("a") is None
    assert "a" not in cache
    assert len(cache) == 0


def test_per_entry_ttl_and_default():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2)

    clock.now = 5
    assert cache.get("short", "gone") == "gone"
    assert cache.get("long") == 2


def test_sweep_evicts_only_expired_entries():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("old", 1)
    clock.now = 5
    cache.set("new", 2)

    clock.now = 12
    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("new") == 2


def test_refreshed_entry_survives_sweep():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("key", "v1")
    clock.now = 11
    cache.set("key", "v2")

    assert cache.sweep() == 0
    assert cache.get("key") == "v2"


def test_delete_and_clear():
    cache = TTLCache(60)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.delete("a")
    assert "a" not in cache
    assert cache.get("b") == 2

    cache.clear()
    assert len(cache) == 0
