from pixel_analytics.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)
    cache.set("pixel:a", "config")

    clock.advance(59)
    assert cache.get("pixel:a") == "config"

    clock.advance(1)
    assert cache.get("pixel:a") is None
    assert cache.stats()["size"] == 0


def test_per_entry_ttl_and_default():
    clock = FakeClock()
    cache = TTLCache(default_ttl=60, clock=clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)

    clock.advance(10)
    assert cache.get("short", "missing") == "missing"
    assert cache.get("long") == 2


def test_zero_ttl_disables_caching():
    cache = TTLCache(default_ttl=0)
    cache.set("pixel:a", "config")
    assert cache.get("pixel:a") is None


def test_delete_and_prefix_invalidation():
    cache = TTLCache()
    cache.set("pixel:a", 1)
    cache.set("pixel:b", 2)
    cache.set("other:c", 3)

    assert cache.delete("pixel:a") is True
    assert cache.delete("pixel:a") is False
    assert cache.invalidate_prefix("pixel:") == 1
    assert cache.stats() == {"size": 1, "keys": ["other:c"]}

    cache.clear()
    assert cache.stats()["size"] == 0


def test_purge_expired():
    clock = FakeClock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100)

    clock.advance(50)
    assert cache.purge_expired() == 1
    assert cache.stats()["keys"] == ["b"]
