import pytest

from nowplaying.shared.cache import MISSING, AsyncTTLCache, cached


class Upstream:
    def __init__(self):
        self.calls = 0
        self.fail = False

    async def fetch(self, key: str) -> str:
        self.calls += 1
        if self.fail:
            raise ConnectionError("upstream down")
        return f"{key}-{self.calls}"


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_expired_value_stays_last_known():
    ticker = Ticker()
    cache = AsyncTTLCache(maxsize=4, ttl=60, timer=ticker)
    cache.set("a", 1)
    assert cache.get("a") == 1

    ticker.now = 61
    assert cache.get("a") is MISSING
    assert cache.get_stale("a") == 1


def test_forget_drops_both_copies():
    cache = AsyncTTLCache(maxsize=4, ttl=60)
    cache.set("a", 1)

    cache.forget("a")

    assert cache.get("a") is MISSING
    assert cache.get_stale("a") is MISSING


def test_stale_store_is_bounded():
    cache = AsyncTTLCache(maxsize=2, ttl=60)
    for key in ("a", "b", "c"):
        cache.set(key, key)

    assert cache.get_stale("a") is MISSING
    assert cache.get_stale("c") == "c"


async def test_cached_reuses_fresh_value():
    cache = AsyncTTLCache(ttl=60)
    upstream = Upstream()
    fetch = cached(cache, key_func=lambda key: key)(upstream.fetch)

    assert await fetch("x") == "x-1"
    assert await fetch("x") == "x-1"
    assert upstream.calls == 1


async def test_cached_falls_back_to_stale():
    ticker = Ticker()
    cache = AsyncTTLCache(ttl=60, timer=ticker)
    upstream = Upstream()
    fetch = cached(cache, key_func=lambda key: key, retry=2, retry_delay=0)(upstream.fetch)

    await fetch("x")
    ticker.now = 61
    upstream.fail = True

    assert await fetch("x") == "x-1"
    assert upstream.calls == 3


async def test_forgotten_key_is_loaded_again():
    cache = AsyncTTLCache(ttl=60)
    upstream = Upstream()
    fetch = cached(cache, key_func=lambda key: key)(upstream.fetch)

    await fetch("x")
    cache.forget("x")

    assert await fetch("x") == "x-2"


async def test_cached_raises_without_stale_value():
    cache = AsyncTTLCache(ttl=60)
    upstream = Upstream()
    upstream.fail = True
    fetch = cached(cache, key_func=lambda key: key)(upstream.fetch)

    with pytest.raises(ConnectionError):
        await fetch("x")


async def test_cached_only_retries_listed_errors():
    cache = AsyncTTLCache(ttl=60)

    @cached(cache, key_func=lambda: "k", retry=3, retry_delay=0, retry_on=(ValueError,))
    async def broken():
        raise KeyError("no")

    with pytest.raises(KeyError):
        await broken()
