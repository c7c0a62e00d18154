import asyncio
import time

import pytest

from loadingcache import new_async_loading_cache


def test_concurrent_gets_share_a_single_async_load():
    calls = {"n": 0}

    async def loader(key):
        calls["n"] += 1
        await asyncio.sleep(0.05)
        return key * 2

    async def main():
        cache = new_async_loading_cache(loader, 60)
        return await asyncio.gather(*(cache.get(5) for _ in range(10)))

    results = asyncio.run(main())
    assert results == [10] * 10
    assert calls["n"] == 1


def test_sync_loader_is_accepted():
    async def main():
        cache = new_async_loading_cache(lambda k: k + 1, 60)
        first = await cache.get(1)
        await cache.put(1, 100)
        return first, await cache.get(1)

    assert asyncio.run(main()) == (2, 100)


def test_distinct_keys_do_not_block_each_other():
    async def loader(key):
        await asyncio.sleep(0.2)
        return key

    async def main():
        cache = new_async_loading_cache(loader, 60)
        start = time.monotonic()
        await asyncio.gather(*(cache.get(i) for i in range(5)))
        return time.monotonic() - start

    assert asyncio.run(main()) < 0.6


def test_expiry_with_fake_clock():
    now = {"t": 0.0}
    calls = {"n": 0}

    async def loader(key):
        calls["n"] += 1
        return calls["n"]

    async def main():
        cache = new_async_loading_cache(loader, 5, clock=lambda: now["t"])
        a = await cache.get("k")
        now["t"] = 4.9
        b = await cache.get("k")
        now["t"] = 5.0
        c = await cache.get("k")
        return a, b, c

    assert asyncio.run(main()) == (1, 1, 2)


def test_failed_load_is_retried():
    calls = {"n": 0}

    async def loader(key):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ValueError("downstream-failure")
        return "ok"

    async def main():
        cache = new_async_loading_cache(loader, 60)
        with pytest.raises(ValueError):
            await cache.get("k")
        return await asyncio.wait_for(cache.get("k"), timeout=1)

    assert asyncio.run(main()) == "ok"
    assert calls["n"] == 2


def test_cancelled_load_releases_key_lock():
    calls = {"n": 0}

    async def loader(key):
        calls["n"] += 1
        if calls["n"] == 1:
            await asyncio.sleep(10)
        return "second"

    async def main():
        cache = new_async_loading_cache(loader, 60)
        task = asyncio.create_task(cache.get("k"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await asyncio.wait_for(cache.get("k"), timeout=1)

    assert asyncio.run(main()) == "second"


def test_unhashable_key_rejected():
    async def main():
        cache = new_async_loading_cache(lambda k: k, 1)
        with pytest.raises(TypeError, match="hashable"):
            await cache.get({"a": 1})

    asyncio.run(main())


def test_put_waits_for_inflight_load_on_same_key():
    async def main():
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow(key):
            entered.set()
            await release.wait()
            return "loaded"

        cache = new_async_loading_cache(slow, 60)
        getter = asyncio.create_task(cache.get("k"))
        await entered.wait()
        putter = asyncio.create_task(cache.put("k", "put"))
        await asyncio.sleep(0.05)
        assert not putter.done()
        release.set()
        assert await getter == "loaded"
        await putter
        return await cache.get("k")

    assert asyncio.run(main()) == "put"


def test_zero_ttl_reloads_on_next_access():
    calls = {"n": 0}

    async def loader(key):
        calls["n"] += 1
        return key * 2

    async def main():
        cache = new_async_loading_cache(loader, 0)
        return await cache.get(2), await cache.get(2)

    assert asyncio.run(main()) == (4, 4)
    assert calls["n"] == 2


def test_failed_load_writes_nothing():
    async def loader(key):
        raise RuntimeError("downstream-failure")

    async def main():
        cache = new_async_loading_cache(loader, 60)
        with pytest.raises(RuntimeError):
            await cache.get("k")
        return cache

    cache = asyncio.run(main())
    assert "k" not in cache._data
    assert "k" in cache._locks
