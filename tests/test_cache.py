"""
Unit tests for cache key generation and cache stores.
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from helpers import make_weather
from obsagg.cache import CacheStore, InMemoryCacheStore, RedisCacheStore, generate_cache_key


def scan_results(*keys):
    async def scan_iter(match=None):
        for key in keys:
            yield key

    return scan_iter


class TestCacheKeys:

    def test_key_format(self):
        assert generate_cache_key("weather", "jfk ", "2025-01-15") == "weather:JFK:2025-01-15"
        assert generate_cache_key("flight", "bt318", "2025-01-15") == "flight:BT318:2025-01-15"

    def test_date_defaults_to_today(self):
        key = generate_cache_key("weather", "JFK")

        namespace, subject, day = key.split(":")
        assert (namespace, subject) == ("weather", "JFK")
        assert len(day) == 10


class TestInMemoryCacheStore:

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = InMemoryCacheStore()
        observation = make_weather()

        assert await store.get("k") is None
        await store.set("k", observation)
        stored = await store.get("k")
        assert stored == observation
        assert stored is not observation
        assert await store.size() == 1

        await store.delete("k")
        await store.delete("missing")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_entries_isolated_from_callers(self):
        store = InMemoryCacheStore()
        observation = make_weather(temperature=20.0)
        await store.set("k", observation)

        observation.temperature = -99.0
        (await store.get("k")).source_contributions.clear()

        stored = await store.get("k")
        assert stored.temperature == 20.0
        assert len(stored.source_contributions) == 1

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryCacheStore()
        await store.set("a", 1)
        await store.set("b", 2)

        await store.clear()

        assert await store.size() == 0

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryCacheStore(), CacheStore)
        assert isinstance(RedisCacheStore(client=AsyncMock()), CacheStore)


class TestRedisCacheStore:

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, client):
        return RedisCacheStore(prefix="test", client=client)

    @pytest.mark.asyncio
    async def test_set_serializes_models(self, store, client):
        observation = make_weather(temperature=7.5)

        await store.set("weather:JFK:2025-01-15", observation)

        key, payload = client.set.await_args.args
        assert key == "test:weather:JFK:2025-01-15"
        assert json.loads(payload)["temperature"] == 7.5

    @pytest.mark.asyncio
    async def test_set_serializes_plain_values(self, store, client):
        await store.set("k", {"a": 1})

        client.set.assert_awaited_once_with("test:k", '{"a": 1}')

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, store, client):
        client.get.return_value = '{"temperature": 7.5}'

        assert await store.get("k") == {"temperature": 7.5}
        client.get.assert_awaited_once_with("test:k")

    @pytest.mark.asyncio
    async def test_get_miss(self, store, client):
        client.get.return_value = None

        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_undecodable_entry_discarded(self, store, client):
        client.get.return_value = "not json"

        assert await store.get("k") is None
        client.delete.assert_awaited_once_with("test:k")

    @pytest.mark.asyncio
    async def test_clear_only_touches_prefix(self, store, client):
        client.scan_iter = MagicMock(side_effect=scan_results("test:a", "test:b"))
        client.delete.return_value = 2

        await store.clear()

        client.scan_iter.assert_called_once_with(match="test:*")
        client.delete.assert_awaited_once_with("test:a", "test:b")

    @pytest.mark.asyncio
    async def test_clear_empty(self, store, client):
        client.scan_iter = MagicMock(side_effect=scan_results())

        await store.clear()

        client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_size(self, store, client):
        client.scan_iter = MagicMock(side_effect=scan_results("test:a", "test:b", "test:c"))

        assert await store.size() == 3

    @pytest.mark.asyncio
    async def test_close(self, store, client):
        await store.close()

        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_built_from_url(self):
        with patch("obsagg.cache.redis.from_url") as from_url:
            store = RedisCacheStore("redis://cache:6379/1")

            client = await store.get_client()

        assert client is from_url.return_value
        assert from_url.call_args.args == ("redis://cache:6379/1",)
        assert from_url.call_args.kwargs["decode_responses"] is True
