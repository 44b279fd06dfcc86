import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from inference_events.core.cache import ProductCache


@pytest.fixture
def mock_redis():
    return AsyncMock()


@pytest.mark.asyncio
async def test_get_decodes_cached_json(mock_redis):
    mock_redis.get.return_value = json.dumps({"name": "lamp"})
    cache = ProductCache(mock_redis)

    assert await cache.get("products:by_id:1") == {"name": "lamp"}


@pytest.mark.asyncio
async def test_get_miss_returns_none(mock_redis):
    mock_redis.get.return_value = None
    assert await ProductCache(mock_redis).get("products:all") is None


@pytest.mark.asyncio
async def test_redis_errors_behave_like_a_miss(mock_redis):
    mock_redis.get.side_effect = RedisConnectionError("refused")
    mock_redis.set.side_effect = RedisConnectionError("refused")
    mock_redis.delete.side_effect = RedisConnectionError("refused")
    cache = ProductCache(mock_redis)

    assert await cache.get("products:all") is None
    await cache.put("products:all", [])
    await cache.invalidate("products:all")


@pytest.mark.asyncio
async def test_unreadable_entry_is_a_miss_and_is_dropped(mock_redis):
    # Arrange
    mock_redis.get.return_value = "{not json"
    cache = ProductCache(mock_redis, ttl_seconds=60)

    # Act
    value = await cache.get("products:all")

    # Assert
    assert value is None
    mock_redis.delete.assert_awaited_once_with("products:all")


@pytest.mark.asyncio
async def test_put_uses_default_ttl(mock_redis):
    cache = ProductCache(mock_redis, ttl_seconds=30)

    await cache.put("products:all", [{"id": 1}])

    mock_redis.set.assert_awaited_once_with("products:all", '[{"id": 1}]', ex=30)


@pytest.mark.asyncio
async def test_invalidate_deletes_all_keys(mock_redis):
    await ProductCache(mock_redis).invalidate("a", "b")
    mock_redis.delete.assert_awaited_once_with("a", "b")


@pytest.mark.asyncio
async def test_cache_without_client_is_a_noop():
    cache = ProductCache(None)
    assert await cache.get("products:all") is None
    await cache.put("products:all", [])
    await cache.invalidate("products:all")


def test_product_key():
    assert ProductCache.product_key("abc") == "products:by_id:abc"


@pytest.mark.asyncio
async def test_put_with_explicit_ttl(mock_redis):
    cache = ProductCache(mock_redis, ttl_seconds=30)

    await cache.put("products:all", [], ttl_seconds=5)

    mock_redis.set.assert_awaited_once_with("products:all", "[]", ex=5)


def test_non_positive_ttl_is_rejected(mock_redis):
    with pytest.raises(ValueError):
        ProductCache(mock_redis, ttl_seconds=0)
