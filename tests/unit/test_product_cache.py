import pytest
from redis.exceptions import RedisError

from pulse_bridge.infra.product_cache import ProductEnrichmentCache

from tests.fixtures.clients import RedisClientStub


@pytest.fixture
def redis_stub() -> RedisClientStub:
    return RedisClientStub()


@pytest.mark.asyncio
async def test_put_then_get_refreshes_ttl(redis_stub) -> None:
    cache = ProductEnrichmentCache(redis_stub, cache_name="products", ttl_seconds=120)

    await cache.put(123456789012, {"productCode": "P-1", "sizeCode": "M"})

    assert await cache.get(123456789012) == {"productCode": "P-1", "sizeCode": "M"}
    assert redis_stub.ttls["products"] == 120


@pytest.mark.asyncio
async def test_missing_and_malformed_entries_are_misses(redis_stub) -> None:
    cache = ProductEnrichmentCache(redis_stub)
    redis_stub.store["productEnrichmentCache"] = {"42": "{not json"}

    assert await cache.get(41) is None
    assert await cache.get(42) is None
    assert await cache.get(None) is None


@pytest.mark.asyncio
async def test_bytes_values_are_decoded(redis_stub) -> None:
    cache = ProductEnrichmentCache(redis_stub)
    redis_stub.store["productEnrichmentCache"] = {"7": b'{"productCode": "P-7"}'}

    assert await cache.get(7) == {"productCode": "P-7"}


@pytest.mark.asyncio
async def test_redis_failure_on_read_is_a_miss() -> None:
    cache = ProductEnrichmentCache(RedisClientStub(fail=True))

    assert await cache.get(1) is None


@pytest.mark.asyncio
async def test_redis_failure_on_write_propagates() -> None:
    cache = ProductEnrichmentCache(RedisClientStub(fail=True))

    with pytest.raises(RedisError):
        await cache.put(1, {"productCode": "P-1"})


@pytest.mark.asyncio
async def test_evict(redis_stub) -> None:
    cache = ProductEnrichmentCache(redis_stub)
    await cache.put(5, {"productCode": "P-5"})

    assert await cache.evict(5) is True
    assert await cache.evict(5) is False
    assert await cache.get(5) is None
