"""
Tests for the queue's key-value store backends.

Covers:
  - InMemoryStore (Redis list/zset orientation)
  - UpstashRestStore command encoding, error bodies, transport retry
  - Store factory
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from config.settings import QueueConfig
from core.errors import ConfigurationError
from job_queue.store import InMemoryStore, RedisStore, StoreError, UpstashRestStore, create_store

UPSTASH_URL = "https://eu1-queue.upstash.io"


def upstash_response(body: dict, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=body, request=httpx.Request("POST", UPSTASH_URL))


@pytest.fixture
def upstash():
    store = UpstashRestStore(UPSTASH_URL + "/", "token-abc")
    client = MagicMock()
    client.post = AsyncMock(return_value=upstash_response({"result": 1}))
    store._get_client = AsyncMock(return_value=client)
    return store, client


# ──────────────────────────────────────────────────────────────
#  InMemoryStore
# ──────────────────────────────────────────────────────────────

class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_lpush_rpop_is_fifo(self, store):
        await store.lpush("q", "a")
        await store.lpush("q", "b", "c")
        assert await store.lrange("q", 0, -1) == ["c", "b", "a"]
        assert [await store.rpop("q") for _ in range(4)] == ["a", "b", "c", None]

    @pytest.mark.asyncio
    async def test_llen_and_delete(self, store):
        await store.lpush("q", "a", "b")
        assert await store.llen("q") == 2
        assert await store.delete("q") == 1
        assert await store.llen("q") == 0
        assert await store.delete("q") == 0

    @pytest.mark.asyncio
    async def test_lrange_bounds(self, store):
        await store.lpush("q", "a", "b", "c")
        assert await store.lrange("q", 0, 1) == ["c", "b"]
        assert await store.lrange("missing", 0, -1) == []

    @pytest.mark.asyncio
    async def test_zrangebyscore_ordered_by_score(self, store):
        await store.zadd("d", "late", 30)
        await store.zadd("d", "early", 10)
        await store.zadd("d", "future", 100)
        assert await store.zrangebyscore("d", 0, 50) == ["early", "late"]
        assert await store.zcard("d") == 3

    @pytest.mark.asyncio
    async def test_zrem_claims_once(self, store):
        await store.zadd("d", "job", 1)
        assert await store.zrem("d", "job") == 1
        assert await store.zrem("d", "job") == 0

    @pytest.mark.asyncio
    async def test_zadd_updates_existing_member(self, store):
        assert await store.zadd("d", "job", 1) == 1
        assert await store.zadd("d", "job", 5) == 0
        assert await store.zrangebyscore("d", 0, 2) == []


# ──────────────────────────────────────────────────────────────
#  UpstashRestStore
# ──────────────────────────────────────────────────────────────

class TestUpstashRestStore:
    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError, match="UPSTASH_REDIS_REST_TOKEN"):
            UpstashRestStore(UPSTASH_URL, "")

    def test_trailing_slash_trimmed(self):
        assert UpstashRestStore(UPSTASH_URL + "/", "t").url == UPSTASH_URL

    @pytest.mark.asyncio
    async def test_commands_sent_as_string_arrays(self, upstash):
        store, client = upstash
        assert await store.lpush("nextecom_tasks", '{"id": "j1"}') == 1
        await store.zadd("nextecom_tasks_delayed", "m", 1700000005.0)

        first, second = client.post.await_args_list
        assert first.kwargs["json"] == ["LPUSH", "nextecom_tasks", '{"id": "j1"}']
        assert second.kwargs["json"] == ["ZADD", "nextecom_tasks_delayed", "1700000005.0", "m"]

    @pytest.mark.asyncio
    async def test_null_results(self, upstash):
        store, client = upstash
        client.post.return_value = upstash_response({"result": None})
        assert await store.rpop("q") is None
        assert await store.llen("q") == 0
        assert await store.lrange("q", 0, -1) == []

    @pytest.mark.asyncio
    async def test_ping(self, upstash):
        store, client = upstash
        client.post.return_value = upstash_response({"result": "PONG"})
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_error_body_raises_store_error(self, upstash):
        store, client = upstash
        client.post.return_value = upstash_response({"error": "WRONGTYPE Operation"})
        with pytest.raises(StoreError, match="WRONGTYPE"):
            await store.llen("q")

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self, upstash):
        store, client = upstash
        client.post.return_value = upstash_response({"error": "unauthorized"}, status=401)
        with pytest.raises(httpx.HTTPStatusError):
            await store.llen("q")

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, upstash):
        store, client = upstash
        client.post.side_effect = [
            httpx.ConnectError("connection reset"),
            upstash_response({"result": 4}),
        ]
        assert await store.llen("q") == 4
        assert client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_rpop_never_retried(self, upstash):
        store, client = upstash
        client.post.side_effect = httpx.ReadTimeout("lost response")
        with pytest.raises(httpx.ReadTimeout):
            await store.rpop("q")
        assert client.post.await_count == 1


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_memory(self):
        assert isinstance(create_store(QueueConfig(store_backend="memory")), InMemoryStore)

    def test_upstash(self):
        store = create_store(QueueConfig(rest_url=UPSTASH_URL, rest_token="t"))
        assert isinstance(store, UpstashRestStore)

    def test_redis(self):
        store = create_store(QueueConfig(store_backend="redis", redis_url="redis://localhost:6379"))
        assert isinstance(store, RedisStore)

    def test_redis_requires_url(self):
        with pytest.raises(ConfigurationError, match="REDIS_URL"):
            create_store(QueueConfig(store_backend="redis"))

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="Unknown queue store backend"):
            create_store(QueueConfig(store_backend="dynamo"))
