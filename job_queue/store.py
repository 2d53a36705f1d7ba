"""
Key-value store backends for the durable job queue.

Only the handful of Redis commands the queue needs are exposed:

  lists        — LPUSH / RPOP / LLEN / LRANGE / DEL   (active + dead-letter lists)
  sorted sets  — ZADD / ZRANGEBYSCORE / ZREM          (delayed retries, scored by epoch)

Backends:
  UpstashRestStore  — Redis over HTTPS (URL + bearer token), serverless friendly
  RedisStore        — native Redis protocol via redis.asyncio
  InMemoryStore     — dicts, single-process, for development and tests

Each individual command is atomic on the server; the queue holds no locks.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import QueueConfig
from core.errors import ConfigurationError, PipelineError

logger = structlog.get_logger()


class StoreError(PipelineError):
    """The store answered, but with an error."""


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class KeyValueStore(abc.ABC):

    async def connect(self) -> None:
        """Verify connectivity. Raises when the store is unreachable."""
        await self.ping()

    @abc.abstractmethod
    async def ping(self) -> bool:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    @abc.abstractmethod
    async def lpush(self, key: str, *values: str) -> int:
        """Insert at the head. Returns the new list length."""
        ...

    @abc.abstractmethod
    async def rpop(self, key: str) -> Optional[Any]:
        """Remove and return the tail element, or None when empty."""
        ...

    @abc.abstractmethod
    async def llen(self, key: str) -> int:
        ...

    @abc.abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[Any]:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> int:
        ...

    @abc.abstractmethod
    async def zadd(self, key: str, member: str, score: float) -> int:
        ...

    @abc.abstractmethod
    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[Any]:
        ...

    @abc.abstractmethod
    async def zrem(self, key: str, member: str) -> int:
        """Returns 1 if this caller removed the member, 0 if it was already gone."""
        ...

    @abc.abstractmethod
    async def zcard(self, key: str) -> int:
        ...


# ──────────────────────────────────────────────────────────────
#  Upstash REST Implementation
# ──────────────────────────────────────────────────────────────

class UpstashRestStore(KeyValueStore):
    """
    Redis commands sent as JSON arrays to an Upstash-compatible REST endpoint.

    Transport errors are retried for every command except RPOP: a pop whose
    response was lost may already have removed the record, and popping again
    would silently skip it.
    """

    def __init__(self, url: str, token: str, timeout: float = 10.0):
        if not url or not token:
            raise ConfigurationError(
                "UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set"
            )
        self.url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=httpx.Timeout(self._timeout, connect=5.0),
            )
        return self._client

    async def _send(self, *command: Any) -> Any:
        client = await self._get_client()
        response = await client.post("", json=[str(part) for part in command])
        if response.status_code >= 400:
            logger.error(
                "upstash_api_error",
                status=response.status_code,
                body=response.text[:500],
                command=command[0],
            )
            response.raise_for_status()
        body = response.json()
        if body.get("error"):
            raise StoreError(f"{command[0]} failed: {body['error']}")
        return body.get("result")

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _command(self, *command: Any) -> Any:
        return await self._send(*command)

    async def ping(self) -> bool:
        return await self._command("PING") == "PONG"

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()

    async def lpush(self, key: str, *values: str) -> int:
        return int(await self._command("LPUSH", key, *values))

    async def rpop(self, key: str) -> Optional[Any]:
        return await self._send("RPOP", key)

    async def llen(self, key: str) -> int:
        return int(await self._command("LLEN", key) or 0)

    async def lrange(self, key: str, start: int, stop: int) -> list[Any]:
        return list(await self._command("LRANGE", key, start, stop) or [])

    async def delete(self, key: str) -> int:
        return int(await self._command("DEL", key) or 0)

    async def zadd(self, key: str, member: str, score: float) -> int:
        return int(await self._command("ZADD", key, score, member) or 0)

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[Any]:
        return list(await self._command("ZRANGEBYSCORE", key, min_score, max_score) or [])

    async def zrem(self, key: str, member: str) -> int:
        return int(await self._command("ZREM", key, member) or 0)

    async def zcard(self, key: str) -> int:
        return int(await self._command("ZCARD", key) or 0)


# ──────────────────────────────────────────────────────────────
#  Native Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisStore(KeyValueStore):

    def __init__(self, redis_url: str, token: str = ""):
        if not redis_url:
            raise ConfigurationError("REDIS_URL must be set for the redis queue backend")
        self._redis_url = redis_url
        self._token = token
        self._redis = None

    async def connect(self) -> None:
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            password=self._token or None,
            decode_responses=True,
            max_connections=20,
        )
        await self._redis.ping()
        logger.info("redis_store_connected", url=self._redis_url.split("@")[-1])

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    async def lpush(self, key: str, *values: str) -> int:
        return await self._redis.lpush(key, *values)

    async def rpop(self, key: str) -> Optional[Any]:
        return await self._redis.rpop(key)

    async def llen(self, key: str) -> int:
        return await self._redis.llen(key)

    async def lrange(self, key: str, start: int, stop: int) -> list[Any]:
        return await self._redis.lrange(key, start, stop)

    async def delete(self, key: str) -> int:
        return await self._redis.delete(key)

    async def zadd(self, key: str, member: str, score: float) -> int:
        return await self._redis.zadd(key, {member: score})

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[Any]:
        return await self._redis.zrangebyscore(key, min_score, max_score)

    async def zrem(self, key: str, member: str) -> int:
        return await self._redis.zrem(key, member)

    async def zcard(self, key: str) -> int:
        return await self._redis.zcard(key)


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryStore(KeyValueStore):
    """
    Development/test store. Lists keep Redis orientation: index 0 is the head.
    Values are stored as given, so tests can push pre-decoded mappings too.
    """

    def __init__(self):
        self._lists: dict[str, list[Any]] = {}
        self._zsets: dict[str, dict[str, float]] = {}

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    async def lpush(self, key: str, *values: Any) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def rpop(self, key: str) -> Optional[Any]:
        items = self._lists.get(key)
        if not items:
            return None
        return items.pop()

    async def llen(self, key: str) -> int:
        return len(self._lists.get(key, []))

    async def lrange(self, key: str, start: int, stop: int) -> list[Any]:
        items = self._lists.get(key, [])
        if stop < 0:
            stop = len(items) + stop
        return items[start:stop + 1]

    async def delete(self, key: str) -> int:
        existed = key in self._lists or key in self._zsets
        self._lists.pop(key, None)
        self._zsets.pop(key, None)
        return int(existed)

    async def zadd(self, key: str, member: str, score: float) -> int:
        zset = self._zsets.setdefault(key, {})
        added = member not in zset
        zset[member] = score
        return int(added)

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[Any]:
        zset = self._zsets.get(key, {})
        ready = [(score, member) for member, score in zset.items()
                 if min_score <= score <= max_score]
        return [member for _, member in sorted(ready, key=lambda x: x[0])]

    async def zrem(self, key: str, member: str) -> int:
        zset = self._zsets.get(key, {})
        return int(zset.pop(member, None) is not None)

    async def zcard(self, key: str) -> int:
        return len(self._zsets.get(key, {}))


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_store(config: QueueConfig) -> KeyValueStore:
    """Create the store backend named by ``config.store_backend``."""
    backend = config.store_backend

    if backend == "upstash":
        store = UpstashRestStore(config.rest_url, config.rest_token)
    elif backend == "redis":
        store = RedisStore(config.redis_url, token=config.rest_token)
    elif backend == "memory":
        store = InMemoryStore()
    else:
        raise ConfigurationError(f"Unknown queue store backend: {backend}")

    logger.info("queue_store_created", backend=backend)
    return store
