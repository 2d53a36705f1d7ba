"""
Event Broker — topic-style publish/consume with one named queue per event type.

Topology (exchange ``nextecom_events``):

  publish(event) ──▶ <exchange>:<routing_key> ──group <queue>──▶ consume(handler)
                                   │
                                   │ delivered > max_deliveries
                                   ▼
                     <exchange>:<routing_key>:dead

Routing key = event type value. Each queue is bound to exactly one routing key.

Delivery contract:
  - a message is acknowledged only after its handler returns
  - a raising handler leaves the message unacknowledged; the broker
    redelivers it later (there is no retry counter in the consumer)
  - messages for one queue are handled one at a time, in order

Backends:
  RedisStreamBroker — Redis Streams + consumer groups (redis.asyncio)
  InMemoryBroker    — asyncio queues, single-process, for development and tests
"""
from __future__ import annotations

import asyncio
import socket
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from config.settings import BrokerConfig
from core.errors import BrokerNotConnectedError, ConfigurationError
from models.schemas import Event, EventType

logger = structlog.get_logger()

DEFAULT_EXCHANGE = "nextecom_events"

EventHandler = Callable[[Event], Awaitable[Any]]


@dataclass(frozen=True)
class QueueBinding:
    event_type: EventType
    queue_name: str

    @property
    def routing_key(self) -> str:
        return self.event_type.value


QUEUE_BINDINGS: dict[EventType, QueueBinding] = {
    b.event_type: b for b in (
        QueueBinding(EventType.INVOICE_GENERATION, "invoice_generation"),
        QueueBinding(EventType.LOW_STOCK_ALERT, "low_stock_alerts"),
        QueueBinding(EventType.NEW_CUSTOMER_REGISTRATION, "new_customer_registrations"),
        QueueBinding(EventType.NEW_PRODUCT_CREATION, "new_product_creations"),
        QueueBinding(EventType.NEW_ORDER_CREATION, "new_order_creations"),
    )
}


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class EventBroker(ABC):

    @abstractmethod
    async def connect(self):
        """Connect and declare every queue binding. Raises when unreachable."""
        ...

    @abstractmethod
    async def close(self):
        ...

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    async def publish(self, event: Event):
        ...

    @abstractmethod
    async def consume(self, event_type: EventType, handler: EventHandler):
        """Deliver messages from the event type's queue until stopped or cancelled."""
        ...

    @abstractmethod
    def stop_consuming(self):
        """Stop taking new deliveries. Handlers already running are not interrupted."""
        ...


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisStreamBroker(EventBroker):
    """
    - one stream per routing key, one consumer group per queue name
    - XACK after the handler returns
    - unacked messages idle longer than redelivery_idle_ms are XCLAIMed
      and handed to the handler again
    - past max_deliveries a message is copied to the dead stream and acked
    """

    def __init__(
        self,
        url: str,
        exchange: str = DEFAULT_EXCHANGE,
        consumer_name: str = "",
        block_ms: int = 2000,
        redelivery_idle_ms: int = 30000,
        max_deliveries: int = 5,
    ):
        if not url:
            raise ConfigurationError("BROKER_URL (or RABBITMQ_URL) must be set")
        self._url = url
        self.exchange = exchange
        self.consumer_name = consumer_name or f"{socket.gethostname()}-{uuid.uuid4().hex[:6]}"
        self.block_ms = block_ms
        self.redelivery_idle_ms = redelivery_idle_ms
        self.max_deliveries = max_deliveries
        self._redis = None
        self._running = False

    def stream_key(self, event_type: EventType) -> str:
        return f"{self.exchange}:{QUEUE_BINDINGS[event_type].routing_key}"

    def dead_key(self, event_type: EventType) -> str:
        return f"{self.stream_key(event_type)}:dead"

    @property
    def is_ready(self) -> bool:
        return self._redis is not None

    async def connect(self):
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(self._url, decode_responses=True, max_connections=20)
        await self._redis.ping()
        for binding in QUEUE_BINDINGS.values():
            await self._ensure_group(self.stream_key(binding.event_type), binding.queue_name)
        self._running = True
        logger.info("broker_connected",
                    exchange=self.exchange,
                    queues=[b.queue_name for b in QUEUE_BINDINGS.values()])

    async def _ensure_group(self, stream: str, group: str):
        from redis.exceptions import ResponseError
        try:
            await self._redis.xgroup_create(stream, group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("broker_connection_closed", exchange=self.exchange)

    def stop_consuming(self):
        self._running = False

    async def publish(self, event: Event):
        if not self.is_ready:
            raise BrokerNotConnectedError()
        stream = self.stream_key(event.type)
        message_id = await self._redis.xadd(stream, {"event": event.to_json()})
        logger.info("event_published",
                    event_id=event.id,
                    type=event.type.value,
                    stream=stream,
                    message_id=message_id)

    async def consume(self, event_type: EventType, handler: EventHandler):
        if not self.is_ready:
            raise BrokerNotConnectedError()
        binding = QUEUE_BINDINGS[event_type]
        stream = self.stream_key(event_type)
        logger.info("consumer_started",
                    queue=binding.queue_name,
                    stream=stream,
                    consumer=self.consumer_name)

        while self._running:
            try:
                await self._redeliver_idle(event_type, binding.queue_name, handler)

                messages = await self._redis.xreadgroup(
                    groupname=binding.queue_name,
                    consumername=self.consumer_name,
                    streams={stream: ">"},
                    count=1,
                    block=self.block_ms,
                )
                for _, stream_messages in messages or []:
                    for message_id, fields in stream_messages:
                        await self._deliver(event_type, binding.queue_name,
                                            message_id, fields, handler)

            except asyncio.CancelledError:
                break
            except Exception as e:
                if not self._running:
                    break
                logger.error("consumer_error", queue=binding.queue_name, error=str(e))
                await asyncio.sleep(1)

        logger.info("consumer_stopped", queue=binding.queue_name)

    async def _deliver(self, event_type: EventType, group: str, message_id: str,
                       fields: Optional[dict[str, str]], handler: EventHandler):
        stream = self.stream_key(event_type)
        try:
            event = Event.from_json((fields or {}).get("event", ""))
        except (ValueError, ValidationError) as e:
            await self._dead_letter(event_type, group, message_id, fields or {}, str(e))
            return

        try:
            await handler(event)
        except Exception as e:
            # Left pending: redelivered once idle past redelivery_idle_ms.
            logger.error("event_handler_failed",
                         event_id=event.id,
                         type=event.type.value,
                         queue=group,
                         message_id=message_id,
                         error=str(e))
            return

        await self._redis.xack(stream, group, message_id)
        logger.debug("event_acked", event_id=event.id, type=event.type.value,
                     message_id=message_id)

    async def _redeliver_idle(self, event_type: EventType, group: str, handler: EventHandler):
        stream = self.stream_key(event_type)
        pending = await self._redis.xpending_range(
            stream, group, min="-", max="+", count=10, idle=self.redelivery_idle_ms,
        )
        for entry in pending:
            message_id = entry["message_id"]
            if entry["times_delivered"] >= self.max_deliveries:
                found = await self._redis.xrange(stream, min=message_id, max=message_id)
                fields = found[0][1] if found else {}
                await self._dead_letter(
                    event_type, group, message_id, fields,
                    f"Exceeded {self.max_deliveries} deliveries",
                )
                continue

            claimed = await self._redis.xclaim(
                stream, group, self.consumer_name,
                min_idle_time=self.redelivery_idle_ms,
                message_ids=[message_id],
            )
            for claimed_id, fields in claimed:
                logger.warning("event_redelivered",
                               queue=group,
                               message_id=claimed_id,
                               deliveries=entry["times_delivered"] + 1)
                await self._deliver(event_type, group, claimed_id, fields, handler)

    async def _dead_letter(self, event_type: EventType, group: str, message_id: str,
                           fields: dict[str, str], reason: str):
        await self._redis.xadd(self.dead_key(event_type), {
            **fields,
            "queue": group,
            "message_id": message_id,
            "error": reason,
        })
        await self._redis.xack(self.stream_key(event_type), group, message_id)
        logger.error("event_dead_lettered",
                     type=event_type.value,
                     queue=group,
                     message_id=message_id,
                     error=reason)


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryBroker(EventBroker):
    """
    Development/test broker. A failed delivery goes back on its queue
    until it has been delivered ``max_deliveries`` times, then it lands in
    ``dead_letters`` as (event, error).
    """

    def __init__(self, max_deliveries: int = 5, poll_interval: float = 0.5):
        self.max_deliveries = max_deliveries
        self.poll_interval = poll_interval
        self._queues: dict[EventType, asyncio.Queue] = {}
        self.dead_letters: list[tuple[Event, str]] = []
        self._connected = False
        self._running = False

    def _get_queue(self, event_type: EventType) -> asyncio.Queue:
        if event_type not in self._queues:
            self._queues[event_type] = asyncio.Queue()
        return self._queues[event_type]

    @property
    def is_ready(self) -> bool:
        return self._connected

    async def connect(self):
        for event_type in QUEUE_BINDINGS:
            self._get_queue(event_type)
        self._connected = True
        self._running = True
        logger.info("inmemory_broker_connected")

    async def close(self):
        self._running = False
        self._connected = False

    def stop_consuming(self):
        self._running = False

    def pending(self, event_type: EventType) -> int:
        return self._get_queue(event_type).qsize()

    async def publish(self, event: Event):
        if not self._connected:
            raise BrokerNotConnectedError()
        await self._get_queue(event.type).put((event.to_json(), 0))
        logger.info("event_published", event_id=event.id, type=event.type.value)

    async def consume(self, event_type: EventType, handler: EventHandler):
        if not self._connected:
            raise BrokerNotConnectedError()
        q = self._get_queue(event_type)
        logger.info("consumer_started", queue=QUEUE_BINDINGS[event_type].queue_name)

        while self._running:
            try:
                body, deliveries = await asyncio.wait_for(q.get(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            event = Event.from_json(body)
            deliveries += 1
            try:
                await handler(event)
            except Exception as e:
                logger.error("event_handler_failed",
                             event_id=event.id,
                             type=event.type.value,
                             deliveries=deliveries,
                             error=str(e))
                if deliveries >= self.max_deliveries:
                    self.dead_letters.append((event, str(e)))
                    logger.error("event_dead_lettered", event_id=event.id,
                                 type=event.type.value, error=str(e))
                else:
                    q.put_nowait((body, deliveries))

        logger.info("consumer_stopped", queue=QUEUE_BINDINGS[event_type].queue_name)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_broker(config: BrokerConfig) -> EventBroker:
    if config.backend == "redis":
        return RedisStreamBroker(
            url=config.url,
            exchange=config.exchange,
            consumer_name=config.consumer_name,
            block_ms=config.block_ms,
            redelivery_idle_ms=config.redelivery_idle_ms,
            max_deliveries=config.max_deliveries,
        )
    if config.backend == "memory":
        return InMemoryBroker(max_deliveries=config.max_deliveries)
    raise ConfigurationError(f"Unknown broker backend: {config.backend}")
