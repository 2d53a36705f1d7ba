"""
Event Consumer — long-lived process that subscribes one handler per event type.

State machine:

  stopped ──start()──▶ connecting ──connected──▶ running
     ▲                     │                        │ stop() / signal /
     │                     │ connect failed         │ unhandled loop error
     │◀────────────────────┘                        ▼
     └──────────────── broker closed ◀──── shutting_down

start() is called once at process boot. A connect failure is fatal: the
state returns to stopped and the error propagates to the entry point.

The consumer keeps no retry counter of its own. A handler exception goes
back to the broker, which redelivers or dead-letters the message.
"""
from __future__ import annotations

import asyncio
import signal
import structlog
from enum import Enum
from typing import Any, Optional

from events.broker import QUEUE_BINDINGS, EventBroker, EventHandler
from models.schemas import EventType

logger = structlog.get_logger()

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class ConsumerState(str, Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class EventConsumer:
    """
    Usage:
        consumer = EventConsumer(broker, EventHandlers(mailer, invoices).handlers())
        await consumer.start()
        consumer.install_signal_handlers()
        exit_code = await consumer.run_forever()
    """

    def __init__(
        self,
        broker: EventBroker,
        handlers: dict[EventType, EventHandler],
        heartbeat_interval: float = 60.0,
        shutdown_grace_seconds: float = 10.0,
    ):
        self.broker = broker
        self.handlers = {EventType(t): h for t, h in handlers.items()}
        self.heartbeat_interval = heartbeat_interval
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.state = ConsumerState.STOPPED
        self.exit_code = 0
        self._active: dict[EventType, bool] = {}
        self._tasks: dict[EventType, asyncio.Task] = {}
        self._stopped = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

    def status(self) -> dict[str, bool]:
        """event type → whether its consumer is currently active."""
        return {t.value: self._active.get(t, False) for t in QUEUE_BINDINGS}

    async def start(self) -> None:
        if self.state != ConsumerState.STOPPED:
            logger.warning("event_consumer_already_started", state=self.state.value)
            return

        self.state = ConsumerState.CONNECTING
        self._stopped.clear()
        logger.info("event_consumer_starting", event_types=[t.value for t in self.handlers])
        try:
            await self.broker.connect()
        except Exception as e:
            self.state = ConsumerState.STOPPED
            logger.error("broker_connection_failed", error=str(e))
            raise

        for event_type, handler in self.handlers.items():
            self._active[event_type] = True
            self._tasks[event_type] = asyncio.create_task(
                self._consume(event_type, handler),
                name=f"consume:{QUEUE_BINDINGS[event_type].queue_name}",
            )

        self.state = ConsumerState.RUNNING
        logger.info("event_consumer_running", status=self.status())

    async def _consume(self, event_type: EventType, handler: EventHandler) -> None:
        try:
            await self.broker.consume(event_type, handler)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("event_consumer_crashed",
                         type=event_type.value,
                         error=str(e),
                         exc_info=True)
        finally:
            self._active[event_type] = False

    async def stop(self, reason: str = "requested") -> None:
        """
        Stop taking deliveries, give in-flight handlers the grace period to
        finish, then close the broker connection.
        """
        if self.state in (ConsumerState.STOPPED, ConsumerState.SHUTTING_DOWN):
            return

        self.state = ConsumerState.SHUTTING_DOWN
        logger.info("event_consumer_shutting_down", reason=reason)
        self.broker.stop_consuming()

        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        try:
            await self.broker.close()
        except Exception as e:
            logger.error("broker_close_failed", error=str(e))

        self.state = ConsumerState.STOPPED
        self._stopped.set()
        logger.info("event_consumer_stopped", reason=reason, exit_code=self.exit_code)

    def request_shutdown(self, reason: str, exit_code: int = 0) -> None:
        """Schedule stop() from a callback that cannot await."""
        if self._shutdown_task is not None:
            return
        self.exit_code = exit_code
        self._shutdown_task = asyncio.ensure_future(self.stop(reason=reason))

    # ── Process integration ───────────────────────────────────

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except NotImplementedError:
                logger.warning("signal_handler_unsupported", signal=sig.name)
        loop.set_exception_handler(self._on_loop_exception)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        error = context.get("exception")
        logger.error("unhandled_loop_exception",
                     message=context.get("message"),
                     error=str(error) if error else None)
        self.request_shutdown("unhandled_exception", exit_code=1)

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def run_forever(self) -> int:
        """Block until shut down, logging a heartbeat. Returns the exit code."""
        while self.state != ConsumerState.STOPPED:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.heartbeat_interval)
            except asyncio.TimeoutError:
                logger.info("event_consumer_heartbeat",
                            state=self.state.value,
                            status=self.status())
        return self.exit_code
