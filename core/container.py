"""
Service wiring — builds the pipeline's objects from Settings.

Nothing here is cached at module level: every entry point (API, queue
worker, event consumer, admin script) constructs its own services, and
tests build the same objects around in-memory backends.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from backend.orders import InMemoryOrderRepository, OrderRepository, RESTOrderRepository
from backend.renderer import InvoiceRenderer, RemoteInvoiceRenderer, StaticInvoiceRenderer
from backend.storage import HTTPObjectStorage, InMemoryObjectStorage, ObjectStorage
from channels.email_transport import EmailTransport, InMemoryEmailTransport, ResendEmailTransport
from channels.mailer import Mailer
from config.settings import Settings
from core.errors import ConfigurationError
from core.invoicing import InvoiceService
from core.producer import BROKER, BusinessEventProducer
from events.broker import EventBroker, create_broker
from events.consumer import EventConsumer
from events.handlers import EventHandlers
from job_queue.dispatch import build_job_dispatcher
from job_queue.job_queue import JobQueue
from job_queue.store import create_store

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Collaborators
# ──────────────────────────────────────────────────────────────

def build_email_transport(settings: Settings) -> EmailTransport:
    email = settings.email
    if email.provider == "resend":
        if not email.api_key:
            raise ConfigurationError("RESEND_API_KEY must be set")
        return ResendEmailTransport(email.api_key, email.api_url)
    if email.provider == "memory":
        return InMemoryEmailTransport()
    raise ConfigurationError(f"Unknown email provider: {email.provider}")


def build_mailer(settings: Settings, transport: Optional[EmailTransport] = None) -> Mailer:
    return Mailer(
        transport or build_email_transport(settings),
        from_email=settings.email.from_email,
        admin_email=settings.email.admin_email,
        from_name=settings.email.from_name,
    )


def build_renderer(settings: Settings) -> InvoiceRenderer:
    cfg = settings.renderer
    if cfg.backend == "remote":
        return RemoteInvoiceRenderer(cfg.url, cfg.token, timeout=cfg.timeout_seconds)
    if cfg.backend == "static":
        return StaticInvoiceRenderer()
    raise ConfigurationError(f"Unknown invoice renderer backend: {cfg.backend}")


def build_storage(settings: Settings) -> ObjectStorage:
    cfg = settings.storage
    if cfg.backend == "http":
        return HTTPObjectStorage(cfg.base_url, cfg.public_base_url, cfg.token, cfg.folder)
    if cfg.backend == "memory":
        return InMemoryObjectStorage()
    raise ConfigurationError(f"Unknown object storage backend: {cfg.backend}")


def build_orders(settings: Settings) -> OrderRepository:
    cfg = settings.orders
    if cfg.backend == "rest":
        return RESTOrderRepository(cfg.base_url, cfg.token)
    if cfg.backend == "memory":
        return InMemoryOrderRepository()
    raise ConfigurationError(f"Unknown order repository backend: {cfg.backend}")


def build_invoice_service(settings: Settings, mailer: Mailer) -> InvoiceService:
    return InvoiceService(
        renderer=build_renderer(settings),
        storage=build_storage(settings),
        orders=build_orders(settings),
        mailer=mailer,
    )


# ──────────────────────────────────────────────────────────────
#  Pipeline services
# ──────────────────────────────────────────────────────────────

def build_job_queue(settings: Settings, mailer: Mailer, invoices: InvoiceService) -> JobQueue:
    settings.validate_for_queue()
    q = settings.queue
    return JobQueue(
        store=create_store(q),
        dispatcher=build_job_dispatcher(mailer, invoices),
        queue_name=q.queue_name,
        max_retries=q.max_retries,
        retry_delay_seconds=q.retry_delay_seconds,
    )


def build_broker(settings: Settings) -> EventBroker:
    settings.validate_for_broker()
    return create_broker(settings.broker)


def build_event_consumer(settings: Settings, broker: EventBroker, mailer: Mailer,
                         invoices: InvoiceService) -> EventConsumer:
    return EventConsumer(
        broker,
        EventHandlers(mailer, invoices).handlers(),
        heartbeat_interval=settings.broker.heartbeat_interval_seconds,
    )


def build_producer(settings: Settings, job_queue: Optional[JobQueue] = None,
                   broker: Optional[EventBroker] = None) -> BusinessEventProducer:
    return BusinessEventProducer(job_queue, broker, routes=settings.delivery.routes)


@dataclass
class Services:
    """Everything one process needs, plus the shutdown order for it."""
    settings: Settings
    mailer: Mailer
    invoices: InvoiceService
    job_queue: Optional[JobQueue] = None
    broker: Optional[EventBroker] = None
    producer: Optional[BusinessEventProducer] = None

    async def close(self) -> None:
        if self.job_queue:
            await self.job_queue.close()
        if self.broker and self.broker.is_ready:
            await self.broker.close()
        for closable in (self.invoices.renderer, self.invoices.storage,
                         self.invoices.orders, self.mailer.transport):
            await closable.close()


def build_services(settings: Settings, with_queue: bool = True,
                   with_broker: bool = False) -> Services:
    mailer = build_mailer(settings)
    invoices = build_invoice_service(settings, mailer)
    job_queue = build_job_queue(settings, mailer, invoices) if with_queue else None

    routes_to_broker = any(t == BROKER for t in settings.delivery.routes.values())
    broker = build_broker(settings) if (with_broker or routes_to_broker) else None

    services = Services(
        settings=settings,
        mailer=mailer,
        invoices=invoices,
        job_queue=job_queue,
        broker=broker,
    )
    if job_queue is not None:
        services.producer = build_producer(settings, job_queue, broker)
    logger.info("services_built",
                queue=job_queue is not None,
                broker=broker is not None)
    return services
