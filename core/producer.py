"""
Business Event Producer — the single entry point the storefront calls.

Each business occurrence is delivered through exactly one transport, chosen
by ``delivery.routes`` in settings:

  occurrence            queue job                    broker event
  ────────────────────  ───────────────────────────  ─────────────────────────
  order_created         new_order_notification       new_order_creation
  invoice_requested     generate_invoice             invoice_generation
  stock_low             low_stock_alert              low_stock_alert
  customer_registered   new_customer_notification    new_customer_registration
  product_created       new_product_notification     new_product_creation
  contact_form_submitted contact_form_notification   (queue only)
  send_email            send_email                   (queue only)

One call never fans out to both transports, so one occurrence produces one
set of side effects.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from pydantic import BaseModel

from core.errors import ConfigurationError
from events.broker import EventBroker
from job_queue.job_queue import JobQueue
from models.schemas import (
    ContactFormNotificationPayload, EmailType, Event, EventType,
    GenerateInvoicePayload, JobType, LowStockAlertPayload,
    NewCustomerNotificationPayload, NewOrderNotificationPayload,
    NewProductNotificationPayload, SendEmailPayload,
)

logger = structlog.get_logger()

QUEUE = "queue"
BROKER = "broker"

OCCURRENCES: dict[str, tuple[JobType, Optional[EventType]]] = {
    "order_created": (JobType.NEW_ORDER_NOTIFICATION, EventType.NEW_ORDER_CREATION),
    "invoice_requested": (JobType.GENERATE_INVOICE, EventType.INVOICE_GENERATION),
    "stock_low": (JobType.LOW_STOCK_ALERT, EventType.LOW_STOCK_ALERT),
    "customer_registered": (JobType.NEW_CUSTOMER_NOTIFICATION, EventType.NEW_CUSTOMER_REGISTRATION),
    "product_created": (JobType.NEW_PRODUCT_NOTIFICATION, EventType.NEW_PRODUCT_CREATION),
    "contact_form_submitted": (JobType.CONTACT_FORM_NOTIFICATION, None),
    "send_email": (JobType.SEND_EMAIL, None),
}


class BusinessEventProducer:

    def __init__(
        self,
        job_queue: Optional[JobQueue] = None,
        broker: Optional[EventBroker] = None,
        routes: Optional[dict[str, str]] = None,
    ):
        self.job_queue = job_queue
        self.broker = broker
        self.routes = {name: QUEUE for name in OCCURRENCES}
        self.routes.update(routes or {})
        self._validate_routes()

    def _validate_routes(self) -> None:
        for name, transport in self.routes.items():
            if name not in OCCURRENCES:
                raise ConfigurationError(f"Unknown delivery route: {name}")
            if transport not in (QUEUE, BROKER):
                raise ConfigurationError(
                    f"Delivery route {name} must be 'queue' or 'broker', got {transport!r}"
                )
            if transport == BROKER and OCCURRENCES[name][1] is None:
                raise ConfigurationError(f"{name} can only be delivered through the queue")
            if transport == BROKER and self.broker is None:
                raise ConfigurationError(f"{name} is routed to the broker but no broker is configured")
            if transport == QUEUE and self.job_queue is None:
                raise ConfigurationError(f"{name} is routed to the queue but no job queue is configured")

    def transport_for(self, occurrence: str) -> str:
        return self.routes[occurrence]

    async def _emit(self, occurrence: str, payload: BaseModel | dict[str, Any]) -> str:
        job_type, event_type = OCCURRENCES[occurrence]
        transport = self.routes[occurrence]

        if transport == BROKER:
            event = Event.create(event_type, payload)
            await self.broker.publish(event)
            record_id = event.id
        else:
            record_id = await self.job_queue.enqueue(job_type, payload)

        logger.info("business_event_emitted",
                    occurrence=occurrence,
                    transport=transport,
                    id=record_id)
        return record_id

    async def order_created(self, order: NewOrderNotificationPayload | dict[str, Any]) -> str:
        return await self._emit("order_created", order)

    async def invoice_requested(self, request: GenerateInvoicePayload | dict[str, Any]) -> str:
        return await self._emit("invoice_requested", request)

    async def stock_low(self, alert: LowStockAlertPayload | dict[str, Any]) -> str:
        return await self._emit("stock_low", alert)

    async def customer_registered(self, customer: NewCustomerNotificationPayload | dict[str, Any]) -> str:
        return await self._emit("customer_registered", customer)

    async def product_created(self, product: NewProductNotificationPayload | dict[str, Any]) -> str:
        return await self._emit("product_created", product)

    async def contact_form_submitted(self, form: ContactFormNotificationPayload | dict[str, Any]) -> str:
        return await self._emit("contact_form_submitted", form)

    async def send_email(self, email_type: EmailType, to: str, data: dict[str, Any],
                         subject: str = "") -> str:
        return await self._emit("send_email", SendEmailPayload(
            email_type=email_type, to=to, subject=subject, data=data,
        ))
