"""
Event Handlers — per-event-type side effects for broker deliveries.

Each handler first checks that the delivered event carries the type it was
registered for, then does the same work as its job-queue counterpart. A
raise propagates to the broker layer, which leaves the message for
redelivery.
"""
from __future__ import annotations

import structlog
from typing import Optional

from channels.mailer import Mailer
from core.errors import EventTypeMismatchError
from core.invoicing import InvoiceService
from events.broker import EventHandler
from models.schemas import Event, EventType

logger = structlog.get_logger()


def ensure_event_type(event: Event, expected: EventType) -> None:
    if event.type != expected:
        logger.error("event_type_mismatch",
                     event_id=event.id,
                     expected=expected.value,
                     received=event.type.value)
        raise EventTypeMismatchError(expected.value, event.type.value)


class EventHandlers:

    def __init__(self, mailer: Mailer, invoices: InvoiceService):
        self.mailer = mailer
        self.invoices = invoices

    async def handle_invoice_generation(self, event: Event) -> str:
        ensure_event_type(event, EventType.INVOICE_GENERATION)
        logger.info("handling_event", event_id=event.id, type=event.type.value,
                    order_id=event.payload.order_id)
        return await self.invoices.generate_and_deliver(event.payload)

    async def handle_low_stock_alert(self, event: Event) -> str:
        ensure_event_type(event, EventType.LOW_STOCK_ALERT)
        logger.info("handling_event", event_id=event.id, type=event.type.value,
                    product_id=event.payload.product_id)
        return await self.mailer.notify_low_stock(event.payload)

    async def handle_new_customer_registration(self, event: Event) -> str:
        ensure_event_type(event, EventType.NEW_CUSTOMER_REGISTRATION)
        logger.info("handling_event", event_id=event.id, type=event.type.value,
                    customer_id=event.payload.customer_id)
        return await self.mailer.notify_new_customer(event.payload)

    async def handle_new_product_creation(self, event: Event) -> str:
        ensure_event_type(event, EventType.NEW_PRODUCT_CREATION)
        logger.info("handling_event", event_id=event.id, type=event.type.value,
                    product_id=event.payload.product_id)
        return await self.mailer.notify_new_product(event.payload)

    async def handle_new_order_creation(self, event: Event) -> str:
        ensure_event_type(event, EventType.NEW_ORDER_CREATION)
        logger.info("handling_event", event_id=event.id, type=event.type.value,
                    order_id=event.payload.order_id)
        return await self.mailer.notify_new_order(event.payload)

    def handlers(self) -> dict[EventType, EventHandler]:
        return {
            EventType.INVOICE_GENERATION: self.handle_invoice_generation,
            EventType.LOW_STOCK_ALERT: self.handle_low_stock_alert,
            EventType.NEW_CUSTOMER_REGISTRATION: self.handle_new_customer_registration,
            EventType.NEW_PRODUCT_CREATION: self.handle_new_product_creation,
            EventType.NEW_ORDER_CREATION: self.handle_new_order_creation,
        }

    def get_handler(self, event_type: EventType) -> Optional[EventHandler]:
        return self.handlers().get(EventType(event_type))
