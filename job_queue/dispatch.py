"""
Job Processor Dispatch — routes a Job to the side-effect routine for its type.

Registration is exhaustive: a JobDispatcher refuses to build unless every
JobType has a handler, so a missing processor surfaces at startup instead of
as a failed job. UnknownJobTypeError remains for dispatchers built with
``require_all=False`` (tests, partial workers).
"""
from __future__ import annotations

import structlog
from typing import Any, Awaitable, Callable, Optional

from channels.mailer import Mailer
from core.errors import UnknownJobTypeError
from core.invoicing import InvoiceService
from models.schemas import (
    ContactFormNotificationPayload, GenerateInvoicePayload, Job, JobType,
    LowStockAlertPayload, NewCustomerNotificationPayload,
    NewOrderNotificationPayload, NewProductNotificationPayload, SendEmailPayload,
)

logger = structlog.get_logger()

JobHandler = Callable[[Any], Awaitable[Any]]


class JobDispatcher:

    def __init__(self, handlers: dict[JobType, JobHandler], require_all: bool = True):
        self._handlers = {JobType(t): h for t, h in handlers.items()}
        missing = [t.value for t in JobType if t not in self._handlers]
        if require_all and missing:
            raise ValueError(f"No job processor registered for: {', '.join(missing)}")

    @property
    def job_types(self) -> list[JobType]:
        return list(self._handlers)

    async def dispatch(self, job: Job) -> Any:
        handler = self._handlers.get(job.type)
        if handler is None:
            raise UnknownJobTypeError(job.type.value)

        logger.info("processing_job",
                    job_id=job.id,
                    type=job.type.value,
                    retries=job.retries)
        return await handler(job.payload)


class JobProcessors:
    """
    One thin adapter per job type over the mailer and the invoice workflow.
    Every method either completes or raises; a raise consumes a retry.
    """

    def __init__(self, mailer: Mailer, invoices: InvoiceService):
        self.mailer = mailer
        self.invoices = invoices

    async def send_email(self, payload: SendEmailPayload) -> str:
        return await self.mailer.send_templated(
            payload.email_type,
            payload.to,
            payload.data,
            subject=payload.subject,
            attachments=payload.attachments or None,
        )

    async def generate_invoice(self, payload: GenerateInvoicePayload) -> str:
        return await self.invoices.generate_and_deliver(payload)

    async def low_stock_alert(self, payload: LowStockAlertPayload) -> str:
        return await self.mailer.notify_low_stock(payload)

    async def new_order_notification(self, payload: NewOrderNotificationPayload) -> str:
        return await self.mailer.notify_new_order(payload)

    async def new_customer_notification(self, payload: NewCustomerNotificationPayload) -> str:
        return await self.mailer.notify_new_customer(payload)

    async def new_product_notification(self, payload: NewProductNotificationPayload) -> str:
        return await self.mailer.notify_new_product(payload)

    async def contact_form_notification(self, payload: ContactFormNotificationPayload) -> str:
        return await self.mailer.notify_contact_form(payload)

    def handlers(self) -> dict[JobType, JobHandler]:
        return {
            JobType.SEND_EMAIL: self.send_email,
            JobType.GENERATE_INVOICE: self.generate_invoice,
            JobType.LOW_STOCK_ALERT: self.low_stock_alert,
            JobType.NEW_ORDER_NOTIFICATION: self.new_order_notification,
            JobType.NEW_CUSTOMER_NOTIFICATION: self.new_customer_notification,
            JobType.NEW_PRODUCT_NOTIFICATION: self.new_product_notification,
            JobType.CONTACT_FORM_NOTIFICATION: self.contact_form_notification,
        }


def build_job_dispatcher(
    mailer: Mailer,
    invoices: InvoiceService,
    overrides: Optional[dict[JobType, JobHandler]] = None,
) -> JobDispatcher:
    """The production dispatcher, with optional per-type replacements."""
    handlers = JobProcessors(mailer, invoices).handlers()
    handlers.update(overrides or {})
    return JobDispatcher(handlers)
