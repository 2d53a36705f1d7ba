"""
Invoice workflow — shared by the generate_invoice job and the
invoice_generation event.

Steps, in order:
  1. render the PDF from the order snapshot
  2. upload it to object storage under invoices/invoice-<order_number>
  3. write invoice_url / invoice_generated / invoice_generated_at onto the order
  4. mail the customer (confirmation + invoice with the PDF attached), if known
  5. notify the admin of the new order, with the invoice link
  6. delete the renderer's local temporary file, if any

There is no rollback. A failure after step 2 leaves the upload in place and
a retry runs every step again: the upload overwrites the same key, but the
customer may receive a second confirmation email.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any

from backend.orders import OrderRepository
from backend.renderer import InvoiceRenderer, RenderedDocument
from backend.storage import ObjectStorage
from channels.email_templates import format_bdt
from channels.mailer import Mailer
from models.schemas import (
    EmailAttachment, GenerateInvoicePayload, NewOrderNotificationPayload, utcnow,
)

logger = structlog.get_logger()


def _order_date(order_data: dict[str, Any]) -> str:
    created = order_data.get("created_at")
    if not created:
        return utcnow().strftime("%d/%m/%Y")
    try:
        return datetime.fromisoformat(str(created).replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        return str(created)


def customer_email_data(request: GenerateInvoicePayload) -> dict[str, Any]:
    """Template data for the confirmation and invoice emails."""
    order = request.order_data
    shipping = order.get("shipping_address") or {}
    items = [
        {
            "name": (item.get("product") or {}).get("name") or item.get("name", ""),
            "quantity": item.get("quantity", 0),
            "price": item.get("price", 0),
            "total": (item.get("quantity") or 0) * (item.get("price") or 0),
        }
        for item in order.get("items") or []
    ]
    return {
        "customer_name": shipping.get("name") or "Customer",
        "order_number": request.order_number,
        "order_date": _order_date(order),
        "total": format_bdt(order.get("total", 0)),
        "payment_method": order.get("payment_method", ""),
        "delivery_type": order.get("delivery_type", ""),
        "items": items,
        "shipping_address": shipping,
    }


class InvoiceService:

    def __init__(
        self,
        renderer: InvoiceRenderer,
        storage: ObjectStorage,
        orders: OrderRepository,
        mailer: Mailer,
    ):
        self.renderer = renderer
        self.storage = storage
        self.orders = orders
        self.mailer = mailer

    @staticmethod
    def object_key(order_number: str) -> str:
        return f"invoices/invoice-{order_number}"

    async def generate_and_deliver(self, request: GenerateInvoicePayload) -> str:
        """Run the whole workflow for one order. Returns the invoice URL."""
        log = logger.bind(order_id=request.order_id, order_number=request.order_number)
        log.info("invoice_generation_started")

        document = await self.renderer.render(request.order_data)
        try:
            url = await self.storage.upload(
                self.object_key(request.order_number),
                document.content,
                document.content_type,
            )
            log.info("invoice_uploaded", url=url)

            await self.orders.update_order(request.order_id, {
                "invoice_url": url,
                "invoice_generated": True,
                "invoice_generated_at": utcnow().isoformat(),
            })
            log.info("order_invoice_recorded")

            if request.customer_email:
                data = customer_email_data(request)
                await self.mailer.send_order_confirmation(request.customer_email, data)
                await self.mailer.send_invoice_email(
                    request.customer_email,
                    data,
                    EmailAttachment.from_bytes(
                        f"invoice-{request.order_number}.pdf", document.content
                    ),
                )
                log.info("customer_invoice_emails_sent", to=request.customer_email)
            else:
                log.info("invoice_without_customer_email")

            await self.mailer.notify_new_order(
                NewOrderNotificationPayload(
                    order_id=request.order_id,
                    order_number=request.order_number,
                    customer_email=request.customer_email,
                    customer_id=request.customer_id,
                    total=request.order_data.get("total", 0) or 0,
                ),
                invoice_url=url,
            )
            log.info("admin_order_notification_sent")
        finally:
            self._cleanup(document)

        log.info("invoice_generation_completed")
        return url

    def _cleanup(self, document: RenderedDocument) -> None:
        if document.local_path is None:
            return
        try:
            document.local_path.unlink(missing_ok=True)
            logger.info("local_invoice_cleaned_up", path=str(document.local_path))
        except OSError as e:
            logger.warning("local_invoice_cleanup_failed",
                           path=str(document.local_path),
                           error=str(e))
