"""
Mailer — templated customer and admin email on top of an EmailTransport.

Holds the sender identity and the admin notification address. Every send
either returns the provider message id or raises EmailDeliveryError, so a
processor that calls it turns a rejected email into a retryable failure.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from channels import email_templates as templates
from channels.email_transport import EmailTransport, OutboundEmail
from core.errors import EmailDeliveryError
from models.schemas import (
    ContactFormNotificationPayload, EmailAttachment, EmailType,
    LowStockAlertPayload, NewCustomerNotificationPayload,
    NewOrderNotificationPayload, NewProductNotificationPayload,
)

logger = structlog.get_logger()


class Mailer:

    def __init__(
        self,
        transport: EmailTransport,
        from_email: str,
        admin_email: str,
        from_name: str = templates.BRAND,
    ):
        self.transport = transport
        self.from_email = from_email
        self.from_name = from_name
        self.admin_email = admin_email

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[list[EmailAttachment]] = None,
        reply_to: Optional[str] = None,
    ) -> str:
        result = await self.transport.send(OutboundEmail(
            sender=self.sender,
            to=to,
            subject=subject,
            html=html,
            attachments=attachments or [],
            reply_to=reply_to,
        ))
        if not result.success:
            logger.error("email_delivery_failed", to=to, subject=subject, error=result.error)
            raise EmailDeliveryError(to, subject, result.error)
        return result.message_id

    # ── Customer email ────────────────────────────────────────

    async def send_order_confirmation(self, to: str, data: dict[str, Any]) -> str:
        subject, html = templates.order_confirmation(data)
        return await self.send(to, subject, html)

    async def send_invoice_email(
        self, to: str, data: dict[str, Any], attachment: Optional[EmailAttachment] = None
    ) -> str:
        subject, html = templates.invoice(data)
        return await self.send(to, subject, html, attachments=[attachment] if attachment else None)

    async def send_templated(
        self,
        email_type: EmailType,
        to: str,
        data: dict[str, Any],
        subject: str = "",
        attachments: Optional[list[EmailAttachment]] = None,
    ) -> str:
        """Render the template for ``email_type``; an explicit subject wins."""
        renderers = {
            EmailType.ORDER_CONFIRMATION: templates.order_confirmation,
            EmailType.INVOICE: templates.invoice,
            EmailType.OTP: templates.otp,
            EmailType.RETURN_EXCHANGE_CONFIRMATION: templates.return_exchange_confirmation,
            EmailType.RETURN_EXCHANGE_STATUS: templates.return_exchange_status,
        }
        default_subject, html = renderers[EmailType(email_type)](data)
        return await self.send(to, subject or default_subject, html, attachments=attachments)

    # ── Admin notifications ───────────────────────────────────

    async def send_admin_notification(self, subject: str, title: str, content: str,
                                      to: Optional[str] = None) -> str:
        return await self.send(
            to or self.admin_email,
            subject,
            templates.admin_notification(title, content),
        )

    async def notify_low_stock(self, alert: LowStockAlertPayload) -> str:
        return await self.send_admin_notification(
            f"Low Stock Alert - {alert.product_name}",
            "⚠️ Low Stock Alert",
            templates.low_stock(alert.product_id, alert.product_name,
                                alert.current_stock, alert.threshold),
        )

    async def notify_new_order(self, order: NewOrderNotificationPayload,
                               invoice_url: Optional[str] = None) -> str:
        return await self.send_admin_notification(
            f"New Order Received - #{order.order_number}",
            "🛒 New Order Received",
            templates.new_order(order.order_id, order.order_number,
                                order.customer_email, order.total, invoice_url),
        )

    async def notify_new_customer(self, customer: NewCustomerNotificationPayload) -> str:
        return await self.send_admin_notification(
            f"New Customer Registration - {customer.customer_name}",
            "👤 New Customer Registration",
            templates.new_customer(customer.customer_id, customer.customer_name,
                                   customer.customer_email),
        )

    async def notify_new_product(self, product: NewProductNotificationPayload) -> str:
        return await self.send_admin_notification(
            f"New Product Created - {product.product_name}",
            "🆕 New Product Created",
            templates.new_product(product.product_id, product.product_name, product.admin_id),
        )

    async def notify_contact_form(self, form: ContactFormNotificationPayload) -> str:
        subject, html = templates.contact_form(form.name, form.email, form.subject, form.message)
        return await self.send(
            form.admin_email or self.admin_email,
            subject,
            html,
            reply_to=f"{form.name} <{form.email}>",
        )
