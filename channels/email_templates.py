"""
HTML bodies for customer and admin emails.

Every value interpolated into markup goes through html.escape; the
functions return (subject, html) pairs or bare HTML fragments.
"""
from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Any, Optional

BRAND = "TSR Gallery"


def format_bdt(amount: Any) -> str:
    try:
        return f"৳{float(amount):,.0f}"
    except (TypeError, ValueError):
        return f"৳{amount}"


def _today() -> str:
    return datetime.now().strftime("%d/%m/%Y")


def _layout(title: str, body: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #3949AB;">{escape(title)}</h2>
      {body}
      <p style="color: #666; font-size: 14px;">{BRAND}</p>
    </div>
    """


def _rows(pairs: list[tuple[str, Any]]) -> str:
    return "\n".join(
        f"<p><strong>{escape(label)}:</strong> {escape(str(value))}</p>"
        for label, value in pairs
    )


def _panel(heading: str, inner: str, accent: str, background: str) -> str:
    return (
        f'<div style="background: {background}; padding: 15px; border-radius: 5px; '
        f'border-left: 4px solid {accent};">'
        f"<h4>{escape(heading)}</h4>{inner}</div>"
    )


# ── Customer emails ───────────────────────────────────────────

def _greeting(data: dict[str, Any]) -> str:
    return f"<p>Dear {escape(str(data.get('customer_name', 'Customer')))},</p>"


def order_confirmation(data: dict[str, Any]) -> tuple[str, str]:
    order_number = data.get("order_number", "")
    items = data.get("items") or []
    item_rows = "".join(
        f"<tr><td>{escape(str(i.get('name', '')))}</td>"
        f"<td>{escape(str(i.get('quantity', '')))}</td>"
        f"<td>{format_bdt(i.get('price', 0))}</td></tr>"
        for i in items
    )
    details = _rows([
        ("Order Number", order_number),
        ("Order Date", data.get("order_date", "")),
        ("Total", data.get("total", "")),
        ("Payment Method", data.get("payment_method", "")),
        ("Delivery", data.get("delivery_type", "")),
    ])
    body = (
        _greeting(data)
        + "<p>Thank you for your order. We have received it and will start processing it shortly.</p>"
        + details
        + '<table style="width: 100%;"><tr><th>Item</th><th>Qty</th><th>Price</th></tr>'
        + item_rows
        + "</table>"
    )
    return f"Order Confirmation - #{order_number}", _layout("Order Confirmed", body)


def invoice(data: dict[str, Any]) -> tuple[str, str]:
    order_number = data.get("order_number", "")
    details = _rows([
        ("Order Date", data.get("order_date", "")),
        ("Total", data.get("total", "")),
        ("Payment Method", data.get("payment_method", "")),
        ("Delivery", data.get("delivery_type", "")),
    ])
    body = (
        _greeting(data)
        + f"<p>Your invoice for order #{escape(str(order_number))} is attached to this email.</p>"
        + details
    )
    return f"Invoice for Order #{order_number}", _layout("Your Invoice", body)


def otp(data: dict[str, Any]) -> tuple[str, str]:
    code = escape(str(data.get("otp", "")))
    minutes = escape(str(data.get("expires_in_minutes", 10)))
    body = (
        "<p>Your verification code is:</p>"
        f'<p style="font-size: 28px; letter-spacing: 6px;"><strong>{code}</strong></p>'
        f"<p>This code expires in {minutes} minutes.</p>"
    )
    return f"Your {BRAND} verification code", _layout("Verification Code", body)


def return_exchange_confirmation(data: dict[str, Any]) -> tuple[str, str]:
    request_number = data.get("request_number", "")
    request_type = escape(str(data.get("request_type", "return")))
    details = _rows([
        ("Request Number", request_number),
        ("Order Number", data.get("order_number", "")),
        ("Reason", data.get("reason", "")),
    ])
    body = _greeting(data) + f"<p>We have received your {request_type} request.</p>" + details
    return f"Request Received - #{request_number}", _layout("Request Received", body)


def return_exchange_status(data: dict[str, Any]) -> tuple[str, str]:
    request_number = data.get("request_number", "")
    status = data.get("status", "")
    details = _rows([
        ("Request Number", request_number),
        ("New Status", status),
        ("Note", data.get("admin_notes", "")),
    ])
    body = _greeting(data) + "<p>The status of your request has changed.</p>" + details
    return f"Request #{request_number} is now {status}", _layout("Request Update", body)


# ── Admin notifications ───────────────────────────────────────

def admin_notification(title: str, content: str) -> str:
    return _layout(title, content)


def low_stock(product_id: str, product_name: str, current_stock: int, threshold: int) -> str:
    inner = _rows([
        ("Product ID", product_id),
        ("Current Stock", current_stock),
        ("Threshold", threshold),
    ])
    return (
        "<p>The following product is running low on stock:</p>"
        + _panel(product_name, inner, "#f59e0b", "#fef3c7")
        + "<p>Please consider restocking this product to avoid stockouts.</p>"
    )


def new_order(order_id: str, order_number: str, customer_email: Optional[str],
              total: Any, invoice_url: Optional[str] = None) -> str:
    inner = _rows([
        ("Order Number", order_number),
        ("Order ID", order_id),
        ("Customer", customer_email or "Guest User"),
        ("Email", customer_email or "N/A"),
        ("Total Amount", format_bdt(total)),
        ("Order Date", _today()),
    ])
    if invoice_url:
        inner += f'<p><strong>Invoice:</strong> <a href="{escape(invoice_url)}">View Invoice</a></p>'
    return (
        _panel("Order Details:", inner, "#8b5cf6", "#f3f4f6")
        + "<p>A new order has been placed and requires processing.</p>"
    )


def new_customer(customer_id: str, customer_name: str, customer_email: str) -> str:
    inner = _rows([
        ("Name", customer_name),
        ("Email", customer_email),
        ("Customer ID", customer_id),
        ("Registration Date", _today()),
    ])
    return (
        _panel("New Customer Details:", inner, "#3b82f6", "#eff6ff")
        + "<p>A new customer has registered on your platform.</p>"
    )


def new_product(product_id: str, product_name: str, admin_id: str) -> str:
    inner = _rows([
        ("Name", product_name),
        ("Product ID", product_id),
        ("Created By", admin_id),
        ("Creation Date", _today()),
    ])
    return (
        _panel("Product Details:", inner, "#10b981", "#ecfdf5")
        + "<p>A new product has been added to your inventory.</p>"
    )


def contact_form(name: str, email: str, subject: str, message: str) -> tuple[str, str]:
    message_html = escape(message).replace("\n", "<br>")
    sender = _rows([("Name", name), ("Email", email), ("Subject", subject)])
    body = f"""
      <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
        {sender}
        <p><strong>Message:</strong></p>
        <div style="background: white; padding: 15px; border-radius: 5px; border-left: 4px solid #3949AB;">
          {message_html}
        </div>
      </div>
      <p style="color: #666; font-size: 14px;">This message was sent via the {BRAND} contact form.</p>
    """
    return f"[{BRAND}] {subject}", _layout("New Contact Form Submission", body)
