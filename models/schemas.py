"""
Core data models for the checkout side-effect pipeline.
These are the universal types shared by the job queue and the event bus.
"""
from __future__ import annotations

import base64
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobType(str, Enum):
    SEND_EMAIL = "send_email"
    GENERATE_INVOICE = "generate_invoice"
    LOW_STOCK_ALERT = "low_stock_alert"
    NEW_ORDER_NOTIFICATION = "new_order_notification"
    NEW_CUSTOMER_NOTIFICATION = "new_customer_notification"
    NEW_PRODUCT_NOTIFICATION = "new_product_notification"
    CONTACT_FORM_NOTIFICATION = "contact_form_notification"


class EventType(str, Enum):
    INVOICE_GENERATION = "invoice_generation"
    LOW_STOCK_ALERT = "low_stock_alert"
    NEW_CUSTOMER_REGISTRATION = "new_customer_registration"
    NEW_PRODUCT_CREATION = "new_product_creation"
    NEW_ORDER_CREATION = "new_order_creation"


class EmailType(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    INVOICE = "invoice"
    OTP = "otp"
    RETURN_EXCHANGE_CONFIRMATION = "return_exchange_confirmation"
    RETURN_EXCHANGE_STATUS = "return_exchange_status"


# ──────────────────────────────────────────────────────────────
#  Payloads — one model per job/event type
# ──────────────────────────────────────────────────────────────

class EmailAttachment(BaseModel):
    """Attachment carried inside a JSON record; content is base64."""
    filename: str
    content: str
    content_type: str = "application/pdf"

    @classmethod
    def from_bytes(cls, filename: str, data: bytes,
                   content_type: str = "application/pdf") -> EmailAttachment:
        return cls(
            filename=filename,
            content=base64.b64encode(data).decode("ascii"),
            content_type=content_type,
        )

    def content_bytes(self) -> bytes:
        return base64.b64decode(self.content)


class SendEmailPayload(BaseModel):
    email_type: EmailType
    to: str
    subject: str = ""
    data: dict[str, Any] = {}
    attachments: list[EmailAttachment] = []


class GenerateInvoicePayload(BaseModel):
    order_id: str
    order_number: str
    customer_email: Optional[str] = None
    customer_id: Optional[str] = None
    order_data: dict[str, Any] = {}


class LowStockAlertPayload(BaseModel):
    product_id: str
    product_name: str
    current_stock: int
    threshold: int


class NewOrderNotificationPayload(BaseModel):
    order_id: str
    order_number: str
    customer_email: Optional[str] = None
    customer_id: Optional[str] = None
    total: float


class NewCustomerNotificationPayload(BaseModel):
    customer_id: str
    customer_name: str
    customer_email: str


class NewProductNotificationPayload(BaseModel):
    product_id: str
    product_name: str
    admin_id: str


class ContactFormNotificationPayload(BaseModel):
    name: str
    email: str
    subject: str
    message: str
    admin_email: Optional[str] = None       # falls back to the configured admin address


JobPayload = Union[
    SendEmailPayload,
    GenerateInvoicePayload,
    LowStockAlertPayload,
    NewOrderNotificationPayload,
    NewCustomerNotificationPayload,
    NewProductNotificationPayload,
    ContactFormNotificationPayload,
]

JOB_PAYLOADS: dict[JobType, type[BaseModel]] = {
    JobType.SEND_EMAIL: SendEmailPayload,
    JobType.GENERATE_INVOICE: GenerateInvoicePayload,
    JobType.LOW_STOCK_ALERT: LowStockAlertPayload,
    JobType.NEW_ORDER_NOTIFICATION: NewOrderNotificationPayload,
    JobType.NEW_CUSTOMER_NOTIFICATION: NewCustomerNotificationPayload,
    JobType.NEW_PRODUCT_NOTIFICATION: NewProductNotificationPayload,
    JobType.CONTACT_FORM_NOTIFICATION: ContactFormNotificationPayload,
}

EVENT_PAYLOADS: dict[EventType, type[BaseModel]] = {
    EventType.INVOICE_GENERATION: GenerateInvoicePayload,
    EventType.LOW_STOCK_ALERT: LowStockAlertPayload,
    EventType.NEW_CUSTOMER_REGISTRATION: NewCustomerNotificationPayload,
    EventType.NEW_PRODUCT_CREATION: NewProductNotificationPayload,
    EventType.NEW_ORDER_CREATION: NewOrderNotificationPayload,
}


def _tag_payload(data: Any, enum_cls: type[Enum], registry: dict) -> Any:
    """Validate a raw payload dict with the model selected by the record's type."""
    if not isinstance(data, dict):
        return data
    try:
        record_type = enum_cls(data.get("type"))
    except ValueError:
        return data  # the enum field itself reports the bad type
    payload = data.get("payload")
    model = registry[record_type]
    if isinstance(payload, model):
        return data
    return {**data, "payload": model.model_validate(payload or {})}


# ──────────────────────────────────────────────────────────────
#  Job — a unit of deferred work on the durable list
# ──────────────────────────────────────────────────────────────

class Job(BaseModel):
    """
    A job record. Only ``retries`` (and the retry schedule that goes with it)
    ever changes after enqueue.
    """
    id: str
    type: JobType
    payload: JobPayload
    timestamp: datetime = Field(default_factory=utcnow)
    retries: int = 0
    max_retries: int = 3
    retry_after: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _select_payload_model(cls, data: Any) -> Any:
        return _tag_payload(data, JobType, JOB_PAYLOADS)

    @classmethod
    def create(cls, job_type: JobType, payload: BaseModel | dict[str, Any],
               max_retries: int = 3) -> Job:
        job_type = JobType(job_type)
        return cls(
            id=new_id(job_type.value),
            type=job_type,
            payload=payload,
            max_retries=max_retries,
        )

    @property
    def exhausted(self) -> bool:
        return self.retries > self.max_retries

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_raw(cls, raw: Any) -> Job:
        """
        Decode a popped record. Store clients differ: some hand back the JSON
        text, some bytes, some an already-decoded mapping, and a few wrap the
        JSON text in a second layer of string encoding.
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            raw = json.loads(raw)
            if isinstance(raw, str):
                raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid job data type: {type(raw).__name__}")
        return cls.model_validate(raw)


# ──────────────────────────────────────────────────────────────
#  Event — a domain occurrence published to the broker
# ──────────────────────────────────────────────────────────────

class Event(BaseModel):
    id: str
    type: EventType
    payload: JobPayload
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _select_payload_model(cls, data: Any) -> Any:
        return _tag_payload(data, EventType, EVENT_PAYLOADS)

    @classmethod
    def create(cls, event_type: EventType, payload: BaseModel | dict[str, Any]) -> Event:
        event_type = EventType(event_type)
        return cls(id=new_id(event_type.value), type=event_type, payload=payload)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, body: str | bytes) -> Event:
        return cls.model_validate(json.loads(body))


# ──────────────────────────────────────────────────────────────
#  Dead letter — permanently failed work, kept for an operator
# ──────────────────────────────────────────────────────────────

class DeadLetterRecord(BaseModel):
    job: Optional[Job] = None
    raw: str = ""                              # set instead of job for malformed records
    error: str
    failed_at: datetime = Field(default_factory=utcnow)

    @property
    def replayable(self) -> bool:
        return self.job is not None

    def to_json(self) -> str:
        """Stored flat: the job fields plus failed_at and error."""
        body: dict[str, Any] = self.job.model_dump(mode="json") if self.job else {"raw": self.raw}
        body["failed_at"] = self.failed_at.isoformat()
        body["error"] = self.error
        return json.dumps(body)

    @classmethod
    def from_raw(cls, raw: Any) -> DeadLetterRecord:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw) if isinstance(raw, str) else dict(raw)
        error = data.pop("error", "")
        failed_at = data.pop("failed_at", None) or utcnow()
        if "raw" in data:
            return cls(raw=data["raw"], error=error, failed_at=failed_at)
        return cls(job=Job.model_validate(data), error=error, failed_at=failed_at)
