"""Shared test fixtures for the checkout pipeline."""
import pytest
from typing import Any

from backend.orders import InMemoryOrderRepository
from backend.renderer import StaticInvoiceRenderer
from backend.storage import InMemoryObjectStorage
from channels.email_transport import InMemoryEmailTransport
from channels.mailer import Mailer
from config.settings import Settings
from core.invoicing import InvoiceService
from job_queue.dispatch import JobDispatcher, build_job_dispatcher
from job_queue.job_queue import JobQueue
from job_queue.store import InMemoryStore
from models.schemas import JobType

ADMIN = "admin@tsrgallery.test"
SENDER = "orders@tsrgallery.test"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingProcessors:
    """
    Job handlers that record what they were given. ``fail_times[type]``
    makes the handler for that type raise that many times before succeeding.
    """

    def __init__(self, fail_times: dict[JobType, int] = None):
        self.calls: list[tuple[JobType, Any]] = []
        self.fail_times = dict(fail_times or {})

    def _handler(self, job_type: JobType):
        async def handle(payload):
            self.calls.append((job_type, payload))
            if self.fail_times.get(job_type, 0) > 0:
                self.fail_times[job_type] -= 1
                raise RuntimeError(f"{job_type.value} collaborator unavailable")
        return handle

    def handlers(self) -> dict:
        return {t: self._handler(t) for t in JobType}

    def payloads(self, job_type: JobType) -> list[Any]:
        return [p for t, p in self.calls if t == job_type]


@pytest.fixture
def memory_settings() -> Settings:
    """Settings wired entirely to in-memory backends."""
    settings = Settings()
    settings.queue.store_backend = "memory"
    settings.broker.backend = "memory"
    settings.email.provider = "memory"
    settings.email.from_email = SENDER
    settings.email.admin_email = ADMIN
    settings.storage.backend = "memory"
    settings.renderer.backend = "static"
    settings.orders.backend = "memory"
    return settings


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def processors() -> RecordingProcessors:
    return RecordingProcessors()


@pytest.fixture
def job_queue(store, processors, clock) -> JobQueue:
    return JobQueue(store, JobDispatcher(processors.handlers()), clock=clock)


@pytest.fixture
def transport() -> InMemoryEmailTransport:
    return InMemoryEmailTransport()


@pytest.fixture
def mailer(transport) -> Mailer:
    return Mailer(transport, from_email=SENDER, admin_email=ADMIN)


@pytest.fixture
def order_snapshot() -> dict[str, Any]:
    return {
        "id": "ord_1001",
        "order_number": "TSR-1001",
        "created_at": "2024-03-05T10:15:00Z",
        "total": 4500,
        "payment_method": "cash_on_delivery",
        "delivery_type": "inside_dhaka",
        "shipping_address": {"name": "Nusrat Jahan", "city": "Dhaka"},
        "items": [
            {"product": {"name": "Framed Print"}, "quantity": 2, "price": 1500},
            {"product": {"name": "Canvas"}, "quantity": 1, "price": 1500},
        ],
    }


@pytest.fixture
def orders(order_snapshot) -> InMemoryOrderRepository:
    return InMemoryOrderRepository({"ord_1001": dict(order_snapshot)})


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def renderer() -> StaticInvoiceRenderer:
    return StaticInvoiceRenderer(write_temp_file=True)


@pytest.fixture
def invoices(renderer, storage, orders, mailer) -> InvoiceService:
    return InvoiceService(renderer, storage, orders, mailer)


@pytest.fixture
def live_queue(store, mailer, invoices, clock) -> JobQueue:
    """Queue dispatching to the real processors over in-memory collaborators."""
    return JobQueue(store, build_job_dispatcher(mailer, invoices), clock=clock)
