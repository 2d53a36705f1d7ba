"""Tests for the queue operations API."""
import httpx
import pytest
import pytest_asyncio

from api.main import create_app
from core.container import build_services
from models.schemas import JobType

SECRET = "cron-secret-123"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def low_stock(product_id: str = "p1") -> dict:
    return {"product_id": product_id, "product_name": "Canvas", "current_stock": 0, "threshold": 2}


@pytest.fixture
def services(memory_settings):
    memory_settings.cron_secret = SECRET
    return build_services(memory_settings)


@pytest_asyncio.fixture
async def client(services):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["queue"] == "nextecom_tasks"


class TestQueueStatus:
    @pytest.mark.asyncio
    async def test_counts(self, client, services):
        await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock())
        response = await client.get("/api/v1/queue/status")
        body = response.json()
        assert body["pending"] == 1
        assert body["delayed"] == 0
        assert body["failed"] == 0

    @pytest.mark.asyncio
    async def test_unavailable_without_queue(self, memory_settings):
        services = build_services(memory_settings, with_queue=False)
        transport = httpx.ASGITransport(app=create_app(services))
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/api/v1/queue/status")
        assert response.status_code == 503


class TestDrain:
    @pytest.mark.asyncio
    async def test_requires_secret(self, client):
        assert (await client.post("/api/v1/queue/drain")).status_code == 401
        wrong = {"Authorization": "Bearer nope"}
        assert (await client.post("/api/v1/queue/drain", headers=wrong)).status_code == 401

    @pytest.mark.asyncio
    async def test_processes_jobs(self, client, services):
        await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock("p1"))
        await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock("p2"))

        response = await client.post("/api/v1/queue/drain", headers=AUTH)

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["processed"] == 2
        assert body["failed"] == 0
        assert body["message"] == "Processed 2 jobs, 0 failed"
        assert len(services.mailer.transport.sent) == 2

    @pytest.mark.asyncio
    async def test_batch_size_param(self, client, services):
        for i in range(3):
            await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock(f"p{i}"))

        response = await client.post("/api/v1/queue/drain?batch_size=2", headers=AUTH)

        assert response.json()["processed"] == 2
        assert (await services.job_queue.stats()).pending == 1

    @pytest.mark.asyncio
    async def test_batch_size_bounds(self, client):
        response = await client.post("/api/v1/queue/drain?batch_size=0", headers=AUTH)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_open_when_no_secret_configured(self, memory_settings):
        services = build_services(memory_settings)
        transport = httpx.ASGITransport(app=create_app(services))
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post("/api/v1/queue/drain")
        assert response.status_code == 200


class TestDeadLetters:
    @pytest.fixture
    def failing_services(self, services):
        services.job_queue.max_retries = 0
        services.mailer.transport.fail_next = 1
        return services

    @pytest.mark.asyncio
    async def test_list_replay_clear(self, client, failing_services):
        services = failing_services
        await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock(), max_retries=0)
        await client.post("/api/v1/queue/drain", headers=AUTH)

        listed = (await client.get("/api/v1/queue/dead-letters", headers=AUTH)).json()
        assert listed["count"] == 1
        assert listed["dead_letters"][0]["type"] == "low_stock_alert"
        assert listed["dead_letters"][0]["error"]

        replayed = await client.post("/api/v1/queue/dead-letters/replay", headers=AUTH)
        assert replayed.json() == {"replayed": 1}
        assert (await services.job_queue.stats()).pending == 1

        await services.job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock(), max_retries=0)
        services.mailer.transport.fail_next = 2
        await client.post("/api/v1/queue/drain", headers=AUTH)
        cleared = await client.delete("/api/v1/queue/dead-letters", headers=AUTH)
        assert cleared.json() == {"cleared": 2}

    @pytest.mark.asyncio
    async def test_requires_secret(self, client):
        assert (await client.get("/api/v1/queue/dead-letters")).status_code == 401
