"""
FastAPI Application — operational endpoints for the durable job queue.

Provides:
- Health check for the deployment platform
- Queue depth (pending / delayed / dead-letter)
- Cron-triggered drain, for hosts without a long-lived worker
- Dead-letter inspection, replay, and clearing

Mutating and dead-letter endpoints require ``Authorization: Bearer <CRON_SECRET>``
when a cron secret is configured.
"""
from __future__ import annotations

import json
import hmac
import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from config.log_setup import configure_logging
from config.settings import load_settings
from core.container import Services, build_services

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────────────────────
#  Dependencies
# ──────────────────────────────────────────────────────────────

def get_services(request: Request) -> Services:
    services: Optional[Services] = getattr(request.app.state, "services", None)
    if services is None or services.job_queue is None:
        raise HTTPException(503, "Job queue is not available")
    return services


def require_cron_secret(request: Request, services: Services = Depends(get_services)) -> None:
    secret = services.settings.cron_secret
    if not secret:
        return
    supplied = request.headers.get("authorization", "")
    if not hmac.compare_digest(supplied, f"Bearer {secret}"):
        logger.warning("unauthorized_queue_request", path=request.url.path)
        raise HTTPException(401, "Unauthorized")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the API. With ``services`` the app uses them as given and leaves
    their lifecycle to the caller; without, the lifespan builds, connects,
    and closes its own from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            settings = load_settings()
            configure_logging(settings.debug)
            app.state.services = build_services(settings)
            await app.state.services.job_queue.connect()
            if app.state.services.broker is not None:
                await app.state.services.broker.connect()

        logger.info("queue_api_started",
                    queue=app.state.services.job_queue.queue_name)
        yield

        if owned:
            await app.state.services.close()
            app.state.services = None
        logger.info("queue_api_stopped")

    app = FastAPI(
        title="Checkout Pipeline API",
        description="Operational endpoints for the checkout side-effect queue",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        current: Optional[Services] = app.state.services
        return {
            "status": "healthy",
            "timestamp": _now(),
            "queue": current.job_queue.queue_name if current and current.job_queue else None,
        }

    # ══════════════════════════════════════════════════════════
    #  QUEUE
    # ══════════════════════════════════════════════════════════

    @app.get("/api/v1/queue/status")
    async def queue_status(services: Services = Depends(get_services)):
        stats = await services.job_queue.stats()
        return {
            "queue": services.job_queue.queue_name,
            **stats.to_dict(),
            "timestamp": _now(),
        }

    @app.post("/api/v1/queue/drain", dependencies=[Depends(require_cron_secret)])
    async def drain_queue(
        batch_size: Optional[int] = Query(None, ge=1, le=100),
        services: Services = Depends(get_services),
    ):
        size = batch_size or services.settings.queue.batch_size
        try:
            result = await services.job_queue.drain(size)
        except Exception as e:
            logger.error("queue_drain_request_failed", error=str(e), exc_info=True)
            raise HTTPException(500, f"Queue processing failed: {e}")
        return {
            "success": True,
            "message": f"Processed {result.processed} jobs, {result.failed} failed",
            **result.to_dict(),
            "timestamp": _now(),
        }

    @app.get("/api/v1/queue/dead-letters", dependencies=[Depends(require_cron_secret)])
    async def list_dead_letters(
        limit: int = Query(50, ge=1, le=500),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        records = await services.job_queue.list_dead_letters(limit)
        return {
            "count": len(records),
            "dead_letters": [json.loads(r.to_json()) for r in records],
        }

    @app.delete("/api/v1/queue/dead-letters", dependencies=[Depends(require_cron_secret)])
    async def clear_dead_letters(services: Services = Depends(get_services)):
        cleared = await services.job_queue.clear_dead_letters()
        return {"cleared": cleared}

    @app.post("/api/v1/queue/dead-letters/replay", dependencies=[Depends(require_cron_secret)])
    async def replay_dead_letters(
        limit: Optional[int] = Query(None, ge=1),
        services: Services = Depends(get_services),
    ):
        replayed = await services.job_queue.replay_dead_letters(limit)
        return {"replayed": replayed}

    return app


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
