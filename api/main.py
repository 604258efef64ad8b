from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agents.orchestrator import CheckInOrchestrator
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.rate_limiting import RateLimitMiddleware
from api.routers import checkin
from settings import SETTINGS, Settings

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, orchestrator: CheckInOrchestrator | None = None) -> FastAPI:
    settings = (settings or SETTINGS).validate()
    orchestrator = orchestrator or CheckInOrchestrator(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_started", extra={"model": settings.openai_model, "mock_backends": settings.mock_backends})
        yield
        await app.state.orchestrator.shutdown()
        logger.info("app_stopped")

    app = FastAPI(title="Smart Check-in Orchestrator", version="0.1.0", debug=settings.debug, lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_per_minute)
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.include_router(checkin.router)

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "service": "smart-checkin-orchestrator",
            "llm_model": settings.openai_model,
            "mock_backends": settings.mock_backends,
            "mcp_servers": [server.name for server in settings.mcp_servers],
        }

    return app
