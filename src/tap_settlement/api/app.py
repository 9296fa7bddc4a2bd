"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from ..container import SettlementContainer
from ..logging_config import generate_correlation_id, settlement_context, setup_logging
from .errors import register_exception_handlers
from .routes import get_container, merchants_router, payments_router, transfers_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def create_app(container: Optional[SettlementContainer] = None) -> FastAPI:
    """Build the app around a container; the process-wide one when omitted."""
    owns_container = container is None
    container = container or SettlementContainer.get_instance()
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_container:
            setup_logging(settings.log_level, json_format=settings.log_json)
        yield
        if owns_container:
            await container.close()

    app = FastAPI(
        title="TAP Settlement",
        description="Cross-chain USDC settlement: burn, attest, mint and merchant payout",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container
    app.dependency_overrides[get_container] = lambda: container

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get("X-Request-ID") or generate_correlation_id()
        with settlement_context(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(merchants_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)
    app.include_router(transfers_router, prefix=API_PREFIX)

    @app.get("/health")
    async def health():
        db = await container.database.check_health()
        return {
            "status": db["status"],
            "environment": settings.environment,
            "chain_mode": settings.chain_mode,
            "database": db,
        }

    return app


__all__ = ["API_PREFIX", "create_app"]
