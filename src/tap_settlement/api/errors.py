"""Exception handlers mapping settlement errors to JSON responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..exceptions import SettlementError
from ..logging_config import get_correlation_id

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return get_correlation_id() or request.headers.get("X-Request-ID", "unknown")


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    request_id = _request_id(request)
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = exc.to_dict()
    body["request_id"] = request_id
    return JSONResponse(
        status_code=exc.http_status,
        content=body,
        headers={"X-Request-ID": request_id},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
