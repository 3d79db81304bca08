"""Render OrderFeedError subclasses as `{"error": message}` with their status."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import OrderFeedError

import structlog

logger = structlog.get_logger()


async def orderfeed_error_handler(request: Request, exc: OrderFeedError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        status=exc.status_code,
        error_type=exc.__class__.__name__,
        error=exc.message,
    )
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(OrderFeedError, orderfeed_error_handler)
