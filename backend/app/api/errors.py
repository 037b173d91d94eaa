"""Map service-layer errors onto JSON HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.errors import ServiceError

from guidelight.store import StoreError

logger = logging.getLogger(__name__)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):  # type: ignore[override]
        logger.warning("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})
