"""FastAPI application entrypoint."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ledgerbridge.api.routes import register_routes
from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.core.logging import configure_logging
from ledgerbridge.obs import (
    AuditMiddleware,
    PrometheusMiddleware,
    initialise_tracing,
    instrument_fastapi_app,
    metrics_router,
)
from ledgerbridge.services.errors import ExternalApiError, LedgerSyncError

logger = logging.getLogger(__name__)


async def ledger_sync_error_handler(request: Request, exc: LedgerSyncError) -> JSONResponse:
    """Turn a typed service failure that escaped its route into a JSON error."""

    code = status.HTTP_502_BAD_GATEWAY if isinstance(exc, ExternalApiError) else status.HTTP_500_INTERNAL_SERVER_ERROR
    logger.error(
        "unhandled ledger sync error",
        extra={"path": request.url.path, "error_type": type(exc).__name__, "error": str(exc)},
    )
    return JSONResponse(status_code=code, content={"detail": str(exc), "type": type(exc).__name__})


def create_application(settings: Settings | None = None) -> FastAPI:
    """Application factory used by ASGI servers and tests."""
    configure_logging()
    settings = settings or get_settings()

    if settings.enable_tracing:
        initialise_tracing(service_name=settings.app_name, endpoint=settings.otel_exporter_endpoint)

    application = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Imports reseller sales and expenses and mirrors them into an external ledger.",
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
    )
    application.add_exception_handler(LedgerSyncError, ledger_sync_error_handler)

    application.add_middleware(AuditMiddleware, settings=settings)
    if settings.enable_metrics:
        application.add_middleware(PrometheusMiddleware)
        application.include_router(metrics_router)
    register_routes(application)

    if settings.enable_tracing:
        instrument_fastapi_app(application)

    return application


app = create_application()
