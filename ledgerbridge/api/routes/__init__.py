"""Top level API router registration."""
from fastapi import APIRouter, FastAPI

from ledgerbridge.api.routes import accounts, diagnostics, health, ingest, journals, mappings, profit


def register_routes(application: FastAPI) -> None:
    """Register all API routers with the FastAPI application."""
    api_router = APIRouter(prefix="/api")

    api_router.include_router(health.router, tags=["health"])
    api_router.include_router(ingest.router, tags=["ingest"])
    api_router.include_router(mappings.router, tags=["mappings"])
    api_router.include_router(accounts.router, tags=["accounts"])
    api_router.include_router(journals.router, tags=["journals"])
    api_router.include_router(diagnostics.router, tags=["diagnostics"])
    api_router.include_router(profit.router, tags=["profit"])

    application.include_router(api_router)


__all__ = ["register_routes"]
