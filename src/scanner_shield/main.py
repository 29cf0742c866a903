# src/scanner_shield/main.py
"""Main entry point for the Scanner Shield application."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scanner_shield.api.middleware import ProtectionMiddleware
from scanner_shield.api.v1 import rate_limiting_router
from scanner_shield.core.settings import settings
from scanner_shield.db.session import create_tables
from scanner_shield.services.maintenance import MaintenanceWorker
from scanner_shield.services.protection import get_protection_service

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Rate limiting and abuse protection for the security scanner",
    version=settings.app_version,
)

# Protection runs inside CORS so preflight responses still carry CORS headers
app.add_middleware(ProtectionMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Include API routers
app.include_router(rate_limiting_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    service = get_protection_service()
    await service.init()
    if settings.cleanup_enabled:
        worker = MaintenanceWorker(service)
        await worker.start()
        app.state.maintenance_worker = worker
    else:
        app.state.maintenance_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: MaintenanceWorker | None = getattr(app.state, "maintenance_worker", None)
    if worker:
        await worker.stop()
    await get_protection_service().shutdown()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Rate limiting and abuse protection for the security scanner",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("scanner_shield.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
