"""Main entry point for the epress node application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from epress_node.api.v1 import (
    auth_router,
    comments_router,
    connections_router,
    ewp_router,
    install_router,
    profile_router,
    publications_router,
    settings_router,
    verify_router,
)
from epress_node.core.settings import settings
from epress_node.services.federation import get_federation_client

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="epress node API",
    description="Attested federated publishing node",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(publications_router, prefix="/api/v1")
app.include_router(comments_router, prefix="/api/v1")
app.include_router(verify_router, prefix="/api/v1")
app.include_router(connections_router, prefix="/api/v1")
app.include_router(profile_router, prefix="/api/v1")
app.include_router(install_router, prefix="/api/v1")
app.include_router(settings_router, prefix="/api/v1")

# Federation surface is addressed by bare node URL
app.include_router(ewp_router)


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("%s %s starting", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_federation_client().aclose()


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
        "description": "Attested federated publishing node",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("epress_node.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
