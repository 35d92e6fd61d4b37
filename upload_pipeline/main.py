"""FastAPI application for the background upload pipeline.

This is the web service entry point. The lifespan wires the shared storage,
functions and key-value clients into a SchedulerRegistry; each owner's
scheduler is created on first request.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from upload_pipeline import __version__
from upload_pipeline.clients.functions import SupabaseFunctionsClient
from upload_pipeline.clients.storage import SupabaseStorageClient
from upload_pipeline.config import get_storage_api_key, get_storage_url, load_upload_settings
from upload_pipeline.database import async_session_factory
from upload_pipeline.routes import uploads
from upload_pipeline.services.kv_store import SqlKeyValueStore
from upload_pipeline.services.registry import SchedulerRegistry, build_scheduler_factory

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of the upload registry.

    Startup:
    - Build storage and functions clients if STORAGE_URL / STORAGE_API_KEY are set
    - Build the SQL key-value store if DATABASE_URL is set
    - Expose the SchedulerRegistry as app.state.registry

    Shutdown:
    - Destroy every scheduler (in-flight uploads resume on next start)
    - Close HTTP client connections
    """
    storage_client = None
    functions_client = None

    storage_url = get_storage_url()
    api_key = get_storage_api_key()

    if storage_url and api_key and async_session_factory is not None:
        settings = load_upload_settings()
        storage_client = SupabaseStorageClient(storage_url, api_key)
        functions_client = SupabaseFunctionsClient(storage_url, api_key)
        app.state.registry = SchedulerRegistry(
            build_scheduler_factory(
                settings,
                SqlKeyValueStore(async_session_factory),
                storage_client,
                functions_client,
            )
        )
        log.info("upload_service_ready", storage_url=storage_url)
    else:
        app.state.registry = None
        log.warning(
            "upload_service_disabled",
            message="STORAGE_URL, STORAGE_API_KEY or DATABASE_URL not set, uploads disabled",
        )

    yield  # Application runs here

    if app.state.registry is not None:
        log.info("shutting_down_upload_registry", owners=len(app.state.registry))
        app.state.registry.shutdown()

    if storage_client:
        await storage_client.close()
    if functions_client:
        await functions_client.close()


app = FastAPI(
    title="Upload Pipeline",
    description="Durable, owner-scoped background upload queue for captured videos",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(uploads.router)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> JSONResponse:
    """Health check endpoint.

    Returns:
        JSONResponse: Status and whether the upload service is configured
    """
    registry = getattr(app.state, "registry", None)
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "upload-pipeline",
            "uploads_enabled": registry is not None,
            "active_owners": len(registry) if registry is not None else 0,
        }
    )


@app.get("/", status_code=status.HTTP_200_OK)
async def root() -> JSONResponse:
    """Root endpoint with API information."""
    return JSONResponse(
        content={
            "service": "Upload Pipeline",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "uploads": "/api/v1/uploads",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Binding to 0.0.0.0 is intentional for container deployments
    uvicorn.run(
        "upload_pipeline.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=True,
    )
