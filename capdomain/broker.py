"""HTTP broker exposing the capability registry."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from capdomain import __version__
from capdomain.backends.code_runner import check_sandbox_available
from capdomain.config import configure_logging, get_settings
from capdomain.errors import NotFoundError, RegistryError
from capdomain.registry import get_registry, reset_registry
from capdomain.schemas import (
    CapabilityDetailsData,
    CapabilityDetailsRequest,
    CapabilityDetailsResponse,
    ErrorResponse,
    ExecuteData,
    ExecuteItem,
    ExecuteResponse,
    FilesResponse,
    HealthResponse,
    RefreshResponse,
    RegistryState,
)

logger = logging.getLogger(__name__)

# Configure logging
configure_logging(get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the registry at startup; a failure is retried by the next call."""
    try:
        get_registry().initialize()
    except RegistryError as e:
        logger.error(f"Capability registry not ready at startup: {e}")
    yield
    get_registry().close()
    reset_registry()


app = FastAPI(
    title="Capability Domain Broker",
    description="Unified capability surface over local procedures, remote tools and code execution",
    version=__version__,
    lifespan=lifespan,
)


# --- HTTP Endpoints ---


@app.get("/metadata", response_class=PlainTextResponse)
def metadata() -> PlainTextResponse:
    """Return the merged capability catalog as markdown."""
    logger.info("Getting capability metadata")
    markdown = get_registry().list_capabilities()
    return PlainTextResponse(markdown, media_type="text/markdown")


@app.post("/capability", response_model=CapabilityDetailsResponse)
def capability(request: CapabilityDetailsRequest) -> CapabilityDetailsResponse:
    """Describe capabilities by name; unknown names are omitted."""
    logger.info(f"Getting capability details for: {', '.join(request.capabilities)}")
    details = get_registry().describe(request.capabilities)
    return CapabilityDetailsResponse(data=CapabilityDetailsData(capabilities=details))


@app.post("/execute", response_model=ExecuteResponse)
def execute(request: list[ExecuteItem]) -> ExecuteResponse:
    """Execute a batch of capabilities; results keep the request order."""
    logger.info(f"Executing {len(request)} capabilities")
    results = get_registry().execute_batch(request)
    return ExecuteResponse(data=ExecuteData(results=results))


@app.api_route("/refresh", methods=["GET", "POST"], response_model=RefreshResponse)
def refresh():
    """Reload procedures and rediscover remote tools."""
    try:
        get_registry().refresh()
    except RegistryError as e:
        return JSONResponse(
            status_code=500,
            content=RefreshResponse(success=False, error=str(e)).model_dump(),
        )
    return RefreshResponse(success=True, message="Capabilities refreshed successfully")


@app.get("/files", response_model=FilesResponse)
def files() -> FilesResponse:
    """List files produced by code execution, newest first."""
    return FilesResponse(files=get_registry().runner.list_files())


@app.get("/download/{filename}")
def download(filename: str) -> FileResponse:
    """Download a file produced by code execution."""
    try:
        path = get_registry().runner.resolve_download(filename)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(f"File downloaded: {path.name}")
    return FileResponse(path, filename=path.name, headers={"Cache-Control": "no-cache"})


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Report registry state and capability counts."""
    registry = get_registry()
    state = registry.state
    return HealthResponse(
        status="ok" if state == RegistryState.READY else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        state=state,
        stats=registry.stats(),
        sandbox_available=check_sandbox_available(),
    )


@app.exception_handler(RegistryError)
async def registry_exception_handler(request, exc: RegistryError) -> JSONResponse:
    """Report a registry that could not load its sources."""
    logger.error(f"Registry unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(error=str(exc), error_code=exc.code).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
