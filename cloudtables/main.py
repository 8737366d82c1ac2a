from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cloudtables.api.v1.tables import router as tables_router
from cloudtables.shared.adapters.rate_limiter import reset_rate_budgets
from cloudtables.shared.core.config import get_settings, reload_settings_from_environment
from cloudtables.shared.core.exceptions import CloudTablesException
from cloudtables.shared.core.logging import setup_logging
from cloudtables.tables import get_table_registry

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    # Fail at startup, not on the first scan, if a table definition is broken
    registry = get_table_registry()
    logger.info("table_registry_ready", tables=len(registry))

    yield

    logger.info("app_stopping")
    reset_rate_budgets()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)


@app.exception_handler(CloudTablesException)
async def cloudtables_exception_handler(request: Request, exc: CloudTablesException) -> JSONResponse:
    """Handle custom application exceptions."""
    logger.warning(
        "api_error",
        path=request.url.path,
        method=request.method,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Bad qual operators and values."""
    logger.warning("api_value_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "invalid_request", "message": str(exc), "details": {}}},
    )


@app.get("/", tags=["Lifecycle"])
async def root() -> dict[str, str]:
    """Root endpoint for basic reachability."""
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.VERSION}


@app.get("/health", tags=["Lifecycle"])
async def health_check() -> dict[str, str]:
    """Fast liveness check without provider calls."""
    return {"status": "healthy"}


app.include_router(tables_router, prefix="/api/v1")
