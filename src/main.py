"""Main FastAPI application for the process runner API."""

# Standard library imports
import asyncio
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# Local application imports
from .api import health, output, run, sessions
from .config import settings
from .dependencies import get_run_orchestrator, get_session_store
from .middleware import RequestLoggingMiddleware
from .models.errors import ProcessRunnerException
from .utils.error_handlers import (
    process_runner_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .utils.logging import setup_logging

# Setup logging
setup_logging()
logger = structlog.get_logger()


async def _sweep_idle_channels() -> None:
    """Periodically detach and close output channels nobody is using."""
    interval = settings.channel_cleanup_interval_minutes * 60
    max_idle = settings.get_channel_idle_timeout_seconds()
    session_store = get_session_store()

    while True:
        await asyncio.sleep(interval)
        try:
            for channel in session_store.detach_idle_channels(max_idle):
                await channel.close()
        except Exception as e:
            logger.error("Idle channel sweep failed", error=str(e))


async def _shutdown_runs() -> None:
    try:
        await get_run_orchestrator().shutdown()
    except Exception as e:
        logger.error("Error stopping running processes", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting process runner API", version=health.SERVICE_VERSION)

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")
    if settings.sandbox_enabled:
        logger.info("Sandboxing enabled", nsjail_binary=settings.nsjail_binary)
    else:
        logger.warning("Sandboxing disabled - executables run unconfined")

    # Build the shared services before the first request
    get_run_orchestrator()

    sweeper = asyncio.create_task(_sweep_idle_channels(), name="channel-sweeper")
    app.state.channel_sweeper = sweeper

    logger.info("Process runner API startup completed")

    yield

    logger.info("Shutting down process runner API")

    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await _shutdown_runs()

    logger.info("Process runner API shutdown completed")


app = FastAPI(
    title="Process Runner API",
    description="Runs executables per session and streams their output over websockets",
    version=health.SERVICE_VERSION,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    debug=settings.api_debug,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

if settings.enable_cors:
    origins = settings.cors_origins if settings.cors_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    logger.info("CORS enabled", origins=origins)

# Register global error handlers
app.add_exception_handler(ProcessRunnerException, process_runner_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(run.router, tags=["run"])
app.include_router(output.router, tags=["output"])
app.include_router(sessions.router, tags=["sessions"])
app.include_router(health.router, tags=["health"])


def run_server():
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
        access_log=settings.enable_access_logs,
        timeout_keep_alive=120,
    )


if __name__ == "__main__":
    run_server()
