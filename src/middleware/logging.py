"""Request logging middleware."""

# Standard library imports
import time
from typing import Callable

# Third-party imports
import structlog
from fastapi import Request

from ..config import settings

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware:
    """Logs method, path, status and duration of HTTP requests."""

    def __init__(self, app: Callable):
        self.app = app
        self.enabled = settings.enable_access_logs
        self.health_logged = False

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        # Websockets (the output channel) are long-lived; not logged here
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        start_time = time.time()

        # Skip repeated health check logging
        skip_logging = not self.enabled or (
            request.url.path == "/health" and self.health_logged
        )
        if request.url.path == "/health" and not self.health_logged:
            self.health_logged = True

        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            if not skip_logging:
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                )
            raise
        finally:
            if not skip_logging:
                duration = time.time() - start_time
                log_kwargs = dict(
                    method=request.method,
                    path=request.url.path,
                    status=response_status,
                    duration_ms=round(duration * 1000, 2),
                )
                if response_status and response_status >= 500:
                    logger.error("Request failed", **log_kwargs)
                elif response_status and response_status >= 400:
                    logger.warning("Request error", **log_kwargs)
                else:
                    logger.debug("Request processed", **log_kwargs)
