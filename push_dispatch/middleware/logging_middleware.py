"""
Request Logging Middleware

Middleware that:
- Takes the caller's X-Request-ID or generates one, and echoes it back
- Logs request start and end with timing
- Tags dispatch requests so fan-out logs can be filtered by route
- Propagates request_id to all logs via contextvars
- Records metrics for Prometheus
"""
import time
import uuid
import logging
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from push_dispatch.core.logging_config import set_request_id, clear_request_id
from push_dispatch.core.metrics import record_request_metrics

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Longest caller-supplied request ID that is trusted as-is (audit column width)
MAX_REQUEST_ID_LENGTH = 36


def resolve_request_id(incoming: Optional[str]) -> str:
    """
    Pick the correlation ID for a request.

    Reuses the caller's ID; empty or oversized values are replaced with a
    fresh UUID.
    """
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs all HTTP requests with timing and correlation IDs.

    For each request:
    1. Resolves request_id from X-Request-ID (or a new UUID)
    2. Sets request_id in context for all downstream logs, including the
       per-endpoint delivery logs and audit rows of a dispatch
    3. Logs request start (method, path, whether it is a dispatch)
    4. Logs request end (status code, response time in ms)
    """

    # Paths to exclude from detailed logging (health checks, etc.)
    EXCLUDED_PATHS = {'/', '/health', '/metrics', '/docs', '/redoc', '/openapi.json'}

    # Path fragment of the dispatch endpoint
    DISPATCH_PATH_SUFFIX = '/push/send'

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

        # Set in context for all downstream logs
        token = set_request_id(request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()

        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else "unknown"
        is_dispatch = path.endswith(self.DISPATCH_PATH_SUFFIX)

        # Only log non-excluded paths
        should_log = path not in self.EXCLUDED_PATHS

        if should_log:
            logger.info(
                "Dispatch request started" if is_dispatch else "Request started",
                extra={
                    "event_type": "dispatch_request_start" if is_dispatch else "request_start",
                    "method": method,
                    "path": path,
                    "client_ip": client_host,
                    "content_length": request.headers.get("content-length"),
                }
            )

        try:
            response = await call_next(request)

            response_time_ms = (time.perf_counter() - start_time) * 1000

            # Echo the correlation ID so clients can quote it
            response.headers[REQUEST_ID_HEADER] = request_id

            if should_log:
                # 4xx from the dispatch endpoint are caller errors, 5xx are ours
                log_level = logging.INFO if response.status_code < 400 else logging.WARNING
                if response.status_code >= 500:
                    log_level = logging.ERROR

                logger.log(
                    log_level,
                    "Dispatch request completed" if is_dispatch else "Request completed",
                    extra={
                        "event_type": "dispatch_request_complete" if is_dispatch else "request_complete",
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "response_time_ms": round(response_time_ms, 2),
                    }
                )

            record_request_metrics(
                method=method,
                path=path,
                status_code=response.status_code,
                response_time_seconds=response_time_ms / 1000
            )

            return response

        except Exception as e:
            # Unhandled errors still get timing, a log line and a 500 sample
            response_time_ms = (time.perf_counter() - start_time) * 1000

            logger.error(
                "Request failed with exception",
                extra={
                    "event_type": "request_error",
                    "method": method,
                    "path": path,
                    "dispatch": is_dispatch,
                    "response_time_ms": round(response_time_ms, 2),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True
            )

            record_request_metrics(
                method=method,
                path=path,
                status_code=500,
                response_time_seconds=response_time_ms / 1000
            )

            raise

        finally:
            clear_request_id(token)
