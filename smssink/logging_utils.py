import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from smssink.metrics import record_http_request


REQUEST_ID_HEADER = "X-Request-ID"

# Paths that are scraped or polled constantly and would drown the request log
QUIET_PATHS = frozenset({"/metrics", "/health/live", "/health/ready"})

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 ``ts``, the level name and the current request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        # %(ts)s in the format string pre-seeds the key with None
        if not log_record.get("ts"):
            log_record["ts"] = format_log_time(record.created)
        log_record["level"] = record.levelname

        req_id = request_id_ctx.get()
        if req_id and "request_id" not in log_record:
            log_record["request_id"] = req_id


def format_log_time(created: float) -> str:
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send all application and uvicorn logs to stdout as JSON lines.

    Args:
        log_level: Root logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware replaces the access log
    logging.getLogger("uvicorn.access").disabled = True

    # httpx logs every callback request at INFO; the dispatcher logs outcomes itself
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root


def route_path(request: Request) -> str:
    """Route template (e.g. /api/messages) when matched, so metric labels stay bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one JSON line per request and feed the HTTP metrics.

    A caller-supplied X-Request-ID is reused, otherwise one is generated;
    either way it is echoed on the response. Handlers can add message
    fields (message_id, result) through log_message_data().
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers[REQUEST_ID_HEADER] = request_id

            path = route_path(request)
            if path == "/metrics":
                return response
            record_http_request(request.method, path, response.status_code, elapsed)

            if path in QUIET_PATHS and response.status_code < 400:
                return response

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
            }
            log_data.update(getattr(request.state, "message_log_data", {}))

            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logging.getLogger("smssink.requests").log(level, "Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_message_data(request: Request, message_id: Optional[str] = None, result: Optional[str] = None) -> None:
    """Attach message_id/result to the request so the middleware includes them in its log line."""
    request.state.message_log_data = {
        key: value
        for key, value in (("message_id", message_id), ("result", result))
        if value is not None
    }
