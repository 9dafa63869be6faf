import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from pythonjsonlogger import jsonlogger

from message_board.metrics import normalize_path, record_http_request


SERVICE_NAME = "message_board"

# Per-request context picked up by every log line, store logs included
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
caller_ctx: ContextVar[Optional[str]] = ContextVar("caller", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class MessageBoardJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding ISO-8601 `ts`, `level`, `service` and, inside a
    request, the `request_id` and calling principal.
    """

    def __init__(self, *args, service: str = SERVICE_NAME, **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname
        log_record['service'] = self.service

        for key, ctx in (('request_id', request_id_ctx), ('caller', caller_ctx)):
            if key not in log_record:
                value = ctx.get()
                if value:
                    log_record[key] = value


def setup_logging(log_level: str = "INFO", service: str = SERVICE_NAME):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service: Value of the `service` field on every line
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        MessageBoardJsonFormatter('%(ts)s %(level)s %(name)s %(message)s', service=service)
    )
    logger.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Request lines come from RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").disabled = True
    # Snapshot SQL is only interesting when debugging the database itself
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one JSON line per HTTP request and records request metrics.

    Log keys:
    - request_id: unique per request, echoed as X-Request-ID
    - caller: principal from the identity header, when present
    - method, path, route (path with ids collapsed), status, latency_ms

    Message routes add (via log_message_data):
    - operation: store operation name
    - result: ok, validation_error, not_found, unauthorized
    - message_id: target or created message id
    """

    def __init__(self, app: ASGIApp, principal_header: str = "X-Principal") -> None:
        super().__init__(app)
        self.principal_header = principal_header

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        caller = request.headers.get(self.principal_header) or None

        request_token = request_id_ctx.set(request_id)
        caller_token = caller_ctx.set(caller)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            latency_seconds = time.perf_counter() - start_time

            path = request.url.path
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, latency_seconds)

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "route": normalize_path(path),
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            if caller:
                log_data["caller"] = caller
            log_data.update(getattr(request.state, "message_log_data", {}))

            level = logging.INFO
            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            logging.getLogger("message_board.requests").log(level, "Request completed", extra=log_data)

            return response
        finally:
            caller_ctx.reset(caller_token)
            request_id_ctx.reset(request_token)


def log_message_data(
    request: Request,
    operation: str,
    result: str,
    message_id: Optional[int] = None,
):
    """
    Attach message-operation fields to the request state.
    The middleware merges them into the request log line.
    """
    data = {"operation": operation, "result": result}
    if message_id is not None:
        data["message_id"] = message_id
    request.state.message_log_data = data
