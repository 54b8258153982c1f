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

from guestgallery.metrics import record_http_request


# request_id of the HTTP request being served, if any
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Third-party loggers that are too chatty at INFO. httpx logs full media URLs.
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
}


class GalleryJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 UTC `ts`, `level` and `request_id`."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname

        # Threadpool workers run with a copy of the request context
        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send all application and Uvicorn logs to stdout as JSON lines.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(GalleryJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware writes the access log
    logging.getLogger("uvicorn.access").disabled = True

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured log line per HTTP request, plus HTTP metrics.

    Log keys: ts, level, request_id, method, path, status, latency_ms.
    Webhook deliveries add channel_ids, messages and result
    (see attach_delivery_log).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            elapsed = time.perf_counter() - started

            path = request.url.path
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, elapsed)

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "delivery_log", {}),
            }
            logging.getLogger("guestgallery.requests").log(
                _level_for_status(response.status_code), "Request completed", extra=fields
            )
            return response
        finally:
            request_id_ctx.reset(token)


def attach_delivery_log(
    request: Request,
    result: str,
    channel_ids: Optional[list] = None,
    messages: int = 0,
) -> None:
    """
    Stash webhook delivery details on the request for the access log line.

    Args:
        request: incoming webhook request
        result: accepted, invalid_signature or ignored
        channel_ids: phone_number_id of every batch in the delivery
        messages: number of messages processed
    """
    fields = {"result": result, "messages": messages}
    if channel_ids:
        fields["channel_ids"] = channel_ids
    request.state.delivery_log = fields
