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

from watihook.metrics import record_http_request

SERVICE_NAME = "watihook"

# request_id of the request being handled, picked up by every log line
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding ISO-8601 `ts`, `level`, `service` and `request_id`."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            now = datetime.now(timezone.utc)
            log_record["ts"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname
        log_record.setdefault("service", SERVICE_NAME)

        if "request_id" not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record["request_id"] = req_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Route the root logger and uvicorn's loggers to one JSON stdout handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False

    # One line per request comes from RequestLoggingMiddleware instead
    logging.getLogger("uvicorn.access").disabled = True
    return root


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one "Request completed" line per HTTP request and records its latency.

    Every line carries request_id, method, path, status and latency_ms.
    /webhook lines add the fields set through `log_webhook_data`.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            elapsed = time.perf_counter() - started
            self._log(request, request_id, status_code, elapsed)
            request_id_ctx.reset(token)

    @staticmethod
    def _log(request: Request, request_id: str, status_code: int, elapsed: float) -> None:
        path = request.url.path
        if path != "/metrics":
            record_http_request(method=request.method, path=path, status=status_code, latency_seconds=elapsed)

        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "status": status_code,
            "latency_ms": round(elapsed * 1000, 2),
        }
        fields.update(getattr(request.state, "webhook_log_data", {}))

        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logging.getLogger("watihook.requests").log(level, "Request completed", extra=fields)


def log_webhook_data(
    request: Request,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    event_kind: Optional[str] = None,
    result: Optional[str] = None,
) -> None:
    """Stash webhook fields on the request for the request log line. None values are left out."""
    fields = {"event_id": event_id, "event_type": event_type, "event_kind": event_kind, "result": result}
    request.state.webhook_log_data = {k: v for k, v in fields.items() if v is not None}
