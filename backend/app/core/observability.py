"""
Observability helpers.

Every request gets a correlation id (taken from ``X-Correlation-ID`` or
generated). It is echoed on the response and stamped on every log line
written while the request is handled, including the sequencer's mutation
logs, so one group change can be followed end to end.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.config import settings

logger = logging.getLogger("ledger.http")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s %(message)s"


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(level: str = None) -> None:
    """Configure the root logger once, using the configured level."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(level=(level or settings.log_level).upper(), handlers=[handler])


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            self._finish(request, response, correlation_id, start_time)
        finally:
            correlation_id_var.reset(token)
        return response

    def _finish(self, request: Request, response: Response, correlation_id: str, start_time: float) -> None:
        process_time = (time.perf_counter() - start_time) * 1000  # ms
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{process_time:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
            "ip": request.client.host if request.client else "unknown",
        }

        if response.status_code >= 500:
            logger.error("Request failed %s %s -> %s", request.method, request.url.path, response.status_code, extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected %s %s -> %s", request.method, request.url.path, response.status_code, extra=log_data)
        else:
            logger.info("Request %s %s -> %s", request.method, request.url.path, response.status_code, extra=log_data)

