"""
Structured Logging Configuration

JSON lines on stdout, one object per record:
- request_id from the current HTTP request (ContextVar)
- stay context (apartment, check_in, check_out, cache_status, tier) as
  top-level fields so log queries can filter on them
- credentials redacted from any structured payload
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# Promoted from the structured payload to the top level of the JSON line
CONTEXT_FIELDS = ("apartment", "check_in", "check_out", "cache_status", "tier", "duration_ms")

REDACT_MARKERS = ("token", "secret", "password", "authorization")


def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: "[REDACTED]" if any(m in key.lower() for m in REDACT_MARKERS) else value
        for key, value in data.items()
    }


class RequestContextFilter(logging.Filter):
    """Stamps every record with the request id, for both formatters"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            entry["request_id"] = request_id

        payload = dict(getattr(record, "stay_context", {}))
        for name in CONTEXT_FIELDS:
            if name in payload:
                entry[name] = payload.pop(name)
        if payload:
            entry["data"] = _redact(payload)

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}.{record.funcName}:{record.lineno}"

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Adapter with availability-domain helpers.

    Structured fields travel on the record as `stay_context`; plain
    logger.info(...) calls work unchanged.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault('extra', {})
        extra.update(self.extra)
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        apartment: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **fields
    ):
        context = {k: v for k, v in fields.items() if v is not None}
        if apartment:
            context["apartment"] = apartment
        if duration_ms is not None:
            context["duration_ms"] = duration_ms
        self.log(level, msg, extra={"stay_context": context})

    def availability_served(
        self,
        apartment: str,
        check_in: str,
        check_out: str,
        cache_status: str,
        is_available: bool,
        duration_ms: float
    ):
        self.log_with_context(
            logging.INFO,
            f"Availability {apartment} {check_in}..{check_out} [{cache_status}]",
            apartment=apartment,
            duration_ms=duration_ms,
            check_in=check_in,
            check_out=check_out,
            cache_status=cache_status,
            is_available=is_available
        )

    def upstream_call(
        self,
        apartment: str,
        operation: str,
        status: str,
        duration_ms: float,
        **fields
    ):
        """Beds24 call outcome; warning level on failure"""
        level = logging.INFO if status == "success" else logging.WARNING
        self.log_with_context(
            level,
            f"Upstream {operation} for {apartment}: {status}",
            apartment=apartment,
            duration_ms=duration_ms,
            operation=operation,
            status=status,
            **fields
        )

    def cache_event(self, event: str, key: str, tier: str, **fields):
        self.log_with_context(
            logging.DEBUG,
            f"Cache {event} [{tier}] {key}",
            event=event,
            key=key,
            tier=tier,
            **fields
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines (production) or a readable single-line format
        include_uvicorn: Route uvicorn's loggers through the same handler
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(request_id)s] %(levelname)s %(name)s: %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("stayengine").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ("uvicorn", "uvicorn.error"):
            logging.getLogger(logger_name).handlers = [handler]
        # MetricsMiddleware already records every request
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # httpx logs every request line at INFO, including query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def current_request_id() -> str:
    return request_id_var.get()


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set('')
