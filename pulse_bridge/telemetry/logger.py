"""
Logging configuration for pulse-bridge service.
Provides structured JSON logging with trace ids and route metrics.
"""

import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Optional

from .tracer import Tracer


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Formats log records as JSON with consistent fields.
    """

    STANDARD_FIELDS = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
        'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
        'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'getMessage',
        'taskName', 'message'
    }

    def __init__(
        self,
        service_name: str = "pulse-bridge",
        include_extra: bool = True
    ):
        """
        Initialize JSON formatter.

        Args:
            service_name: Name of the service for log identification
            include_extra: Whether to include extra fields from log record
        """
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in self.STANDARD_FIELDS and not key.startswith('_'):
                    log_entry[key] = value

        return json.dumps(log_entry, default=self._json_default)

    @staticmethod
    def _json_default(obj: Any) -> str:
        if isinstance(obj, datetime):
            return obj.isoformat()
        return str(obj)


class TraceFilter(logging.Filter):
    """
    Logging filter that adds the current X-B3 trace and span ids to log records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Add trace ids to log record.

        Args:
            record: Log record to modify

        Returns:
            Always True (don't filter out)
        """
        span = Tracer.get_instance().get_current_span()
        if not hasattr(record, 'trace_id'):
            record.trace_id = span.trace_id if span else None
        if not hasattr(record, 'span_id'):
            record.span_id = span.span_id if span else None
        return True


def setup_logging(
    level: str = "INFO",
    service_name: str = "pulse-bridge",
    enable_json: bool = True,
    enable_trace_ids: bool = True
) -> None:
    """
    Setup logging configuration for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        service_name: Service name for log identification
        enable_json: Whether to use JSON formatting
        enable_trace_ids: Whether to add trace ids to records
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    if enable_json:
        formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    if enable_trace_ids:
        handler.addFilter(TraceFilter())

    logging.root.setLevel(numeric_level)
    logging.root.handlers.clear()
    logging.root.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "component": "logger",
            "level": level,
            "json_enabled": enable_json,
            "trace_ids_enabled": enable_trace_ids
        }
    )


class MetricsLogger:
    """
    Helper class for logging metrics and performance data.
    """

    def __init__(self, logger_name: str = "metrics"):
        self.logger = logging.getLogger(logger_name)

    def log_route_completed(
        self,
        route_id: str,
        duration_ms: float,
        success: bool,
        attempts: int = 1,
        error: Optional[str] = None
    ) -> None:
        """
        Log route execution metrics.

        Args:
            route_id: Route identifier
            duration_ms: Total time including redeliveries
            success: Whether the route completed without error
            attempts: Number of deliveries made
            error: Error message if failed
        """
        self.logger.info(
            f"Route completed: {route_id}",
            extra={
                "metric_type": "route_completed",
                "route_id": route_id,
                "duration_ms": round(duration_ms, 2),
                "success": success,
                "attempts": attempts,
                "error": error
            }
        )

    def log_pulse_call(
        self,
        method: str,
        url: str,
        status_code: Optional[int],
        duration_ms: float
    ) -> None:
        self.logger.info(
            f"Pulse call: {method} {url}",
            extra={
                "metric_type": "pulse_call",
                "method": method,
                "url": url,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2)
            }
        )

    def log_dead_lettered(self, route_id: str, queue_name: str, message_id: Optional[str] = None) -> None:
        self.logger.info(
            f"Message moved to DLQ: {queue_name}",
            extra={
                "metric_type": "dead_lettered",
                "route_id": route_id,
                "queue_name": queue_name,
                "message_id": message_id
            }
        )

    def log_http_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        client_ip: Optional[str] = None
    ) -> None:
        self.logger.info(
            f"HTTP request: {method} {path}",
            extra={
                "metric_type": "http_request",
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip
            }
        )
