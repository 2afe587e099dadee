"""
Telemetry and observability for pulse-bridge service.

Contains logging, metrics and distributed tracing utilities.
"""

from .logger import setup_logging, JSONFormatter, TraceFilter, MetricsLogger
from .tracer import Span, SpanPurpose, Tracer, TraceHeaders, TracerManagedSpanStatus

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "TraceFilter",
    "MetricsLogger",
    "Span",
    "SpanPurpose",
    "Tracer",
    "TraceHeaders",
    "TracerManagedSpanStatus"
]
