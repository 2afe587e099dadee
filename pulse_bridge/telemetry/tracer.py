"""
Distributed tracing primitives: trace/span ids, spans and a per-task span stack.

The tracer keeps its span stack in a ContextVar, so every asyncio task
(one per SQS consumer) sees its own stack.
"""

import logging
import random
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)


class TraceHeaders:
    """Header names used to propagate trace state between routes and services."""

    TRACE_ID = "X-B3-TraceId"
    SPAN_ID = "X-B3-SpanId"
    PARENT_SPAN_ID = "X-B3-ParentSpanId"
    TRACE_SAMPLED = "X-B3-Sampled"


_HEX_DIGITS = "0123456789abcdef"
_rng = random.SystemRandom()


def generate_64_bit_random_long() -> int:
    return _rng.getrandbits(64)


def long_to_unsigned_lower_hex_string(value: int) -> str:
    return format(value & 0xFFFFFFFFFFFFFFFF, "016x")


def generate_id() -> str:
    """Generate a 16 character lower-hex trace or span id."""
    return long_to_unsigned_lower_hex_string(generate_64_bit_random_long())


def unsigned_hex_to_long(value: str) -> int:
    """
    Parse a lower-hex id of 1 to 32 characters into a 64-bit value.

    Ids longer than 16 characters (128-bit trace ids) keep their
    low 64 bits, i.e. the last 16 characters.

    Raises:
        ValueError: If the value is not 1 to 32 lower-hex characters
    """
    if value is None or not 1 <= len(value) <= 32 or any(ch not in _HEX_DIGITS for ch in value):
        raise ValueError(
            f"{value!r} should be a 1 to 32 character lower-hex string with no prefix"
        )
    return int(value[-16:], 16)


class SpanPurpose(Enum):
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    LOCAL_ONLY = "LOCAL_ONLY"
    UNKNOWN = "UNKNOWN"


class TracerManagedSpanStatus(Enum):
    MANAGED_CURRENT_ROOT_SPAN = "MANAGED_CURRENT_ROOT_SPAN"
    MANAGED_CURRENT_SUB_SPAN = "MANAGED_CURRENT_SUB_SPAN"
    MANAGED_NON_CURRENT_ROOT_SPAN = "MANAGED_NON_CURRENT_ROOT_SPAN"
    MANAGED_NON_CURRENT_SUB_SPAN = "MANAGED_NON_CURRENT_SUB_SPAN"
    UNMANAGED_SPAN = "UNMANAGED_SPAN"


@dataclass
class Span:
    """A unit of traced work."""

    trace_id: str
    span_id: str
    span_name: str
    parent_span_id: Optional[str] = None
    sampleable: bool = True
    user_id: Optional[str] = None
    span_purpose: SpanPurpose = SpanPurpose.UNKNOWN
    span_start_time_epoch_micros: int = field(default_factory=lambda: int(time.time() * 1_000_000))
    duration_nanos: Optional[int] = None
    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @classmethod
    def new_root(
        cls,
        span_name: str,
        span_purpose: SpanPurpose = SpanPurpose.UNKNOWN,
        sampleable: bool = True,
        user_id: Optional[str] = None
    ) -> "Span":
        return cls(
            trace_id=generate_id(),
            span_id=generate_id(),
            span_name=span_name,
            sampleable=sampleable,
            user_id=user_id,
            span_purpose=span_purpose
        )

    def generate_child_span(self, span_name: str, span_purpose: SpanPurpose) -> "Span":
        return Span(
            trace_id=self.trace_id,
            span_id=generate_id(),
            span_name=span_name,
            parent_span_id=self.span_id,
            sampleable=self.sampleable,
            user_id=self.user_id,
            span_purpose=span_purpose
        )

    @property
    def is_completed(self) -> bool:
        return self.duration_nanos is not None

    def complete(self) -> None:
        if self.is_completed:
            return
        self.duration_nanos = int((time.monotonic() - self._start_monotonic) * 1_000_000_000)


SpanListener = Callable[[Span], None]

# Root span first, current span last.
_span_stack: ContextVar[Tuple[Span, ...]] = ContextVar("pulse_bridge_span_stack", default=())


class Tracer:
    """
    Span stack manager. One process-wide instance, obtained with get_instance().
    """

    _instance: Optional["Tracer"] = None

    def __init__(self):
        self._listeners: List[SpanListener] = []

    @classmethod
    def get_instance(cls) -> "Tracer":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def add_span_lifecycle_listener(self, listener: SpanListener) -> None:
        self._listeners.append(listener)

    def remove_all_span_lifecycle_listeners(self) -> None:
        self._listeners.clear()

    def get_current_span(self) -> Optional[Span]:
        stack = _span_stack.get()
        return stack[-1] if stack else None

    def get_current_span_stack_copy(self) -> List[Span]:
        return list(_span_stack.get())

    def get_current_managed_status_for_span(self, span: Span) -> TracerManagedSpanStatus:
        stack = _span_stack.get()
        if not stack:
            return TracerManagedSpanStatus.UNMANAGED_SPAN
        for index, candidate in enumerate(stack):
            if candidate is span:
                is_root = index == 0
                is_current = index == len(stack) - 1
                if is_root:
                    return (TracerManagedSpanStatus.MANAGED_CURRENT_ROOT_SPAN if is_current
                            else TracerManagedSpanStatus.MANAGED_NON_CURRENT_ROOT_SPAN)
                return (TracerManagedSpanStatus.MANAGED_CURRENT_SUB_SPAN if is_current
                        else TracerManagedSpanStatus.MANAGED_NON_CURRENT_SUB_SPAN)
        return TracerManagedSpanStatus.UNMANAGED_SPAN

    def start_request_with_root_span(
        self,
        span_name: str,
        user_id: Optional[str] = None
    ) -> Span:
        return self._start_new_span_stack(Span.new_root(span_name, SpanPurpose.SERVER, user_id=user_id))

    def start_request_with_child_span(
        self,
        parent_span: Span,
        child_span_name: str
    ) -> Span:
        if parent_span is None:
            raise ValueError("parent_span cannot be None")
        return self.start_request_with_span_info(
            parent_span.trace_id,
            parent_span.span_id,
            child_span_name,
            parent_span.sampleable,
            parent_span.user_id,
            SpanPurpose.SERVER
        )

    def start_request_with_span_info(
        self,
        trace_id: str,
        parent_span_id: Optional[str],
        new_span_name: str,
        sampleable: bool,
        user_id: Optional[str],
        span_purpose: SpanPurpose
    ) -> Span:
        span = Span(
            trace_id=trace_id,
            span_id=generate_id(),
            span_name=new_span_name,
            parent_span_id=parent_span_id,
            sampleable=sampleable,
            user_id=user_id,
            span_purpose=span_purpose
        )
        return self._start_new_span_stack(span)

    def start_sub_span(self, span_name: str, span_purpose: SpanPurpose = SpanPurpose.LOCAL_ONLY) -> Span:
        """
        Start a child of the current span.

        Without a current span this starts a new root span instead.
        """
        current = self.get_current_span()
        if current is None:
            logger.warning(
                f"start_sub_span called with no current span; starting root span '{span_name}'"
            )
            return self._start_new_span_stack(Span.new_root(span_name, span_purpose))

        sub_span = current.generate_child_span(span_name, span_purpose)
        _span_stack.set(_span_stack.get() + (sub_span,))
        return sub_span

    def complete_request_span(self) -> None:
        """Complete every span on the stack, root last, and clear the stack."""
        stack = _span_stack.get()
        if not stack:
            logger.debug("complete_request_span called with no span stack")
            return

        for span in reversed(stack):
            self._complete_and_notify(span)
        _span_stack.set(())

    def complete_sub_span(self) -> None:
        """Complete the current span when it is a sub span."""
        stack = _span_stack.get()
        if len(stack) < 2:
            logger.debug("complete_sub_span called with no current sub span")
            return

        self._complete_and_notify(stack[-1])
        _span_stack.set(stack[:-1])

    def _start_new_span_stack(self, root_span: Span) -> Span:
        if _span_stack.get():
            logger.warning(
                "Starting a new span stack while another is active; the previous stack is discarded"
            )
        _span_stack.set((root_span,))
        return root_span

    def _complete_and_notify(self, span: Span) -> None:
        span.complete()
        logger.debug(
            f"Span completed: {span.span_name}",
            extra={
                "component": "tracer",
                "trace_id": span.trace_id,
                "span_id": span.span_id,
                "parent_span_id": span.parent_span_id,
                "duration_ms": round((span.duration_nanos or 0) / 1_000_000, 3)
            }
        )
        for listener in self._listeners:
            try:
                listener(span)
            except Exception as e:
                logger.warning(f"Span listener failed: {e}")
