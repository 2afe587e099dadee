"""
Distributed trace processor.

Finds the trace id a message arrived with and puts the current X-B3 trace
values on the exchange, both as headers (so they travel with the message)
and as properties (so exception handlers still see them after the original
message is restored).

The incoming trace id is looked up, in order, in:

1. the ``X-B3-TraceId`` header
2. the ``X-B3-TraceId`` property
3. an SNS notification body (``MessageAttributes.Wingtips-XB3-TraceContext.Value``)
4. an SQS message body
5. the ``Wingtips-XB3-TraceContext`` header

Without an incoming trace id a new span stack is started from a root span.
"""

import json
import logging
from typing import Any, Dict, Optional

from ..domain.exchange import Exchange
from ..telemetry.tracer import Span, SpanPurpose, Tracer, TraceHeaders, TracerManagedSpanStatus
from ..telemetry.trace_context import (
    TRACE_CONTEXT_MESSAGE_ATTR_NAME,
    extract_trace_context,
    from_trace_context_message_attribute_value
)


logger = logging.getLogger(__name__)

ROOT_SPAN_NAME = "CamelRouteRootSpan"
SUB_SPAN_NAME = "CamelRouteSubSpan"

# Canonical SQS message keys, matched case-insensitively against the body
_SQS_MESSAGE_KEYS = {
    "messageid": "MessageId",
    "receipthandle": "ReceiptHandle",
    "body": "Body",
    "messageattributes": "MessageAttributes",
    "attributes": "Attributes"
}
_SQS_ATTRIBUTE_KEYS = {
    "stringvalue": "StringValue",
    "datatype": "DataType",
    "binaryvalue": "BinaryValue"
}


def complete_current_span_stack() -> None:
    """Complete every span on the current stack, root span included."""
    tracer = Tracer.get_instance()
    current_span = tracer.get_current_span()
    while current_span is not None:
        status = tracer.get_current_managed_status_for_span(current_span)
        if status == TracerManagedSpanStatus.MANAGED_CURRENT_ROOT_SPAN:
            tracer.complete_request_span()
        else:
            complete_sub_spans()
        current_span = tracer.get_current_span()


def complete_sub_spans() -> None:
    """
    Complete every sub span on the current stack, leaving the root span for
    whoever started it (e.g. an HTTP request handler).
    """
    tracer = Tracer.get_instance()
    current_span = tracer.get_current_span()
    while current_span is not None:
        status = tracer.get_current_managed_status_for_span(current_span)
        if status == TracerManagedSpanStatus.MANAGED_CURRENT_ROOT_SPAN:
            return
        if status != TracerManagedSpanStatus.MANAGED_CURRENT_SUB_SPAN:
            return
        tracer.complete_sub_span()
        current_span = tracer.get_current_span()


def _body_json(exchange: Exchange) -> Optional[Any]:
    try:
        return json.loads(exchange.body_as_text())
    except (ValueError, TypeError) as e:
        logger.debug(f"Incoming message body is not JSON: {e}")
        return None


def _canonical_keys(data: Dict[str, Any], names: Dict[str, str]) -> Dict[str, Any]:
    return {names.get(str(key).lower(), key): value for key, value in data.items()}


def sqs_message_from_body(body: Any) -> Optional[Dict[str, Any]]:
    """
    Read a JSON body as an SQS message, matching field names case-insensitively.

    Returns:
        Message dict with boto3-style keys, or None when the body is not a JSON object
    """
    if not isinstance(body, dict):
        return None
    message = _canonical_keys(body, _SQS_MESSAGE_KEYS)
    attrs = message.get("MessageAttributes")
    if isinstance(attrs, dict):
        message["MessageAttributes"] = {
            name: _canonical_keys(attr, _SQS_ATTRIBUTE_KEYS) if isinstance(attr, dict) else attr
            for name, attr in attrs.items()
        }
    return message


class DistributedTraceProcessor:
    """
    Sets X-B3 trace headers and properties on an exchange, continuing the
    incoming trace or starting a new one.
    """

    def __init__(self, tracer: Optional[Tracer] = None):
        self.tracer = tracer or Tracer.get_instance()

    def __call__(self, exchange: Exchange) -> None:
        self.process(exchange)

    def process(self, exchange: Exchange) -> None:
        for name, value in self.get_distributed_trace_values(exchange).items():
            if value is None or str(value) == "null":
                logger.warning(f"The value for {name} is null, so removing its header and property...")
                exchange.remove_header(name)
                exchange.remove_property(name)
            else:
                exchange.set_header(name, value)
                exchange.set_property(name, value)

    def get_distributed_trace_values(self, exchange: Exchange) -> Dict[str, Optional[str]]:
        """
        Work out the outgoing trace values.

        A failure part way through still yields every key, with the values not
        yet collected set to None, so stale incoming headers get replaced.
        """
        trace_id: Optional[str] = None
        span_id: Optional[str] = None
        sampled: Optional[str] = None
        parent_span_id: Optional[str] = None

        try:
            incoming_trace_id = self.get_incoming_trace_id(exchange)
            trace_id = self._outgoing_trace_id(incoming_trace_id)
            current_span = self.tracer.get_current_span()
            span_id = current_span.span_id
            sampled = "1" if current_span.sampleable else "0"
            parent_span_id = current_span.parent_span_id
        except Exception as e:
            logger.warning(
                "An Exception occurred while getting distributed trace values. Camel message headers and "
                f" exchange properties for  uncollected trace values will be removed. {e}"
            )
            logger.debug("Trace value failure detail", exc_info=True)

        return {
            TraceHeaders.TRACE_ID: trace_id,
            TraceHeaders.SPAN_ID: span_id,
            TraceHeaders.TRACE_SAMPLED: sampled,
            TraceHeaders.PARENT_SPAN_ID: parent_span_id
        }

    def _outgoing_trace_id(self, incoming_trace_id: Optional[str]) -> str:
        if incoming_trace_id is None:
            # A current span without an incoming trace id still gets a fresh stack
            complete_current_span_stack()
            return self.tracer.start_request_with_root_span(ROOT_SPAN_NAME).trace_id

        return self._span_with_incoming_trace_id(incoming_trace_id).trace_id

    def _span_with_incoming_trace_id(self, incoming_trace_id: str) -> Span:
        current_span = self.tracer.get_current_span()
        if current_span is not None and current_span.trace_id == incoming_trace_id:
            return self.tracer.start_sub_span(SUB_SPAN_NAME, SpanPurpose.UNKNOWN)

        complete_current_span_stack()
        return self.tracer.start_request_with_span_info(
            incoming_trace_id, None, ROOT_SPAN_NAME, True, None, SpanPurpose.UNKNOWN
        )

    def get_incoming_trace_id(self, exchange: Exchange) -> Optional[str]:
        incoming = exchange.get_header(TraceHeaders.TRACE_ID)
        if incoming is None:
            incoming = exchange.get_property(TraceHeaders.TRACE_ID)
        if incoming is None:
            incoming = self._sns_notification_trace_id(exchange)
        if incoming is None:
            incoming = self._sqs_message_trace_id(exchange)
        if incoming is None:
            incoming = self._message_attribute_header_trace_id(exchange)
        return str(incoming) if incoming is not None else None

    def _sns_notification_trace_id(self, exchange: Exchange) -> Optional[str]:
        try:
            notification = _body_json(exchange)
            trace_context = notification["MessageAttributes"][TRACE_CONTEXT_MESSAGE_ATTR_NAME]["Value"]
            return from_trace_context_message_attribute_value(trace_context).trace_id
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Wingtips traceId not found in SNS notification {e!r}")
            logger.debug(f"Wingtips traceId not found in SNS notification: {exchange.body!r}")
        return None

    def _sqs_message_trace_id(self, exchange: Exchange) -> Optional[str]:
        try:
            message = sqs_message_from_body(_body_json(exchange))
            return extract_trace_context(message).trace_id
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Wingtips traceId not found in SQS message {e!r}")
            logger.debug(f"Wingtips traceId not found in SQS message: {exchange.body!r}")
        return None

    def _message_attribute_header_trace_id(self, exchange: Exchange) -> Optional[str]:
        trace_context = exchange.get_header(TRACE_CONTEXT_MESSAGE_ATTR_NAME)
        if trace_context is None:
            return None
        try:
            return from_trace_context_message_attribute_value(str(trace_context)).trace_id
        except AttributeError as e:
            logger.warning(
                f"Exception while retrieving Camel Exchange header property {TRACE_CONTEXT_MESSAGE_ATTR_NAME} {e!r}"
            )
        return None
