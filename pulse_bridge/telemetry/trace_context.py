"""
Trace context propagation through SQS and SNS message attributes.

The trace context travels in a single String message attribute named
``Wingtips-XB3-TraceContext`` with the value ``v1:<traceId>:<spanId>:<sampled>``.
Colons inside ids are escaped as ``%3A``.

Request helpers operate on the keyword-argument dicts passed to boto3
(``send_message``, ``send_message_batch``, ``receive_message``, ``publish``).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .tracer import Span, SpanPurpose, Tracer


logger = logging.getLogger(__name__)

TRACE_CONTEXT_MESSAGE_ATTR_NAME = "Wingtips-XB3-TraceContext"
TRACE_CONTEXT_VERSION = "v1"

_URL_ENCODED_COLON = "%3A"


def escape_colons(unescaped: Optional[str]) -> Optional[str]:
    if unescaped is None:
        return None
    return unescaped.replace(":", _URL_ENCODED_COLON)


def unescape_colons(escaped: Optional[str]) -> Optional[str]:
    if escaped is None:
        return None
    return escaped.replace(_URL_ENCODED_COLON, ":")


def to_trace_context_message_attribute_value(span: Span) -> str:
    """Serialize a span into the trace context attribute value."""
    sampled_value = "1" if span.sampleable else "0"
    return f"{TRACE_CONTEXT_VERSION}:{escape_colons(span.trace_id)}:{escape_colons(span.span_id)}:{sampled_value}"


def from_trace_context_message_attribute_value(trace_context: Optional[str]) -> Optional[Span]:
    """
    Parse a trace context attribute value into a synthetic parent span.

    Args:
        trace_context: Attribute value, e.g. "v1:abc:def:1"

    Returns:
        CLIENT span carrying the trace id, span id and sampled flag,
        or None when the value is blank or malformed
    """
    if trace_context is None or not trace_context.strip():
        return None

    parts = trace_context.split(":")
    # Trailing empty segments do not count as parts
    while parts and parts[-1] == "":
        parts.pop()

    if len(parts) != 4:
        logger.warning(
            "Invalid trace context - did not contain 4 parts separated by a colon ':'. "
            f"invalid_trace_context={trace_context}"
        )
        return None

    version_id = parts[0]
    trace_id = unescape_colons(parts[1])
    span_id = unescape_colons(parts[2])
    sampleable = parts[3] != "0"

    if version_id != TRACE_CONTEXT_VERSION:
        logger.warning(
            "Unhandled trace context version. Returning null. "
            f"unhandled_trace_context_version={version_id}, unhandled_trace_context={trace_context}"
        )
        return None

    if not trace_id.strip() or not span_id.strip():
        logger.warning(
            "Invalid trace context - Trace ID and Span ID must both be non-empty. "
            f"invalid_trace_context={trace_context}"
        )
        return None

    return Span(
        trace_id=trace_id,
        span_id=span_id,
        span_name="syntheticParentTraceContext",
        sampleable=sampleable,
        span_purpose=SpanPurpose.CLIENT
    )


def continue_trace(
    parent_span: Optional[Span],
    new_child_span_name: str,
    user_id: Optional[str] = None
) -> Span:
    """
    Start a request span for the current task that continues the parent's trace.

    With no parent span a new trace is started instead.
    """
    tracer = Tracer.get_instance()
    if parent_span is None:
        span = tracer.start_request_with_root_span(new_child_span_name, user_id)
        logger.warning(
            "Call to continue_trace(...) with a null parent_span. Starting a new "
            f"trace (root span) instead. new_root_span_trace_id={span.trace_id}"
        )
        return span

    return tracer.start_request_with_span_info(
        parent_span.trace_id,
        parent_span.span_id,
        new_child_span_name,
        parent_span.sampleable,
        user_id,
        SpanPurpose.SERVER
    )


def trace_context_message_attribute_value_for_span(span: Span) -> Dict[str, str]:
    return {
        "DataType": "String",
        "StringValue": to_trace_context_message_attribute_value(span)
    }


# --- SQS -------------------------------------------------------------------

def extract_message_attribute(message: Dict[str, Any], attr_name: str) -> Optional[str]:
    """
    Read a String message attribute from an SQS message.

    Looks at the official message attributes first (raw delivery, or messages
    sent straight to SQS), then at the SNS JSON envelope in the body
    (SNS -> SQS normal delivery).
    """
    attrs = message.get("MessageAttributes") or {}
    attr = attrs.get(attr_name)
    if attr is not None:
        return attr.get("StringValue")

    body = message.get("Body")
    if body is None:
        return None

    index_of_message_attributes = body.find('"MessageAttributes" : {')
    if index_of_message_attributes < 0:
        return None

    index_of_attr_name = body.find(f'"{attr_name}" : {{', index_of_message_attributes)
    if index_of_attr_name < 0:
        return None

    value_start_text = '"Value":"'
    index_of_value_start = body.find(value_start_text, index_of_attr_name)
    if index_of_value_start < 0:
        return None

    index_of_value_end = body.find('"}', index_of_value_start)
    if index_of_value_end < 0:
        return None

    return body[index_of_value_start + len(value_start_text):index_of_value_end]


def extract_trace_context(message: Dict[str, Any]) -> Optional[Span]:
    return from_trace_context_message_attribute_value(
        extract_message_attribute(message, TRACE_CONTEXT_MESSAGE_ATTR_NAME)
    )


def with_trace_context_message_attribute_name(receive_kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Add the trace context attribute to a receive_message request."""
    names = list(receive_kwargs.get("MessageAttributeNames") or [])
    names.append(TRACE_CONTEXT_MESSAGE_ATTR_NAME)
    receive_kwargs["MessageAttributeNames"] = names
    return receive_kwargs


def with_trace_context(request: Dict[str, Any], span: Span) -> Dict[str, Any]:
    """
    Add the trace context attribute to a send_message request, a single
    send_message_batch entry, or an SNS publish request.
    """
    attrs = request.get("MessageAttributes")
    if attrs is None:
        attrs = {}
        request["MessageAttributes"] = attrs
    attrs[TRACE_CONTEXT_MESSAGE_ATTR_NAME] = trace_context_message_attribute_value_for_span(span)
    return request


def with_trace_context_entries(entries: Optional[Iterable[Dict[str, Any]]], span: Span) -> Optional[List[Dict[str, Any]]]:
    """Add the trace context attribute to every send_message_batch entry."""
    if entries is None:
        return None
    entries = list(entries)
    for entry in entries:
        with_trace_context(entry, span)
    return entries


def with_trace_context_attributes(attrs: Optional[Dict[str, Any]], span: Span) -> Dict[str, Any]:
    """Add the trace context attribute to a MessageAttributes dict."""
    if attrs is None:
        attrs = {}
    attrs[TRACE_CONTEXT_MESSAGE_ATTR_NAME] = trace_context_message_attribute_value_for_span(span)
    return attrs


# --- SNS -------------------------------------------------------------------

def with_sns_trace_context(publish_kwargs: Dict[str, Any], span: Span) -> Dict[str, Any]:
    """Add the trace context attribute to an SNS publish request."""
    return with_trace_context(publish_kwargs, span)
