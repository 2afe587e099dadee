import json

import pytest

from pulse_bridge.telemetry.tracer import (
    Span,
    SpanPurpose,
    Tracer,
    TracerManagedSpanStatus,
    generate_id,
    unsigned_hex_to_long
)
from pulse_bridge.telemetry.trace_context import (
    TRACE_CONTEXT_MESSAGE_ATTR_NAME,
    continue_trace,
    escape_colons,
    extract_message_attribute,
    extract_trace_context,
    from_trace_context_message_attribute_value,
    to_trace_context_message_attribute_value,
    unescape_colons,
    with_sns_trace_context,
    with_trace_context,
    with_trace_context_attributes,
    with_trace_context_entries,
    with_trace_context_message_attribute_name
)


def test_generate_id_is_16_lower_hex_chars() -> None:
    span_id = generate_id()

    assert len(span_id) == 16
    assert int(span_id, 16) >= 0
    assert span_id == span_id.lower()


def test_unsigned_hex_to_long_keeps_low_64_bits_of_128_bit_ids() -> None:
    assert unsigned_hex_to_long("ff") == 255
    assert unsigned_hex_to_long("0" * 16 + "00000000000000ff") == 255

    with pytest.raises(ValueError):
        unsigned_hex_to_long("XYZ")
    with pytest.raises(ValueError):
        unsigned_hex_to_long("")


def test_sub_span_status_and_completion_order() -> None:
    tracer = Tracer.get_instance()
    completed = []
    tracer.add_span_lifecycle_listener(lambda span: completed.append(span.span_name))

    root = tracer.start_request_with_root_span("root")
    sub = tracer.start_sub_span("sub")

    assert sub.trace_id == root.trace_id
    assert sub.parent_span_id == root.span_id
    assert tracer.get_current_managed_status_for_span(sub) == TracerManagedSpanStatus.MANAGED_CURRENT_SUB_SPAN
    assert tracer.get_current_managed_status_for_span(root) == TracerManagedSpanStatus.MANAGED_NON_CURRENT_ROOT_SPAN

    tracer.complete_sub_span()
    assert tracer.get_current_span() is root
    assert tracer.get_current_managed_status_for_span(root) == TracerManagedSpanStatus.MANAGED_CURRENT_ROOT_SPAN

    tracer.complete_request_span()
    assert tracer.get_current_span() is None
    assert completed == ["sub", "root"]
    assert sub.is_completed and root.is_completed


def test_start_sub_span_without_current_span_starts_root() -> None:
    tracer = Tracer.get_instance()

    span = tracer.start_sub_span("orphan")

    assert tracer.get_current_managed_status_for_span(span) == TracerManagedSpanStatus.MANAGED_CURRENT_ROOT_SPAN


def test_unmanaged_span_status() -> None:
    span = Span.new_root("detached")

    assert Tracer.get_instance().get_current_managed_status_for_span(span) == TracerManagedSpanStatus.UNMANAGED_SPAN


def test_colon_escaping() -> None:
    assert escape_colons("a:b") == "a%3Ab"
    assert unescape_colons("a%3Ab") == "a:b"
    assert escape_colons(None) is None


def test_trace_context_value_format() -> None:
    span = Span(trace_id="abc:1", span_id="def", span_name="s", sampleable=False)

    assert to_trace_context_message_attribute_value(span) == "v1:abc%3A1:def:0"

    parsed = from_trace_context_message_attribute_value("v1:abc%3A1:def:0")
    assert parsed.trace_id == "abc:1"
    assert parsed.span_id == "def"
    assert parsed.sampleable is False
    assert parsed.span_purpose == SpanPurpose.CLIENT


@pytest.mark.parametrize(
    "value",
    [None, "", "   ", "v1:abc:def", "v2:abc:def:1", "v1: :def:1", "v1:abc:def:1:extra"]
)
def test_invalid_trace_context_values_yield_none(value) -> None:
    assert from_trace_context_message_attribute_value(value) is None


def test_trailing_empty_segments_are_ignored() -> None:
    assert from_trace_context_message_attribute_value("v1:abc:def:1::").trace_id == "abc"


def test_continue_trace_with_parent_and_without() -> None:
    parent = Span(trace_id="1111", span_id="2222", span_name="parent")

    span = continue_trace(parent, "child")
    assert span.trace_id == "1111"
    assert span.parent_span_id == "2222"
    assert span.span_purpose == SpanPurpose.SERVER

    Tracer.get_instance().complete_request_span()
    root = continue_trace(None, "new")
    assert root.parent_span_id is None
    assert Tracer.get_instance().get_current_span() is root


def test_extract_message_attribute_prefers_official_attributes() -> None:
    message = {
        "MessageAttributes": {TRACE_CONTEXT_MESSAGE_ATTR_NAME: {"StringValue": "v1:aa:bb:1", "DataType": "String"}},
        "Body": "{}"
    }

    assert extract_trace_context(message).trace_id == "aa"


def test_extract_message_attribute_from_sns_envelope_body() -> None:
    body = (
        '{\n  "Type" : "Notification",\n  "MessageAttributes" : {\n'
        '    "Wingtips-XB3-TraceContext" : {"Type":"String","Value":"v1:cc:dd:1"}\n  }\n}'
    )

    assert extract_message_attribute({"Body": body}, TRACE_CONTEXT_MESSAGE_ATTR_NAME) == "v1:cc:dd:1"
    assert extract_message_attribute({"Body": json.dumps({"a": 1})}, TRACE_CONTEXT_MESSAGE_ATTR_NAME) is None
    assert extract_message_attribute({}, TRACE_CONTEXT_MESSAGE_ATTR_NAME) is None


def test_request_helpers_add_trace_context() -> None:
    span = Span(trace_id="aa", span_id="bb", span_name="s")
    expected = {"DataType": "String", "StringValue": "v1:aa:bb:1"}

    request = with_trace_context({"QueueUrl": "q", "MessageBody": "x"}, span)
    assert request["MessageAttributes"][TRACE_CONTEXT_MESSAGE_ATTR_NAME] == expected

    entries = with_trace_context_entries([{"Id": "1"}, {"Id": "2"}], span)
    assert all(e["MessageAttributes"][TRACE_CONTEXT_MESSAGE_ATTR_NAME] == expected for e in entries)
    assert with_trace_context_entries(None, span) is None

    attrs = with_trace_context_attributes(None, span)
    assert attrs[TRACE_CONTEXT_MESSAGE_ATTR_NAME] == expected

    publish = with_sns_trace_context({"TopicArn": "t", "Message": "m"}, span)
    assert publish["MessageAttributes"][TRACE_CONTEXT_MESSAGE_ATTR_NAME] == expected

    receive = with_trace_context_message_attribute_name({"MessageAttributeNames": ["All"]})
    assert receive["MessageAttributeNames"] == ["All", TRACE_CONTEXT_MESSAGE_ATTR_NAME]
