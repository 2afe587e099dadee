import json

import pytest

from pulse_bridge.domain.exchange import Exchange
from pulse_bridge.services.trace_processor import (
    DistributedTraceProcessor,
    complete_current_span_stack,
    sqs_message_from_body
)
from pulse_bridge.telemetry.tracer import Tracer, TraceHeaders

from tests.fixtures.builders import sns_notification


@pytest.fixture
def processor() -> DistributedTraceProcessor:
    return DistributedTraceProcessor()


def test_new_trace_started_without_incoming_trace_id(processor) -> None:
    exchange = Exchange.from_message("<shipment/>")

    processor.process(exchange)

    current = Tracer.get_instance().get_current_span()
    assert exchange.get_header(TraceHeaders.TRACE_ID) == current.trace_id
    assert exchange.get_property(TraceHeaders.TRACE_ID) == current.trace_id
    assert exchange.get_header(TraceHeaders.SPAN_ID) == current.span_id
    assert exchange.get_header(TraceHeaders.TRACE_SAMPLED) == "1"
    # a root span has no parent, so the header is dropped
    assert TraceHeaders.PARENT_SPAN_ID not in exchange.headers


def test_incoming_trace_id_header_is_continued(processor) -> None:
    exchange = Exchange.from_message("payload", {TraceHeaders.TRACE_ID: "abc123"})

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.TRACE_ID) == "abc123"
    assert Tracer.get_instance().get_current_span().trace_id == "abc123"


def test_same_trace_id_starts_sub_span(processor) -> None:
    """
    Given a route that already traced an exchange
    When the next step processes the same exchange
    Then it runs in a sub span of the existing root span
    """
    exchange = Exchange.from_message("payload", {TraceHeaders.TRACE_ID: "abc123"})
    processor.process(exchange)
    root_span_id = exchange.get_header(TraceHeaders.SPAN_ID)

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.PARENT_SPAN_ID) == root_span_id
    assert exchange.get_header(TraceHeaders.SPAN_ID) != root_span_id
    assert len(Tracer.get_instance().get_current_span_stack_copy()) == 2


def test_trace_id_read_from_property_when_header_missing(processor) -> None:
    exchange = Exchange.from_message("payload")
    exchange.set_property(TraceHeaders.TRACE_ID, "prop-trace")

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.TRACE_ID) == "prop-trace"


def test_trace_id_read_from_sns_notification(processor) -> None:
    exchange = Exchange.from_message(sns_notification(trace_context="v1:snstrace:span1:1"))

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.TRACE_ID) == "snstrace"


def test_trace_id_read_from_sqs_message_body_with_any_key_case(processor) -> None:
    body = json.dumps({
        "messageId": "m-1",
        "body": "hello",
        "messageAttributes": {
            "Wingtips-XB3-TraceContext": {"stringValue": "v1:sqstrace:span2:0", "dataType": "String"}
        }
    })
    exchange = Exchange.from_message(body)

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.TRACE_ID) == "sqstrace"


def test_trace_id_read_from_trace_context_header(processor) -> None:
    exchange = Exchange.from_message("not json", {"Wingtips-XB3-TraceContext": "v1:hdrtrace:span3:1"})

    processor.process(exchange)

    assert exchange.get_header(TraceHeaders.TRACE_ID) == "hdrtrace"


def test_malformed_trace_context_header_starts_new_trace(processor) -> None:
    exchange = Exchange.from_message("not json", {"Wingtips-XB3-TraceContext": "garbage"})

    processor.process(exchange)

    trace_id = exchange.get_header(TraceHeaders.TRACE_ID)
    assert trace_id is not None
    assert trace_id != "garbage"


def test_failure_removes_stale_trace_values(processor, monkeypatch) -> None:
    exchange = Exchange.from_message("payload", {
        TraceHeaders.TRACE_ID: "stale",
        TraceHeaders.SPAN_ID: "stale-span"
    })
    exchange.set_property(TraceHeaders.SPAN_ID, "stale-span")

    def fail(_incoming):
        raise RuntimeError("tracer unavailable")

    monkeypatch.setattr(processor, "_outgoing_trace_id", fail)
    processor.process(exchange)

    assert TraceHeaders.TRACE_ID not in exchange.headers
    assert TraceHeaders.SPAN_ID not in exchange.headers
    assert TraceHeaders.SPAN_ID not in exchange.properties


def test_processor_is_callable(processor) -> None:
    exchange = Exchange.from_message("payload")

    processor(exchange)

    assert TraceHeaders.TRACE_ID in exchange.headers


def test_complete_current_span_stack_clears_sub_spans_and_root() -> None:
    tracer = Tracer.get_instance()
    tracer.start_request_with_root_span("root")
    tracer.start_sub_span("a")
    tracer.start_sub_span("b")

    complete_current_span_stack()

    assert tracer.get_current_span() is None


def test_sqs_message_from_body_requires_object() -> None:
    assert sqs_message_from_body(["not", "a", "dict"]) is None
    assert sqs_message_from_body({"receipthandle": "r"}) == {"ReceiptHandle": "r"}
