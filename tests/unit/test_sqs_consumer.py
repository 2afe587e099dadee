import asyncio
from typing import List

import boto3
import pytest
from moto import mock_aws

from pulse_bridge.adapters.sqs_consumer import (
    SqsConsumerOptions,
    SqsDeadLetterSender,
    SqsRouteConsumer,
    exchange_from_sqs_message
)
from pulse_bridge.config import SqsConfig
from pulse_bridge.domain.exchange import Exchange, MESSAGE_ID, RECEIPT_HANDLE
from pulse_bridge.telemetry.trace_context import TRACE_CONTEXT_MESSAGE_ATTR_NAME
from pulse_bridge.telemetry.tracer import Tracer


@pytest.fixture
def sqs():
    with mock_aws():
        yield boto3.client("sqs", region_name="us-east-1")


def _options(**overrides) -> SqsConsumerOptions:
    return SqsConsumerOptions.from_config(SqsConfig(initial_delay_ms=0, delay_ms=0), **overrides)


def _queue_depth(sqs, queue_url: str) -> int:
    attrs = sqs.get_queue_attributes(
        QueueUrl=queue_url,
        AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"]
    )["Attributes"]
    return int(attrs["ApproximateNumberOfMessages"]) + int(attrs["ApproximateNumberOfMessagesNotVisible"])


def test_options_from_config() -> None:
    options = SqsConsumerOptions.from_config(
        SqsConfig(attribute_names="All, SentTimestamp", message_attribute_names=""),
        is_fifo=True,
        message_group_id_strategy=" useExchangeId ",
        delete_after_read=False
    )

    assert options.attribute_names == ["All", "SentTimestamp"]
    assert options.message_attribute_names == []
    assert options.message_group_id_strategy == "useExchangeId"
    assert options.delete_after_read is False

    kwargs = options.receive_kwargs("http://queue")
    assert kwargs["AttributeNames"] == ["All", "SentTimestamp"]
    assert kwargs["MessageAttributeNames"] == [TRACE_CONTEXT_MESSAGE_ATTR_NAME]


def test_group_id_strategy_ignored_for_standard_queue() -> None:
    options = SqsConsumerOptions.from_config(SqsConfig(), message_group_id_strategy="useExchangeId")

    assert options.message_group_id_strategy is None


def test_exchange_from_sqs_message() -> None:
    exchange = exchange_from_sqs_message({
        "MessageId": "m-1",
        "ReceiptHandle": "r-1",
        "Body": "<shipment/>",
        "MessageAttributes": {
            "id": {"DataType": "String", "StringValue": "event-1"},
            "blob": {"DataType": "Binary", "BinaryValue": b"\x00"}
        }
    })

    assert exchange.body == "<shipment/>"
    assert exchange.headers == {"id": "event-1", MESSAGE_ID: "m-1", RECEIPT_HANDLE: "r-1"}


@pytest.mark.asyncio
async def test_poll_once_routes_and_deletes_messages(sqs) -> None:
    queue_url = sqs.create_queue(QueueName="ship-afssap_shipconfirm")["QueueUrl"]
    sqs.send_message(
        QueueUrl=queue_url,
        MessageBody="hello",
        MessageAttributes={"id": {"DataType": "String", "StringValue": "event-1"}}
    )
    received: List[Exchange] = []

    async def handler(exchange: Exchange) -> None:
        received.append(exchange)

    consumer = SqsRouteConsumer(sqs, "ship-afssap_shipconfirm", _options(), handler, "ShipConfirmRoute")
    consumer.queue_url = queue_url

    assert await consumer.poll_once() == 1
    assert received[0].body == "hello"
    assert received[0].get_header("id") == "event-1"
    assert received[0].route_id == "ShipConfirmRoute"
    assert _queue_depth(sqs, queue_url) == 0


@pytest.mark.asyncio
async def test_failed_message_is_not_deleted(sqs) -> None:
    queue_url = sqs.create_queue(QueueName="ship-afssap_shipstatus")["QueueUrl"]
    sqs.send_message(QueueUrl=queue_url, MessageBody="broken")

    async def handler(exchange: Exchange) -> None:
        raise RuntimeError("route failed")

    consumer = SqsRouteConsumer(sqs, "ship-afssap_shipstatus", _options(), handler)
    consumer.queue_url = queue_url

    assert await consumer.poll_once() == 1
    assert _queue_depth(sqs, queue_url) == 1


@pytest.mark.asyncio
async def test_start_consumes_until_stopped(sqs) -> None:
    queue_url = sqs.create_queue(QueueName="ship-afssap_nsp")["QueueUrl"]
    sqs.send_message(QueueUrl=queue_url, MessageBody="relay me")
    seen = asyncio.Event()

    async def handler(exchange: Exchange) -> None:
        seen.set()

    consumer = SqsRouteConsumer(sqs, "ship-afssap_nsp", _options(), handler, "PulseRouter")
    await consumer.start()
    try:
        await asyncio.wait_for(seen.wait(), timeout=5)
    finally:
        await consumer.stop()

    assert consumer.queue_url == queue_url
    assert consumer._tasks == []


@pytest.mark.asyncio
async def test_dead_letter_sender_carries_trace_context(sqs) -> None:
    dlq_url = sqs.create_queue(QueueName="ship-afssap_nsp-dlq")["QueueUrl"]
    span = Tracer.get_instance().start_request_with_root_span("route")

    message_id = await SqsDeadLetterSender(sqs).send("ship-afssap_nsp-dlq", Exchange.from_message("failed body"))

    messages = sqs.receive_message(QueueUrl=dlq_url, MessageAttributeNames=["All"])["Messages"]
    assert messages[0]["MessageId"] == message_id
    assert messages[0]["Body"] == "failed body"
    trace_context = messages[0]["MessageAttributes"][TRACE_CONTEXT_MESSAGE_ATTR_NAME]["StringValue"]
    assert trace_context == f"v1:{span.trace_id}:{span.span_id}:1"
