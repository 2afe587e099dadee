"""
SQS polling consumer that feeds messages into a route, and the dead letter
sender used by route error handling.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..domain.exchange import Exchange, MESSAGE_ID, RECEIPT_HANDLE
from ..domain.ports import DeadLetterSender, ExchangeHandler, MessageConsumer
from ..telemetry.tracer import Tracer, Span
from ..telemetry.trace_context import (
    with_trace_context,
    with_trace_context_message_attribute_name
)


logger = logging.getLogger(__name__)


def _split_names(names: Optional[str]) -> List[str]:
    return [name.strip() for name in (names or "").split(",") if name.strip()]


@dataclass
class SqsConsumerOptions:
    """Polling options for one queue."""

    concurrent_consumers: int = 1
    max_messages_per_poll: int = 10
    attribute_names: List[str] = field(default_factory=list)
    message_attribute_names: List[str] = field(default_factory=lambda: ["All"])
    initial_delay_ms: int = 1000
    wait_time_seconds: int = 0
    visibility_timeout: int = 30
    delete_after_read: bool = True
    delay_ms: int = 500
    message_group_id_strategy: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        sqs_config,
        is_fifo: bool = False,
        message_group_id_strategy: Optional[str] = None,
        **overrides: Any
    ) -> "SqsConsumerOptions":
        """
        Build options from the ``sqs`` config section.

        Attribute names are only requested when configured; the message group
        id strategy only applies to FIFO queues.
        """
        options = cls(
            concurrent_consumers=sqs_config.concurrent_consumers,
            max_messages_per_poll=sqs_config.max_messages_per_poll,
            attribute_names=_split_names(sqs_config.attribute_names),
            message_attribute_names=_split_names(sqs_config.message_attribute_names),
            initial_delay_ms=sqs_config.initial_delay_ms,
            wait_time_seconds=sqs_config.receive_message_wait_time_seconds,
            visibility_timeout=sqs_config.visibility_timeout,
            delete_after_read=sqs_config.delete_after_read,
            delay_ms=sqs_config.delay_ms
        )
        if is_fifo and message_group_id_strategy and message_group_id_strategy.strip():
            options.message_group_id_strategy = message_group_id_strategy.strip()
        for name, value in overrides.items():
            setattr(options, name, value)
        return options

    def receive_kwargs(self, queue_url: str) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": self.max_messages_per_poll,
            "WaitTimeSeconds": self.wait_time_seconds,
            "VisibilityTimeout": self.visibility_timeout,
            "MessageAttributeNames": list(self.message_attribute_names)
        }
        if self.attribute_names:
            kwargs["AttributeNames"] = list(self.attribute_names)
        return with_trace_context_message_attribute_name(kwargs)


def exchange_from_sqs_message(message: Dict[str, Any]) -> Exchange:
    """
    Turn a received SQS message into an exchange.

    String message attributes become headers, alongside the message id and
    receipt handle.
    """
    headers: Dict[str, Any] = {}
    for name, attr in (message.get("MessageAttributes") or {}).items():
        value = attr.get("StringValue")
        if value is not None:
            headers[name] = value
    headers[MESSAGE_ID] = message.get("MessageId")
    headers[RECEIPT_HANDLE] = message.get("ReceiptHandle")
    return Exchange.from_message(message.get("Body"), headers)


class SqsRouteConsumer(MessageConsumer):
    """
    Polls one queue with ``concurrent_consumers`` tasks and hands every
    message to the route handler.

    Successful messages are deleted when ``delete_after_read`` is set. Failed
    messages are left in the queue so its redrive policy can move them.
    """

    def __init__(
        self,
        sqs_client,
        queue_name: str,
        options: SqsConsumerOptions,
        handler: ExchangeHandler,
        route_id: Optional[str] = None
    ):
        """
        Initialize consumer.

        Args:
            sqs_client: boto3 SQS client
            queue_name: Queue to poll
            options: Polling options
            handler: Async route entry point
            route_id: Route identifier for logs
        """
        self.sqs = sqs_client
        self.queue_name = queue_name
        self.options = options
        self.handler = handler
        self.route_id = route_id or queue_name

        self.queue_url: Optional[str] = None
        self._consuming = False
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Resolve the queue and start polling tasks after the initial delay."""
        if self._consuming:
            logger.warning("Consumer already running")
            return

        response = await asyncio.to_thread(self.sqs.get_queue_url, QueueName=self.queue_name)
        self.queue_url = response["QueueUrl"]
        self._consuming = True

        self._tasks = [
            asyncio.create_task(self._consume_loop(index), name=f"{self.route_id}-consumer-{index}")
            for index in range(self.options.concurrent_consumers)
        ]

        logger.info(
            "Started consuming messages",
            extra={
                "component": "sqs_consumer",
                "route_id": self.route_id,
                "queue_name": self.queue_name,
                "concurrent_consumers": self.options.concurrent_consumers
            }
        )

    async def stop(self) -> None:
        if not self._consuming:
            return

        self._consuming = False
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        logger.info(f"Stopped consuming messages from {self.queue_name}")

    async def poll_once(self) -> int:
        """
        Receive one batch and route every message in it.

        Returns:
            Number of messages received
        """
        response = await asyncio.to_thread(
            self.sqs.receive_message,
            **self.options.receive_kwargs(self.queue_url)
        )
        messages = response.get("Messages") or []
        for message in messages:
            await self._handle_message(message)
        return len(messages)

    async def _consume_loop(self, index: int) -> None:
        try:
            await asyncio.sleep(self.options.initial_delay_ms / 1000.0)
            logger.info(
                "Starting message consumption loop",
                extra={
                    "component": "sqs_consumer",
                    "queue_name": self.queue_name,
                    "consumer_index": index
                }
            )
            while self._consuming:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Error polling queue {self.queue_name}: {e}",
                        extra={"component": "sqs_consumer", "route_id": self.route_id}
                    )
                await asyncio.sleep(self.options.delay_ms / 1000.0)
        except asyncio.CancelledError:
            logger.info(f"Consumption loop cancelled for {self.queue_name}")

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        exchange = exchange_from_sqs_message(message)
        exchange.route_id = self.route_id

        try:
            await self.handler(exchange)
        except Exception as e:
            logger.error(
                f"Error processing message: {e}",
                extra={
                    "component": "sqs_consumer",
                    "route_id": self.route_id,
                    "message_id": message.get("MessageId"),
                    "error": str(e)
                }
            )
            # Not deleted; the message becomes visible again for redrive
            return

        if self.options.delete_after_read:
            await asyncio.to_thread(
                self.sqs.delete_message,
                QueueUrl=self.queue_url,
                ReceiptHandle=message["ReceiptHandle"]
            )
            logger.debug(
                "Deleted message",
                extra={
                    "component": "sqs_consumer",
                    "message_id": message.get("MessageId"),
                    "queue_name": self.queue_name
                }
            )


class SqsDeadLetterSender(DeadLetterSender):
    """
    Sends failed exchange bodies to a dead letter queue, carrying the
    current trace context as a message attribute.
    """

    def __init__(self, sqs_client):
        self.sqs = sqs_client
        self._queue_urls: Dict[str, str] = {}

    async def send(self, queue_name: str, exchange: Exchange) -> Optional[str]:
        queue_url = self._queue_urls.get(queue_name)
        if queue_url is None:
            response = await asyncio.to_thread(self.sqs.get_queue_url, QueueName=queue_name)
            queue_url = response["QueueUrl"]
            self._queue_urls[queue_name] = queue_url

        request: Dict[str, Any] = {
            "QueueUrl": queue_url,
            "MessageBody": exchange.body_as_text()
        }
        span: Optional[Span] = Tracer.get_instance().get_current_span()
        if span is not None:
            with_trace_context(request, span)

        response = await asyncio.to_thread(self.sqs.send_message, **request)
        return response.get("MessageId")
