"""
Ingress from Pulse: reads an SNS event notification from a queue, fetches
the event from Pulse and decodes its data for a downstream consumer.
"""

import base64
import gzip
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..adapters.pulse_client import URL_PARAMETERS_SUFFIX, URL_SUFFIX, construct_url_parameters_suffix
from ..adapters.sqs_consumer import SqsConsumerOptions, SqsRouteConsumer
from ..domain.exchange import Exchange
from ..domain.ports import (
    DeadLetterSender,
    ExchangeHandler,
    PulseTrafficRoutingError,
    RestCall,
    Route
)
from ..domain.pulse import (
    EventContextHeaders,
    EventDataEncoding,
    EventDataHeaders,
    Pulse,
    RouteHeaders
)
from ..telemetry.logger import MetricsLogger
from .error_handling import ExceptionHandler, RedeliveryPolicy
from .headers import PulseHeadersProcessor


logger = logging.getLogger(__name__)

PULSE_GET_CALL_ROUTE_ID = "PulseGETCallRoute"
DECODING_ROUTE_ID = "DecodingRoute"
ENCODED_DATA_HANDLING_ROUTE_ID = "EncodedDataHandlingRoute"


class SnsMessageProcessor:
    """
    Reads the Pulse event id from an SNS notification body.

    The id travels in the ``id`` String message attribute. The event id,
    the message attributes and the whole notification are stored as
    properties and headers.
    """

    def process(self, exchange: Exchange) -> None:
        """
        Raises:
            PulseTrafficRoutingError: If the notification has no usable event id
            ValueError: If the body is not JSON
        """
        sns_message = json.loads(exchange.body_as_text())
        sns_message_id = self._message_id(sns_message)
        message_attributes = sns_message.get("MessageAttributes")
        event_id = self._event_id(sns_message_id, message_attributes)

        logger.info(f"Successfully read SNS message for eventId ='{event_id}' ")

        for name, value in (
            (RouteHeaders.PULSE_EVENT_ID, event_id),
            (RouteHeaders.PULSE_SNS_MESSAGE_ATTRIBUTES, message_attributes),
            (RouteHeaders.PULSE_SNS_MESSAGE, sns_message)
        ):
            exchange.set_property(name, value)
            exchange.set_header(name, value)

    @staticmethod
    def _message_id(sns_message: Dict[str, Any]) -> Optional[str]:
        message_id = sns_message.get("MessageId")
        if message_id is not None:
            return message_id
        logger.warning("No MessageId was found in incoming Camel exchange body.")
        return None

    @staticmethod
    def _event_id(sns_message_id: Optional[str], message_attributes: Optional[Dict[str, Any]]) -> str:
        if message_attributes is None:
            raise PulseTrafficRoutingError(
                "No MessageAttributes were found in Camel exchange body. "
                f"SNS MessageId: = {sns_message_id}."
            )

        id_attribute = message_attributes.get("id")
        if id_attribute is None:
            raise PulseTrafficRoutingError(
                "No event id node was found in the message attributes "
                f"in the Camel exchange body. SNS MessageId: {sns_message_id}."
            )

        if id_attribute.get("Type") != "String":
            raise PulseTrafficRoutingError(
                "No Type node of type String was found in the event "
                f"id node in the Camel exchange body. SNS MessageId: {sns_message_id}"
            )

        if "Value" not in id_attribute or id_attribute["Value"] is None:
            raise PulseTrafficRoutingError(
                f"The event id Value node was missing for snsMessageId = {sns_message_id}."
            )

        event_id = id_attribute["Value"]
        if not event_id:
            raise PulseTrafficRoutingError(
                f"The event id text value was empty for snsMessageId = {sns_message_id}."
            )
        return event_id


class PulsePayloadDataExtractionProcessor:
    """Replaces a Pulse event body with its encoded data value."""

    def process(self, exchange: Exchange) -> None:
        pulse = Pulse.from_json(exchange.body_as_text())
        context = pulse.event_context

        if pulse.data is None:
            logger.warning(
                "Pulse event message has no data section to process for "
                f"businessKeyName ='{context.business_key_name}', businessKeyValue ='{context.business_key_value}' "
            )
            return

        exchange.set_header(EventContextHeaders.BUSINESS_KEY_NAME, context.business_key_name)
        exchange.set_header(EventContextHeaders.BUSINESS_KEY_VALUE, context.business_key_value)
        logger.info(
            "Successfully extracted Pulse payload data for "
            f"businessKeyName ='{context.business_key_name}', businessKeyValue ='{context.business_key_value}' "
        )
        exchange.set_header(EventDataHeaders.ENCODING, pulse.data.encoding)
        exchange.set_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS, context.filter_map)
        exchange.body = pulse.data.value


class EncodedDataHandlingRoute(Route):
    """Stashes the encoded body in a header when the stash flag header is "true"."""

    route_id = ENCODED_DATA_HANDLING_ROUTE_ID
    description = (
        f"Stashes the encoded data in the {EventDataHeaders.ENCODED_DATA} header "
        "if ingress route's input stashEncodedData = true"
    )

    def __init__(self, trace_processor: Callable[[Exchange], None]):
        self.trace_processor = trace_processor

    async def process(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        if exchange.get_header(RouteHeaders.STASH_ENCODED_DATA_FLAG) == "true":
            exchange.set_header(EventDataHeaders.ENCODED_DATA, exchange.body)


class DecodingRoute(Route):
    """
    Decodes the body per the event data encoding header.

    GZIP_BASE64 yields the decompressed bytes; BASE64 yields UTF-8 text.
    Any other encoding leaves the body untouched.
    """

    route_id = DECODING_ROUTE_ID
    description = "Handles the decoding processing according to the EventData.ENCODING value"

    def __init__(self, trace_processor: Callable[[Exchange], None]):
        self.trace_processor = trace_processor

    async def process(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        encoding = exchange.get_header(EventDataHeaders.ENCODING)

        if encoding == EventDataEncoding.GZIP_BASE64.value:
            decoded = base64.b64decode(exchange.body_as_text())
            logger.info(f"{self.route_id} successfully decoded the payload")
            exchange.body = gzip.decompress(decoded)
            logger.info(f"{self.route_id} successfully completed unzip of the payload")
        elif encoding == EventDataEncoding.BASE64.value:
            exchange.body = base64.b64decode(exchange.body_as_text()).decode("utf-8")
            logger.info(f"{self.route_id} successfully decoded the payload:")


class IngressFromPulseRoute(Route):
    """
    Reads an event notification from ``queue_name``, GETs the event from
    Pulse, decodes its data and hands the exchange to ``consumer``.

    The encoded data can be stashed in the ``EncodedEventData`` header for
    downstream access with ``stash_encoded_data``.
    """

    description = "Reads message from queue and gets associated event from Pulse"

    def __init__(
        self,
        route_id: str,
        queue_name: str,
        consumer: ExchangeHandler,
        rest_call: RestCall,
        headers_processor: PulseHeadersProcessor,
        trace_processor: Callable[[Exchange], None],
        policy: RedeliveryPolicy,
        sqs_config,
        dlq_name: Optional[str] = None,
        dlq_sender: Optional[DeadLetterSender] = None,
        is_fifo: bool = False,
        message_group_id_strategy: Optional[str] = None,
        stash_encoded_data: bool = False,
        url_parameters_suffix: str = "",
        metrics: Optional[MetricsLogger] = None
    ):
        """
        Initialize ingress route.

        Args:
            route_id: Unique route identifier
            queue_name: Queue receiving the Pulse SNS notifications
            consumer: Receives the decoded exchange
            rest_call: GET call to the Pulse vip (PulseGETCallRoute)
            headers_processor: Signs the Pulse request headers
            trace_processor: Sets X-B3 headers
            policy: Redelivery count and backoff
            sqs_config: ``sqs`` config section for the consumer options
            dlq_name: Queue receiving messages that still fail after redelivery;
                it should not also be the redrive target of ``queue_name``
            dlq_sender: Sender for dlq_name
            is_fifo: Whether the queue is a FIFO queue
            message_group_id_strategy: FIFO message group id strategy
            stash_encoded_data: Keep the encoded data in a header
            url_parameters_suffix: Extra URL parameters for the GET
            metrics: Metrics logger
        """
        self.route_id = route_id
        self.queue_name = queue_name
        self.consumer = consumer
        self.rest_call = rest_call
        self.headers_processor = headers_processor
        self.trace_processor = trace_processor
        self.stash_encoded_data = stash_encoded_data
        self.url_parameters_suffix = construct_url_parameters_suffix(url_parameters_suffix)
        self.metrics = metrics or MetricsLogger()

        self.options = SqsConsumerOptions.from_config(sqs_config, is_fifo, message_group_id_strategy)
        self.exception_handler = ExceptionHandler(
            policy,
            trace_processor,
            dlq_sender=dlq_sender,
            dlq_name=dlq_name,
            handled=bool(dlq_name),
            metrics=self.metrics
        )

        self.sns_message_processor = SnsMessageProcessor()
        self.data_extraction_processor = PulsePayloadDataExtractionProcessor()
        self.encoded_data_handling_route = EncodedDataHandlingRoute(trace_processor)
        self.decoding_route = DecodingRoute(trace_processor)

    def create_consumer(self, sqs_client) -> SqsRouteConsumer:
        return SqsRouteConsumer(sqs_client, self.queue_name, self.options, self.process, self.route_id)

    async def process(self, exchange: Exchange) -> None:
        exchange.route_id = self.route_id
        start_time = time.perf_counter()
        try:
            await self.exception_handler.run(exchange, self._ingest)
        except Exception as e:
            self.metrics.log_route_completed(
                self.route_id, (time.perf_counter() - start_time) * 1000, False, error=str(e)
            )
            raise
        self.metrics.log_route_completed(self.route_id, (time.perf_counter() - start_time) * 1000, True)

    async def _ingest(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        self.sns_message_processor.process(exchange)

        exchange.set_header(RouteHeaders.PULSE_HTTP_REQUEST_METHOD, "GET")
        self.headers_processor.process(exchange)

        event_id = exchange.get_property(RouteHeaders.PULSE_EVENT_ID)
        exchange.set_header(URL_PARAMETERS_SUFFIX, self.url_parameters_suffix)
        exchange.set_header(URL_SUFFIX, event_id)
        logger.info(
            f"{self.route_id} executing GET call to Pulse for eventId: {event_id}",
            extra={"component": "ingress", "route_id": self.route_id}
        )
        await self.rest_call.call(exchange)
        exchange.body = exchange.body_as_text()
        exchange.remove_header(URL_PARAMETERS_SUFFIX)
        # Must not leak into later POST calls
        exchange.remove_header(URL_SUFFIX)
        logger.info(
            f"{self.route_id} retrieved payload from Pulse for eventId {event_id}",
            extra={"component": "ingress", "route_id": self.route_id}
        )

        self.data_extraction_processor.process(exchange)

        exchange.set_header(RouteHeaders.STASH_ENCODED_DATA_FLAG, str(self.stash_encoded_data).lower())
        await self.encoded_data_handling_route.process(exchange)
        await self.decoding_route.process(exchange)

        await self.consumer(exchange)
