"""
Egress to Pulse: wraps an exchange body in a Pulse event and posts it.

Pipeline: trace headers -> POST headers -> gzip -> base64 -> Pulse payload
-> JSON -> POST -> read the new event id from the response.
"""

import base64
import gzip
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..adapters.pulse_client import URL_PARAMETERS_SUFFIX, construct_url_parameters_suffix
from ..domain.exchange import Exchange
from ..domain.ports import (
    ConfigurationStateError,
    DeadLetterSender,
    PulseTrafficRoutingError,
    ResponsePathNotFoundError,
    RestCall,
    Route
)
from ..domain.pulse import (
    EventContext,
    EventContextHeaders,
    EventContextVersion,
    EventData,
    EventDataEncoding,
    EventDataHeaders,
    Pulse,
    RouteHeaders
)
from ..telemetry.logger import MetricsLogger
from ..telemetry.tracer import TraceHeaders
from .error_handling import ExceptionHandler, RedeliveryPolicy
from .headers import PulseHeadersProcessor


logger = logging.getLogger(__name__)

POST_TO_PULSE_END_ROUTE_ID = "PostToPulseEndRoute"
PULSE_POST_CALL_ROUTE_ID = "PulsePOSTCallRoute"

EVENT_CONTEXT_VERSION = EventContextVersion.V1_0.value
EVENT_CONTEXT_RETENTION_DAYS = "90"
EVENT_DATA_ENCODING = EventDataEncoding.GZIP_BASE64.value
XML_CONTENT_TYPE = "application/xml"


class XmlEventMetadataSetter:
    """
    Sets the Pulse event context metadata headers for an XML payload.

    The business key name header must already be set, normally by the
    ingress route that read the message from Pulse.
    """

    def set_metadata(self, exchange: Exchange, event_context_name: str, event_context_type: str) -> None:
        """
        Args:
            exchange: Exchange to decorate
            event_context_name: Event context name, e.g. ce_adapter_ship_cancel (the topic)
            event_context_type: Event context type, e.g. EP_SHIP_CANCEL

        Raises:
            ConfigurationStateError: If the business key name header is not set
        """
        if not exchange.get_header(EventContextHeaders.BUSINESS_KEY_NAME):
            raise ConfigurationStateError(
                f"The Camel exchange message header {EventContextHeaders.BUSINESS_KEY_NAME}"
                " must be set before using this method."
            )

        exchange.set_header(EventContextHeaders.NAME, event_context_name)
        exchange.set_header(EventContextHeaders.RETENTION_DAYS, EVENT_CONTEXT_RETENTION_DAYS)
        exchange.set_header(EventContextHeaders.TYPE, event_context_type)
        exchange.set_header(EventContextHeaders.VERSION, EVENT_CONTEXT_VERSION)
        exchange.set_header(EventDataHeaders.CONTENT_TYPE, XML_CONTENT_TYPE)
        exchange.set_header(EventDataHeaders.ENCODING, EVENT_DATA_ENCODING)


class FilterMapSetter:
    """
    Adds a key/value filter to the Pulse event context filter map carried in
    the filter map header, creating the map on first use.
    """

    def set_filter(self, exchange: Exchange, key: str, value: str) -> None:
        """
        Raises:
            ValueError: If the key or value is empty
        """
        if not key:
            raise ValueError("A non-empty filter map key must be provided.")
        if not value:
            raise ValueError("A non-empty filter map value must be provided.")

        filter_map = exchange.get_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS)
        if filter_map is None:
            filter_map = {}
        filter_map[key] = value
        exchange.set_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS, filter_map)

        logger.info(
            f'Successfully set ["{key}": "{value}"] on filter map for '
            f"{exchange.get_header(EventContextHeaders.BUSINESS_KEY_NAME)} = "
            f"{exchange.get_header(EventContextHeaders.BUSINESS_KEY_VALUE)}"
        )


def pulse_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp in the Pulse format yyyy-MM-ddTHH:mm:ss.SSSZ."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class PulsePostPayloadProcessor:
    """
    Builds the Pulse event posted to the bus from exchange headers and the
    encoded body.

    Required headers: business key name and value, event context name, event
    data content type and encoding. Optional: retention days, type, version
    and the filter map.
    """

    def process(self, exchange: Exchange) -> None:
        """
        Raises:
            PulseTrafficRoutingError: If a required field is missing
        """
        business_key = exchange.get_header(EventContextHeaders.BUSINESS_KEY_VALUE)
        request = self.build_pulse_request(exchange)
        self.validate(request, business_key)
        exchange.body = request

    def build_pulse_request(self, exchange: Exchange) -> Pulse:
        trace_id = exchange.get_header(TraceHeaders.TRACE_ID)
        business_key = exchange.get_header(EventContextHeaders.BUSINESS_KEY_VALUE)
        filter_map: Optional[Dict[str, Any]] = exchange.get_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS)
        event_context_type = exchange.get_header(EventContextHeaders.TYPE)
        date = pulse_timestamp()

        event_context = EventContext(
            business_key_value=business_key,
            business_key_name=exchange.get_header(EventContextHeaders.BUSINESS_KEY_NAME),
            date=date,
            name=exchange.get_header(EventContextHeaders.NAME),
            retention_days=exchange.get_header(EventContextHeaders.RETENTION_DAYS),
            version=exchange.get_header(EventContextHeaders.VERSION)
        )
        if event_context_type:
            event_context.type = event_context_type
        if filter_map:
            event_context.filter_map.update(filter_map)
        event_context.meta_data[TraceHeaders.TRACE_ID] = trace_id

        body = exchange.body
        if isinstance(body, (bytes, bytearray)):
            body = bytes(body).decode("utf-8")

        request = Pulse(
            event_context=event_context,
            data=EventData(
                content_type=exchange.get_header(EventDataHeaders.CONTENT_TYPE),
                encoding=exchange.get_header(EventDataHeaders.ENCODING),
                value=body
            )
        )
        logger.info(
            f"Built Event Management request payload for traceId = {trace_id}, "
            f"businessKey = {business_key} with date = {date}"
        )
        return request

    def validate(self, request: Pulse, business_key: Optional[str]) -> None:
        context = request.event_context
        data = request.data or EventData()
        if not context.business_key_name:
            raise PulseTrafficRoutingError(
                "The business key name was not properly set on the Pulse "
                f"event context for businessKey = {business_key}."
            )
        if not context.business_key_value:
            raise PulseTrafficRoutingError(
                "The business key value was not properly set on the Pulse "
                f"event context for businessKey = {business_key}."
            )
        if not context.name:
            raise PulseTrafficRoutingError(
                "The event context name was not properly set on the Pulse "
                f"event context for businessKey = {business_key}."
            )
        if not data.content_type:
            raise PulseTrafficRoutingError(
                "The event data content type was not properly set on the Pulse "
                f"eventdata  payload for businessKey = {business_key}."
            )
        if not data.encoding:
            raise PulseTrafficRoutingError(
                "The event data encoding was not properly set on the Pulse "
                f"event data payload for businessKey = {business_key}."
            )
        if not data.value:
            raise PulseTrafficRoutingError(
                "The data value was not properly set on the Pulse payload "
                f" for businessKey = {business_key}."
            )


def gzip_base64(body: Any) -> str:
    """Gzip then base64-encode a body, returning UTF-8 text."""
    if body is None:
        data = b""
    elif isinstance(body, (bytes, bytearray)):
        data = bytes(body)
    else:
        data = str(body).encode("utf-8")
    return base64.b64encode(gzip.compress(data)).decode("utf-8")


def read_response_event_id(response_body: Any) -> str:
    """
    Read ``$.links.self.ref`` from a Pulse POST response.

    Raises:
        ResponsePathNotFoundError: If the path is missing
        ValueError: If the body is not JSON
    """
    document = json.loads(response_body) if isinstance(response_body, (str, bytes, bytearray)) else response_body
    try:
        return document["links"]["self"]["ref"]
    except (KeyError, TypeError) as e:
        raise ResponsePathNotFoundError(f"Missing property in path $['links']['self']['ref']: {e}") from e


class EgressToPulseRoute(Route):
    """
    Posts the exchange body to Pulse as gzipped, base64 encoded event data.

    Required incoming headers: business key value and name, event context
    name, event data content type and encoding. Use XmlEventMetadataSetter
    to set them for XML payloads.
    """

    description = "Base64 encodes and gzips body and posts to Pulse"

    def __init__(
        self,
        rest_call: RestCall,
        headers_processor: PulseHeadersProcessor,
        trace_processor: Callable[[Exchange], None],
        policy: RedeliveryPolicy,
        route_id: str = POST_TO_PULSE_END_ROUTE_ID,
        url_parameters_suffix: Optional[str] = None,
        dlq_name: Optional[str] = None,
        dlq_sender: Optional[DeadLetterSender] = None,
        payload_processor: Optional[PulsePostPayloadProcessor] = None,
        metrics: Optional[MetricsLogger] = None
    ):
        """
        Initialize egress route.

        Args:
            rest_call: POST call to the Pulse vip (PulsePOSTCallRoute)
            headers_processor: Signs the Pulse request headers
            trace_processor: Sets X-B3 headers
            policy: Redelivery count and backoff
            route_id: Route identifier
            url_parameters_suffix: Extra URL parameters for the POST
            dlq_name: Queue receiving messages that still fail after redelivery
            dlq_sender: Sender for dlq_name
            payload_processor: Builds the Pulse event
            metrics: Metrics logger
        """
        self.route_id = route_id
        self.rest_call = rest_call
        self.headers_processor = headers_processor
        self.trace_processor = trace_processor
        self.metrics = metrics or MetricsLogger()
        self.exception_handler = ExceptionHandler(
            policy,
            trace_processor,
            dlq_sender=dlq_sender,
            dlq_name=dlq_name,
            handled=bool(dlq_name),
            metrics=self.metrics
        )
        self.url_parameters_suffix = construct_url_parameters_suffix(url_parameters_suffix)
        self.payload_processor = payload_processor or PulsePostPayloadProcessor()

    async def process(self, exchange: Exchange) -> None:
        exchange.route_id = self.route_id
        start_time = time.perf_counter()
        try:
            await self.exception_handler.run(exchange, self._post_to_pulse)
        except Exception as e:
            self.metrics.log_route_completed(
                self.route_id, (time.perf_counter() - start_time) * 1000, False, error=str(e)
            )
            raise
        self.metrics.log_route_completed(self.route_id, (time.perf_counter() - start_time) * 1000, True)

    async def _post_to_pulse(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)

        exchange.set_header(RouteHeaders.PULSE_HTTP_REQUEST_METHOD, "POST")
        self.headers_processor.process(exchange)

        exchange.body = gzip_base64(exchange.body)
        self.payload_processor.process(exchange)
        exchange.body = exchange.body.to_json()

        exchange.set_header(URL_PARAMETERS_SUFFIX, self.url_parameters_suffix)

        business_key = exchange.get_header(EventContextHeaders.BUSINESS_KEY_VALUE)
        logger.info(
            f"Posting event data to Pulse for business key={business_key}",
            extra={"component": "egress", "route_id": self.route_id}
        )
        await self.rest_call.call(exchange)

        try:
            event_id = read_response_event_id(exchange.body)
        except ResponsePathNotFoundError:
            self.trace_processor(exchange)
            logger.warning("Failed to retrieve eventId from pulse response")
            return

        exchange.set_header(RouteHeaders.PULSE_RESPONSE_EVENTID, event_id)
        logger.info(
            f"Successfully posted event data to Pulse for business key ={business_key} with eventId: {event_id}",
            extra={"component": "egress", "route_id": self.route_id}
        )
