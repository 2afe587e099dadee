import base64
import gzip
import json
from datetime import datetime, timezone

import pytest

from pulse_bridge.adapters.pulse_client import URL_PARAMETERS_SUFFIX
from pulse_bridge.domain.exchange import Exchange, HTTP_METHOD
from pulse_bridge.domain.ports import (
    ConfigurationStateError,
    HttpOperationFailedError,
    PulseTrafficRoutingError,
    ResponsePathNotFoundError
)
from pulse_bridge.domain.pulse import EventContextHeaders, EventDataHeaders, RouteHeaders
from pulse_bridge.services.egress import (
    EgressToPulseRoute,
    FilterMapSetter,
    PulsePostPayloadProcessor,
    XmlEventMetadataSetter,
    gzip_base64,
    pulse_timestamp,
    read_response_event_id
)
from pulse_bridge.services.error_handling import RedeliveryPolicy
from pulse_bridge.services.headers import PulseHeadersProcessor, RestHeadersSetter
from pulse_bridge.services.trace_processor import DistributedTraceProcessor
from pulse_bridge.telemetry.tracer import TraceHeaders

from tests.fixtures.clients import DeadLetterSenderStub, RestCallStub, SignerStub


PULSE_RESPONSE = '{"links": {"self": {"ref": "evt-9"}}}'


def _xml_exchange(body: str = "<shipment><messageID>MSG-1</messageID></shipment>") -> Exchange:
    exchange = Exchange.from_message(body, {
        EventContextHeaders.BUSINESS_KEY_NAME: "messageID",
        EventContextHeaders.BUSINESS_KEY_VALUE: "MSG-1"
    })
    XmlEventMetadataSetter().set_metadata(exchange, "ce_fmg_sc_canonical", "EP_SHIP_CONFIRM")
    return exchange


def _egress(rest_call, **kwargs) -> EgressToPulseRoute:
    return EgressToPulseRoute(
        rest_call,
        PulseHeadersProcessor(RestHeadersSetter(SignerStub()), "ship-internal_events-v1"),
        DistributedTraceProcessor(),
        RedeliveryPolicy(max_redeliveries=2, redelivery_delay_ms=0),
        **kwargs
    )


def test_metadata_setter_requires_business_key_name() -> None:
    with pytest.raises(ConfigurationStateError, match="EventContextBusinessKeyName"):
        XmlEventMetadataSetter().set_metadata(Exchange.from_message("x"), "name", "type")


def test_metadata_setter_sets_event_headers() -> None:
    exchange = _xml_exchange()

    assert exchange.get_header(EventContextHeaders.NAME) == "ce_fmg_sc_canonical"
    assert exchange.get_header(EventContextHeaders.TYPE) == "EP_SHIP_CONFIRM"
    assert exchange.get_header(EventContextHeaders.RETENTION_DAYS) == "90"
    assert exchange.get_header(EventContextHeaders.VERSION) == "1.0"
    assert exchange.get_header(EventDataHeaders.CONTENT_TYPE) == "application/xml"
    assert exchange.get_header(EventDataHeaders.ENCODING) == "GZIP_BASE64"


def test_filter_map_setter_accumulates_entries() -> None:
    exchange = Exchange.from_message("x")
    setter = FilterMapSetter()

    setter.set_filter(exchange, "region", "na")
    setter.set_filter(exchange, "channel", "web")

    assert exchange.get_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS) == {
        "region": "na", "channel": "web"
    }
    with pytest.raises(ValueError, match="non-empty filter map key"):
        setter.set_filter(exchange, "", "x")
    with pytest.raises(ValueError, match="non-empty filter map value"):
        setter.set_filter(exchange, "k", "")


def test_pulse_timestamp_format() -> None:
    moment = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=timezone.utc)

    assert pulse_timestamp(moment) == "2024-03-05T07:08:09.123Z"


def test_payload_processor_builds_event() -> None:
    exchange = _xml_exchange()
    exchange.set_header(TraceHeaders.TRACE_ID, "trace-1")
    exchange.set_header(EventContextHeaders.EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS, {"region": "na"})

    PulsePostPayloadProcessor().process(exchange)

    event = json.loads(exchange.body.to_json())
    context = event["eventContext"]
    assert context["businessKeyName"] == "messageID"
    assert context["businessKeyValue"] == "MSG-1"
    assert context["type"] == "EP_SHIP_CONFIRM"
    assert context["filterMap"] == {"region": "na"}
    assert context["metaData"] == {"X-B3-TraceId": "trace-1"}
    assert event["data"]["contentType"] == "application/xml"
    assert event["data"]["value"] == "<shipment><messageID>MSG-1</messageID></shipment>"


@pytest.mark.parametrize("missing, message", [
    (EventContextHeaders.BUSINESS_KEY_NAME, "business key name"),
    (EventContextHeaders.BUSINESS_KEY_VALUE, "business key value"),
    (EventContextHeaders.NAME, "event context name"),
    (EventDataHeaders.CONTENT_TYPE, "content type"),
    (EventDataHeaders.ENCODING, "encoding"),
])
def test_payload_processor_rejects_missing_fields(missing, message) -> None:
    exchange = _xml_exchange()
    exchange.remove_header(missing)

    with pytest.raises(PulseTrafficRoutingError, match=message):
        PulsePostPayloadProcessor().process(exchange)


def test_payload_processor_rejects_empty_body() -> None:
    with pytest.raises(PulseTrafficRoutingError, match="data value"):
        PulsePostPayloadProcessor().process(_xml_exchange(body=""))


def test_read_response_event_id() -> None:
    assert read_response_event_id(PULSE_RESPONSE) == "evt-9"
    with pytest.raises(ResponsePathNotFoundError):
        read_response_event_id('{"links": {}}')


@pytest.mark.asyncio
async def test_egress_posts_gzipped_event() -> None:
    rest_call = RestCallStub(PULSE_RESPONSE)
    exchange = _xml_exchange()

    await _egress(rest_call, url_parameters_suffix="debug=true").process(exchange)

    sent = rest_call.calls[0]
    assert sent["headers"][HTTP_METHOD] == "POST"
    assert sent["headers"]["Authorization"] == "Bearer signed-token"
    assert sent["headers"][URL_PARAMETERS_SUFFIX] == "debug=true&connectionClose=true"

    event = json.loads(sent["body"])
    decoded = gzip.decompress(base64.b64decode(event["data"]["value"])).decode("utf-8")
    assert decoded == "<shipment><messageID>MSG-1</messageID></shipment>"
    assert event["eventContext"]["name"] == "ce_fmg_sc_canonical"

    assert exchange.get_header(RouteHeaders.PULSE_RESPONSE_EVENTID) == "evt-9"


@pytest.mark.asyncio
async def test_egress_tolerates_response_without_event_id() -> None:
    exchange = _xml_exchange()

    await _egress(RestCallStub('{"status": "accepted"}')).process(exchange)

    assert RouteHeaders.PULSE_RESPONSE_EVENTID not in exchange.headers


@pytest.mark.asyncio
async def test_egress_redelivers_and_encodes_original_body_each_time() -> None:
    rest_call = RestCallStub(
        HttpOperationFailedError("http://pulse", 503),
        PULSE_RESPONSE
    )

    await _egress(rest_call).process(_xml_exchange())

    assert len(rest_call.calls) == 2
    payloads = [
        gzip.decompress(base64.b64decode(json.loads(call["body"])["data"]["value"]))
        for call in rest_call.calls
    ]
    assert payloads[0] == payloads[1] == b"<shipment><messageID>MSG-1</messageID></shipment>"


@pytest.mark.asyncio
async def test_egress_failure_goes_to_dlq_when_configured() -> None:
    dlq = DeadLetterSenderStub()
    rest_call = RestCallStub(HttpOperationFailedError("http://pulse", 400))
    exchange = _xml_exchange()

    await _egress(rest_call, dlq_name="ship-afssap_nsp-dlq", dlq_sender=dlq).process(exchange)

    assert len(rest_call.calls) == 1
    assert dlq.sent == [("ship-afssap_nsp-dlq", "<shipment><messageID>MSG-1</messageID></shipment>")]


@pytest.mark.asyncio
async def test_egress_failure_raised_without_dlq() -> None:
    rest_call = RestCallStub(HttpOperationFailedError("http://pulse", 409))

    with pytest.raises(HttpOperationFailedError):
        await _egress(rest_call).process(_xml_exchange())


def test_gzip_base64_accepts_bytes_and_none() -> None:
    assert gzip.decompress(base64.b64decode(gzip_base64(b"abc"))) == b"abc"
    assert gzip.decompress(base64.b64decode(gzip_base64(None))) == b""
