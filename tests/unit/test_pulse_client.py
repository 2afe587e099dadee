from typing import List

import httpx
import pytest

from pulse_bridge.adapters.pulse_client import (
    OutgoingRestCall,
    StaticServiceDiscovery,
    URL_PARAMETERS_SUFFIX,
    URL_SUFFIX,
    construct_url,
    construct_url_parameters_suffix,
    format_parameters_suffix,
    handle_connection_close
)
from pulse_bridge.adapters.resilience import CommandGuard
from pulse_bridge.domain.exchange import Exchange, HTTP_METHOD
from pulse_bridge.domain.ports import CommandRuntimeError, HttpOperationFailedError, PulseTrafficRoutingError
from pulse_bridge.services.trace_processor import DistributedTraceProcessor
from pulse_bridge.telemetry.tracer import TraceHeaders


VIP = "ship-internal_events-v1"


def _rest_call(handler, route_id: str = "PulseGETCallRoute", **kwargs) -> OutgoingRestCall:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OutgoingRestCall(
        vip_name=VIP,
        base_url="/ship/internal_events/v1/",
        route_id=route_id,
        discovery=StaticServiceDiscovery({VIP: "http://pulse.local:8080/"}),
        guard=CommandGuard(route_id),
        app_name="springbootsampleapp",
        client=client,
        **kwargs
    )


def test_url_helpers() -> None:
    assert format_parameters_suffix("a=b") == "&a=b"
    assert format_parameters_suffix("&a=b") == "&a=b"
    assert format_parameters_suffix(None) == ""

    assert handle_connection_close(None) == "&connectionClose=true"
    assert handle_connection_close("connectionClose=false") == ""

    assert construct_url_parameters_suffix(None) == "connectionClose=true"
    assert construct_url_parameters_suffix("&a=b") == "a=b&connectionClose=true"

    assert construct_url("http://h/p", None) == (
        "http://h/p?httpClient.SocketTimeout=10000&httpClient.ConnectTimeout=2000&connectionClose=true"
    )


def test_discovery_resolves_known_vip_only() -> None:
    discovery = StaticServiceDiscovery({VIP: "http://pulse.local/"})

    assert discovery.resolve(VIP) == "http://pulse.local"
    with pytest.raises(PulseTrafficRoutingError, match="No active services with name unknown"):
        discovery.resolve("unknown")


@pytest.mark.asyncio
async def test_get_call_builds_url_and_headers_and_stores_response() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text='{"eventContext": {}}')

    rest_call = _rest_call(handler)
    exchange = Exchange.from_message("ignored", {
        HTTP_METHOD: "GET",
        URL_SUFFIX: "event-1",
        URL_PARAMETERS_SUFFIX: "filter=na",
        "Accept": "application/json",
        "CamelSqsMessageId": "internal"
    })

    await rest_call.call(exchange)

    request = requests[0]
    assert request.method == "GET"
    assert request.url.path == "/ship/internal_events/v1/event-1"
    assert dict(request.url.params) == {"filter": "na"}
    assert request.headers["Connection"] == "close"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["X-sample-AppName"] == "springbootsampleapp"
    assert URL_SUFFIX not in request.headers
    assert "CamelSqsMessageId" not in request.headers
    assert request.content == b""

    assert exchange.body == '{"eventContext": {}}'
    assert exchange.get_header("CamelHttpResponseCode") == 200


@pytest.mark.asyncio
async def test_post_call_sends_body_and_trace_headers() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, text="created")

    rest_call = _rest_call(handler, route_id="PulsePOSTCallRoute", trace_processor=DistributedTraceProcessor())
    exchange = Exchange.from_message('{"eventContext": {"name": "x"}}', {HTTP_METHOD: "POST"})

    await rest_call.call(exchange)

    request = requests[0]
    assert request.method == "POST"
    assert request.content == b'{"eventContext": {"name": "x"}}'
    assert request.headers[TraceHeaders.TRACE_ID] == exchange.get_header(TraceHeaders.TRACE_ID)
    assert exchange.body == "created"


@pytest.mark.asyncio
async def test_non_2xx_raises_http_operation_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="no such event")

    rest_call = _rest_call(handler)
    exchange = Exchange.from_message(None, {HTTP_METHOD: "GET", URL_SUFFIX: "missing"})

    with pytest.raises(HttpOperationFailedError) as exc_info:
        await rest_call.call(exchange)

    assert exc_info.value.status_code == 404
    assert exc_info.value.response_body == "no such event"
    assert "with statusCode: 404" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_error_is_wrapped_by_guard() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    rest_call = _rest_call(handler)

    with pytest.raises(CommandRuntimeError) as exc_info:
        await rest_call.call(Exchange.from_message(None, {HTTP_METHOD: "GET"}))

    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_unknown_vip_fails_the_command() -> None:
    rest_call = _rest_call(lambda request: httpx.Response(200))
    rest_call.vip_name = "unknown"

    with pytest.raises(CommandRuntimeError) as exc_info:
        await rest_call.call(Exchange.from_message(None, {HTTP_METHOD: "GET"}))

    assert isinstance(exc_info.value.cause, PulseTrafficRoutingError)
