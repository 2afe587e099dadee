"""
Outgoing REST call to Pulse (and any other vip) driven by exchange headers.
Handles service discovery, URL options, the command guard and error mapping.
"""

import logging
import time
from typing import Callable, Dict, Optional

import httpx

from ..domain.exchange import Exchange, HTTP_METHOD
from ..domain.ports import RestCall, HttpOperationFailedError, PulseTrafficRoutingError
from ..telemetry.logger import MetricsLogger
from .resilience import CommandGuard


logger = logging.getLogger(__name__)

# Header holding a dynamic path suffix, e.g. an event id for a GET call
URL_SUFFIX = "outgoingRestURLSuffix"

# Header holding extra URL parameters
URL_PARAMETERS_SUFFIX = "outgoingRestURLParametersSuffix"

EVENT_MANAGER_HEADER = "X-sample-AppName"

SOCKET_TIMEOUT_PARAM = "httpClient.SocketTimeout"
CONNECT_TIMEOUT_PARAM = "httpClient.ConnectTimeout"
CONNECTION_CLOSE_PARAM = "connectionClose"
HTTP_CLIENT_CONFIGURER_PARAM = "httpClientConfigurer"

# Exchange headers never sent over the wire
_INTERNAL_HEADERS = {URL_SUFFIX.lower(), URL_PARAMETERS_SUFFIX.lower(), "host", "content-length"}


def format_parameters_suffix(parameters_suffix: Optional[str]) -> str:
    """Add a leading ampersand to a non-empty parameters suffix."""
    parameters_suffix = parameters_suffix or ""
    if parameters_suffix and not parameters_suffix.startswith("&"):
        parameters_suffix = "&" + parameters_suffix
    return parameters_suffix


def handle_connection_close(parameters_suffix: Optional[str]) -> str:
    """Return ``&connectionClose=true`` unless the suffix already sets it."""
    if CONNECTION_CLOSE_PARAM not in (parameters_suffix or ""):
        return "&connectionClose=true"
    return ""


def construct_url_parameters_suffix(url_parameters_suffix: Optional[str]) -> str:
    """
    Normalize route-supplied URL parameters.

    Appends ``connectionClose=true`` when absent so retries do not exhaust
    sockets, and drops a leading ampersand since construct_url adds one.
    """
    suffix = url_parameters_suffix or ""
    if CONNECTION_CLOSE_PARAM not in suffix:
        suffix += "&connectionClose=true"
    if suffix.startswith("&"):
        suffix = suffix[1:]
    return suffix


def construct_url(path: str, parameters_suffix: Optional[str]) -> str:
    return (
        path
        + "?httpClient.SocketTimeout=10000"
        + "&httpClient.ConnectTimeout=2000"
        + handle_connection_close(parameters_suffix)
        + format_parameters_suffix(parameters_suffix)
    )


class StaticServiceDiscovery:
    """
    Resolves vip names to base URLs from a fixed table.
    """

    def __init__(self, services: Dict[str, str]):
        self.services = dict(services)

    def resolve(self, vip_name: str) -> str:
        base = self.services.get(vip_name)
        if not base:
            raise PulseTrafficRoutingError(f"No active services with name {vip_name}")
        return base.rstrip("/")


class OutgoingRestCall(RestCall):
    """
    Makes an outgoing REST call to ``vip_name`` + ``base_url``.

    The request is described by exchange headers: ``CamelHttpMethod``, the
    URL suffix and URL parameters suffix, and every other scalar header,
    which is sent as an HTTP header. The response body replaces the
    exchange body.
    """

    def __init__(
        self,
        vip_name: str,
        base_url: str,
        route_id: str,
        discovery: StaticServiceDiscovery,
        guard: CommandGuard,
        app_name: str = "",
        client: Optional[httpx.AsyncClient] = None,
        trace_processor: Optional[Callable[[Exchange], None]] = None,
        metrics: Optional[MetricsLogger] = None
    ):
        """
        Initialize REST call.

        Args:
            vip_name: Service vip resolved through discovery
            base_url: Path appended to the resolved service URL
            route_id: Identifier used in logs and error messages
            discovery: Vip name resolver
            guard: Timeout, bulkhead and circuit breaker for the call
            app_name: Sent as X-sample-AppName
            client: Shared HTTP client
            trace_processor: Refreshes X-B3 headers before the call
            metrics: Call timing logger
        """
        self.vip_name = vip_name
        self.base_url = base_url
        self.route_id = route_id
        self.description = f"Makes an outgoing REST call to {vip_name}{base_url}"
        self.discovery = discovery
        self.guard = guard
        self.app_name = app_name
        self.trace_processor = trace_processor
        self.metrics = metrics or MetricsLogger()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            limits=httpx.Limits(
                max_keepalive_connections=guard.maximum_size,
                max_connections=guard.maximum_size
            )
        )

    async def call(self, exchange: Exchange) -> None:
        """
        Send the exchange and store the response body.

        Raises:
            HttpOperationFailedError: For responses with status >= 300
            CommandRuntimeError: On timeout, rejection, open circuit or transport errors
        """
        if self.trace_processor is not None:
            self.trace_processor(exchange)

        exchange.set_header(EVENT_MANAGER_HEADER, self.app_name)

        response = await self.guard.execute(lambda: self._send(exchange))

        exchange.body = response.text
        exchange.set_header("CamelHttpResponseCode", response.status_code)

    def build_request(self, exchange: Exchange) -> httpx.Request:
        """Translate exchange headers into an HTTP request."""
        path = (
            self.discovery.resolve(self.vip_name)
            + self.base_url
            + str(exchange.get_header(URL_SUFFIX) or "")
        )
        url = httpx.URL(construct_url(path, exchange.get_header(URL_PARAMETERS_SUFFIX)))

        headers: Dict[str, str] = {}
        socket_timeout_ms = 10000
        connect_timeout_ms = 2000
        params = []
        for name, value in url.params.multi_items():
            if name == SOCKET_TIMEOUT_PARAM:
                socket_timeout_ms = int(value)
            elif name == CONNECT_TIMEOUT_PARAM:
                connect_timeout_ms = int(value)
            elif name == CONNECTION_CLOSE_PARAM:
                if value.lower() == "true":
                    headers["Connection"] = "close"
            elif name == HTTP_CLIENT_CONFIGURER_PARAM:
                continue
            else:
                params.append((name, value))

        for name, value in exchange.headers.items():
            if name.lower() in _INTERNAL_HEADERS or name.lower().startswith("camel"):
                continue
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                continue
            headers[name] = str(value)

        method = exchange.get_header(HTTP_METHOD) or ("POST" if exchange.body is not None else "GET")
        content = None
        if method.upper() not in ("GET", "DELETE", "HEAD") and exchange.body is not None:
            content = exchange.body if isinstance(exchange.body, (bytes, bytearray)) else str(exchange.body).encode("utf-8")

        timeout = httpx.Timeout(socket_timeout_ms / 1000.0, connect=connect_timeout_ms / 1000.0)
        return self.client.build_request(
            method.upper(),
            url.copy_with(params=params),
            headers=headers,
            content=content,
            timeout=timeout
        )

    async def _send(self, exchange: Exchange) -> httpx.Response:
        request = self.build_request(exchange)
        start_time = time.perf_counter()
        status_code: Optional[int] = None
        try:
            response = await self.client.send(request)
            status_code = response.status_code
        finally:
            self.metrics.log_pulse_call(
                request.method,
                str(request.url),
                status_code,
                (time.perf_counter() - start_time) * 1000
            )

        if response.status_code >= 300:
            logger.debug(
                f"{self.route_id} received statusCode {response.status_code}",
                extra={"component": "pulse_client", "route_id": self.route_id}
            )
            raise HttpOperationFailedError(
                str(request.url),
                response.status_code,
                response.reason_phrase,
                response.text,
                dict(response.headers)
            )
        return response

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
        logger.debug(f"{self.route_id} HTTP client closed")
