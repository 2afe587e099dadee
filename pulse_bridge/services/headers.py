"""
REST headers for Pulse calls: JWT authorization plus the fixed content
negotiation and routing headers.
"""

import logging
from typing import Any, Dict

from ..adapters.jwt_signer import AUTHORIZATION, ALT_AUTHORIZATION, ALT_APP_ID, INSTANCE_ID
from ..domain.exchange import Exchange, HTTP_METHOD, SERVICE_NAME
from ..domain.ports import RequestSigner
from ..domain.pulse import RouteHeaders


logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
ACCEPT_VALUE = "*/*"


class RestHeadersSetter:
    """
    Places security and request headers on an exchange before an HTTP call.

    Headers set:

    - ``Authorization`` (or ``X-sample-Authorization`` with ``use_alternate_header``)
    - ``X-sample-AppId`` and ``X-sample-InstanceId``
    - ``CamelHttpMethod``
    - ``Content-Type: application/json; charset=utf-8`` and ``Accept: */*``
    - ``CamelServiceCallServiceName`` (the vip name)
    """

    def __init__(self, signer: RequestSigner, use_alternate_header: bool = False):
        self.signer = signer
        self.use_alternate_header = use_alternate_header

    def set_headers(self, exchange: Exchange, method: str, vip_name: str) -> None:
        """
        Raises:
            SigningError: If the JWT headers cannot be produced
        """
        signed: Dict[str, Any] = {}
        self.signer.sign(signed)

        exchange.set_header(
            ALT_AUTHORIZATION if self.use_alternate_header else AUTHORIZATION,
            signed.get(AUTHORIZATION)
        )
        exchange.set_header(ALT_APP_ID, signed.get(ALT_APP_ID))
        exchange.set_header(INSTANCE_ID, signed.get(INSTANCE_ID))
        exchange.set_header(HTTP_METHOD, str(method).upper())
        exchange.set_header("Content-Type", JSON_CONTENT_TYPE)
        exchange.set_header("Accept", ACCEPT_VALUE)
        exchange.set_header(SERVICE_NAME, vip_name)


class PulseHeadersProcessor:
    """Signs exchange headers for a call to the Pulse vip."""

    def __init__(self, headers_setter: RestHeadersSetter, pulse_vip_name: str):
        self.headers_setter = headers_setter
        self.pulse_vip_name = pulse_vip_name

    def process(self, exchange: Exchange) -> None:
        self.headers_setter.set_headers(
            exchange,
            exchange.get_header(RouteHeaders.PULSE_HTTP_REQUEST_METHOD),
            self.pulse_vip_name
        )
