"""
Exchange: the per-message carrier passed between route steps.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


HTTP_METHOD = "CamelHttpMethod"
SERVICE_NAME = "CamelServiceCallServiceName"
MESSAGE_ID = "MessageId"
RECEIPT_HANDLE = "ReceiptHandle"


@dataclass
class Exchange:
    """
    A message in flight through a route.

    ``headers`` travel with the message to the next endpoint (and become HTTP
    headers on REST calls); ``properties`` live only for this exchange.
    """

    body: Any = None
    headers: Dict[str, Any] = field(default_factory=dict)
    properties: Dict[str, Any] = field(default_factory=dict)
    route_id: Optional[str] = None
    exception: Optional[BaseException] = None
    _original: Optional["Exchange"] = field(default=None, repr=False)

    @classmethod
    def from_message(cls, body: Any, headers: Optional[Dict[str, Any]] = None) -> "Exchange":
        exchange = cls(body=body, headers=dict(headers or {}))
        exchange.snapshot_original()
        return exchange

    def snapshot_original(self) -> None:
        """Remember the current message so a failed route can fall back to it."""
        self._original = Exchange(
            body=self.body,
            headers=copy.deepcopy(self.headers),
            properties={}
        )

    def use_original_message(self) -> None:
        """Restore the body and headers the exchange had when it was received."""
        if self._original is None:
            return
        self.body = self._original.body
        self.headers = copy.deepcopy(self._original.headers)

    def body_as_text(self, encoding: str = "utf-8") -> str:
        if self.body is None:
            return ""
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body).decode(encoding)
        return str(self.body)

    def get_header(self, name: str, default: Any = None) -> Any:
        return self.headers.get(name, default)

    def set_header(self, name: str, value: Any) -> None:
        self.headers[name] = value

    def remove_header(self, name: str) -> None:
        self.headers.pop(name, None)

    def get_property(self, name: str, default: Any = None) -> Any:
        return self.properties.get(name, default)

    def set_property(self, name: str, value: Any) -> None:
        self.properties[name] = value

    def remove_property(self, name: str) -> None:
        self.properties.pop(name, None)
