from __future__ import annotations

from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from redis.exceptions import RedisError

from pulse_bridge.domain.exchange import Exchange
from pulse_bridge.domain.ports import DeadLetterSender, RequestSigner, RestCall


class RestCallStub(RestCall):
    """Records each call and answers with queued bodies or exceptions."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def call(self, exchange: Exchange) -> None:
        self.calls.append({"headers": dict(exchange.headers), "body": exchange.body})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(exchange)
        exchange.body = response


class DeadLetterSenderStub(DeadLetterSender):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, Any]] = []

    async def send(self, queue_name: str, exchange: Exchange) -> Optional[str]:
        self.sent.append((queue_name, exchange.body))
        return f"dlq-{len(self.sent)}"


class SignerStub(RequestSigner):
    def __init__(self, enabled: bool = True, token: str = "signed-token") -> None:
        self._enabled = enabled
        self.token = token

    @property
    def enabled(self) -> bool:
        return self._enabled

    def sign(self, headers: MutableMapping[str, Any]) -> None:
        if self._enabled:
            headers["Authorization"] = f"Bearer {self.token}"
            headers["X-sample-AppId"] = "springbootsampleapp"
            headers["X-sample-InstanceId"] = "springbootsampleapp-0"


class RedisClientStub:
    """Stands in for RedisClient with an in-memory hash store."""

    def __init__(self, fail: bool = False) -> None:
        self.store: Dict[str, Dict[str, Any]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise RedisError("connection refused")

    async def get_field(self, name: str, field: str, ttl_seconds: int) -> Optional[Any]:
        self._check()
        self.ttls[name] = ttl_seconds
        return self.store.get(name, {}).get(field)

    async def set_field(self, name: str, field: str, value: str, ttl_seconds: int) -> None:
        self._check()
        self.store.setdefault(name, {})[field] = value
        self.ttls[name] = ttl_seconds

    async def delete_field(self, name: str, field: str) -> bool:
        self._check()
        return self.store.get(name, {}).pop(field, None) is not None
