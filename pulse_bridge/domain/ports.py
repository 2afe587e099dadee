"""
Ports (interfaces) for pulse-bridge service.
Following Dependency Inversion Principle - routes depend on abstractions.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, MutableMapping, Optional

from .exchange import Exchange


ExchangeHandler = Callable[[Exchange], Awaitable[None]]


class Route(ABC):
    """
    A message-processing pipeline from an endpoint to its destination.
    """

    route_id: str = ""
    description: str = ""

    @abstractmethod
    async def process(self, exchange: Exchange) -> None:
        """
        Run the route for one exchange.

        Args:
            exchange: The message being routed

        Raises:
            Exception: When the route fails and the failure is not handled
        """
        pass


class RequestSigner(ABC):
    """
    Interface for securing outgoing HTTP headers.
    """

    @abstractmethod
    def sign(self, headers: MutableMapping[str, Any]) -> None:
        """
        Add authorization headers in place.

        Raises:
            SigningError: If the headers cannot be secured
        """
        pass

    @property
    @abstractmethod
    def enabled(self) -> bool:
        pass


class RestCall(ABC):
    """
    Interface for an outgoing REST call driven by exchange headers.
    """

    @abstractmethod
    async def call(self, exchange: Exchange) -> None:
        """
        Send the exchange body and replace it with the response body.

        Raises:
            HttpOperationFailedError: For non-2xx responses
            CommandRuntimeError: On timeout, bulkhead rejection or open circuit
        """
        pass


class DeadLetterSender(ABC):
    """
    Interface for moving a failed message to a dead letter queue.
    """

    @abstractmethod
    async def send(self, queue_name: str, exchange: Exchange) -> Optional[str]:
        """
        Send the exchange body to the named queue.

        Returns:
            Message id assigned by the queue
        """
        pass


class MessageConsumer(ABC):
    """
    Interface for polling consumers that feed exchanges into a route.
    """

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass


# Custom exceptions
class PulseTrafficRoutingError(Exception):
    """Raised when a message cannot be routed to or from Pulse."""
    pass


class HttpOperationFailedError(Exception):
    """Raised when an outgoing HTTP call returns a non-2xx status."""

    def __init__(
        self,
        uri: str,
        status_code: int,
        status_text: str = "",
        response_body: Optional[str] = None,
        response_headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(f"HTTP operation failed invoking {uri} with statusCode: {status_code}")
        self.uri = uri
        self.status_code = status_code
        self.status_text = status_text
        self.response_body = response_body
        self.response_headers = response_headers or {}


class CommandRuntimeError(Exception):
    """
    Raised when a guarded command fails: timeout, bulkhead rejection,
    open circuit, or an unexpected error inside the command.
    """

    TIMEOUT = "TIMEOUT"
    REJECTED = "REJECTED_SEMAPHORE_EXECUTION"
    SHORTCIRCUIT = "SHORTCIRCUIT"
    COMMAND_EXCEPTION = "COMMAND_EXCEPTION"

    def __init__(self, command_name: str, failure_type: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{command_name} {message}")
        self.command_name = command_name
        self.failure_type = failure_type
        self.cause = cause


class ResponsePathNotFoundError(Exception):
    """Raised when an expected field is missing from a JSON response."""
    pass


class ConfigurationStateError(Exception):
    """Raised when a component is used in an invalid configuration state."""
    pass


class BucketDoesNotExistError(Exception):
    """Raised when an S3 bucket does not exist."""
    pass


class SigningError(IOError):
    """Raised when outgoing request headers cannot be JWT-secured."""
    pass


class JwtValidationError(Exception):
    """Raised when an incoming request carries an invalid JWT."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code
