"""
Domain layer for pulse-bridge service.

Contains message models, the exchange carrier, and interfaces.
"""

from .exchange import Exchange
from .pulse import (
    EventContext,
    EventData,
    Pulse,
    EventContextHeaders,
    EventDataHeaders,
    RouteHeaders,
    EventContextVersion,
    EventDataEncoding
)
from .messaging import MessagingResources, app_messaging_resources
from .shipment import Shipment
from .fulfillment_status import FulfillmentStatus, FulfillmentStatusTarget
from .ports import (
    Route,
    RequestSigner,
    RestCall,
    DeadLetterSender,
    MessageConsumer,
    PulseTrafficRoutingError,
    HttpOperationFailedError,
    CommandRuntimeError,
    ResponsePathNotFoundError,
    ConfigurationStateError,
    BucketDoesNotExistError,
    SigningError,
    JwtValidationError
)

__all__ = [
    # Models
    "Exchange",
    "EventContext",
    "EventData",
    "Pulse",
    "EventContextHeaders",
    "EventDataHeaders",
    "RouteHeaders",
    "EventContextVersion",
    "EventDataEncoding",
    "MessagingResources",
    "app_messaging_resources",
    "Shipment",
    "FulfillmentStatus",
    "FulfillmentStatusTarget",

    # Ports (Interfaces)
    "Route",
    "RequestSigner",
    "RestCall",
    "DeadLetterSender",
    "MessageConsumer",

    # Errors
    "PulseTrafficRoutingError",
    "HttpOperationFailedError",
    "CommandRuntimeError",
    "ResponsePathNotFoundError",
    "ConfigurationStateError",
    "BucketDoesNotExistError",
    "SigningError",
    "JwtValidationError"
]
