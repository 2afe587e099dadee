"""
Routes and processors for pulse-bridge service.

Contains the Pulse ingress and egress routes, the shipping application
routes, trace header propagation and route exception handling.
"""

from .trace_processor import DistributedTraceProcessor
from .error_handling import (
    AppRoutePolicy,
    ExceptionHandler,
    ExceptionLoggingProcessor,
    HttpExceptionRetryPredicate,
    RedeliveryPolicy
)
from .headers import PulseHeadersProcessor, RestHeadersSetter
from .egress import EgressToPulseRoute, PulsePostPayloadProcessor, XmlEventMetadataSetter
from .ingress import DecodingRoute, EncodedDataHandlingRoute, IngressFromPulseRoute, SnsMessageProcessor
from .shipping_routes import IntakeRoutes, NspMessagingRoute, ShipConfirmationRoute, ShipStatusRoute

__all__ = [
    "DistributedTraceProcessor",
    "AppRoutePolicy",
    "ExceptionHandler",
    "ExceptionLoggingProcessor",
    "HttpExceptionRetryPredicate",
    "RedeliveryPolicy",
    "PulseHeadersProcessor",
    "RestHeadersSetter",
    "EgressToPulseRoute",
    "PulsePostPayloadProcessor",
    "XmlEventMetadataSetter",
    "DecodingRoute",
    "EncodedDataHandlingRoute",
    "IngressFromPulseRoute",
    "SnsMessageProcessor",
    "IntakeRoutes",
    "NspMessagingRoute",
    "ShipConfirmationRoute",
    "ShipStatusRoute"
]
