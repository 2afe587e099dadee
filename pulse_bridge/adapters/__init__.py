"""
Adapters for pulse-bridge service.

Contains the outgoing REST client, JWT signer, command guard and SQS consumer.
"""

from .resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState, CommandGuard
from .pulse_client import (
    OutgoingRestCall,
    StaticServiceDiscovery,
    URL_SUFFIX,
    URL_PARAMETERS_SUFFIX,
    construct_url,
    construct_url_parameters_suffix
)
from .jwt_signer import JwtRequestSigner
from .sqs_consumer import SqsConsumerOptions, SqsRouteConsumer, SqsDeadLetterSender

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CommandGuard",
    "OutgoingRestCall",
    "StaticServiceDiscovery",
    "URL_SUFFIX",
    "URL_PARAMETERS_SUFFIX",
    "construct_url",
    "construct_url_parameters_suffix",
    "JwtRequestSigner",
    "SqsConsumerOptions",
    "SqsRouteConsumer",
    "SqsDeadLetterSender"
]
