"""
HTTP API for pulse-bridge service.
"""

from .auth import JwtAuthDependency, extract_bearer_token
from .http_server import HealthCheck, PulseBridgeAPI

__all__ = [
    "JwtAuthDependency",
    "extract_bearer_token",
    "HealthCheck",
    "PulseBridgeAPI"
]
