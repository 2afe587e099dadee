"""
Authentication for the pulse-bridge HTTP API.
Validates incoming bearer JWTs with the same key used to sign Pulse calls.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Header

from ..adapters.jwt_signer import JwtRequestSigner
from ..domain.ports import JwtValidationError


logger = logging.getLogger(__name__)


def extract_bearer_token(authorization_header: Optional[str]) -> Optional[str]:
    """
    Extract bearer token from Authorization header.

    Args:
        authorization_header: Value of Authorization header

    Returns:
        Token string if valid Bearer format, None otherwise
    """
    if not authorization_header:
        return None

    parts = authorization_header.split()
    if len(parts) != 2:
        return None

    scheme, token = parts
    if scheme.lower() != "bearer":
        return None

    return token


class JwtAuthDependency:
    """
    FastAPI dependency for JWT validation.

    With JWT disabled every request passes and no claims are returned.
    """

    def __init__(self, signer: JwtRequestSigner):
        self.signer = signer

    async def __call__(self, authorization: Optional[str] = Header(default=None)) -> Optional[Dict[str, Any]]:
        """
        Raises:
            JwtValidationError: If the token is missing or invalid
        """
        if not self.signer.enabled:
            return None

        token = extract_bearer_token(authorization)
        if token is None:
            raise JwtValidationError("Missing bearer token", status_code=401)

        claims = self.signer.verify(token)
        logger.debug(f"Authenticated request from {claims.get('iss')}", extra={"component": "auth"})
        return claims
