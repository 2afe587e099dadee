"""
JWT signing of outgoing REST headers and verification of incoming tokens.
"""

import logging
import threading
import time
import uuid
from typing import Any, Dict, MutableMapping, Optional

import jwt

from ..domain.ports import RequestSigner, SigningError, JwtValidationError


logger = logging.getLogger(__name__)

AUTHORIZATION = "Authorization"
ALT_AUTHORIZATION = "X-sample-Authorization"
ALT_APP_ID = "X-sample-AppId"
INSTANCE_ID = "X-sample-InstanceId"


class JwtRequestSigner(RequestSigner):
    """
    Signs outgoing headers with an HS256 bearer token.

    The signing key is loaded lazily on first use (or eagerly through
    configure()); a lock keeps concurrent first calls from configuring twice.
    """

    def __init__(
        self,
        enabled: bool,
        domain: str,
        app_id: str,
        instance_id: str,
        secret: Optional[str] = None,
        secret_file: Optional[str] = None,
        algorithm: str = "HS256",
        ttl_seconds: int = 300
    ):
        self._enabled = enabled
        self.domain = domain
        self.app_id = app_id
        self.instance_id = instance_id
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self._secret = secret
        self._secret_file = secret_file
        self._key: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, jwt_config) -> "JwtRequestSigner":
        return cls(
            enabled=jwt_config.enabled,
            domain=jwt_config.domain,
            app_id=jwt_config.app_id,
            instance_id=jwt_config.instance_id,
            secret=jwt_config.secret,
            secret_file=jwt_config.secret_file,
            algorithm=jwt_config.algorithm,
            ttl_seconds=jwt_config.ttl_seconds
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_configured(self) -> bool:
        return self._key is not None

    def configure(self) -> None:
        """
        Load the signing key.

        Raises:
            ValueError: If no secret is configured or the secret file is empty
            FileNotFoundError: If the secret file does not exist
        """
        key = self._secret
        if not key and self._secret_file:
            with open(self._secret_file, 'r', encoding='utf-8') as f:
                key = f.read().strip()
            if not key:
                raise ValueError(f"JWT secret file is empty: {self._secret_file}")
            logger.info(f"Loaded JWT secret from {self._secret_file}")

        if not key:
            raise ValueError("No JWT signing secret configured")

        self._key = key

    def sign(self, headers: MutableMapping[str, Any]) -> None:
        """
        Add Authorization, app id and instance id headers.

        Raises:
            SigningError: If the token cannot be created
        """
        try:
            logger.info("Signing JWT for HTTP")
            if self._enabled:
                self._ensure_config()
                headers[AUTHORIZATION] = f"Bearer {self._encode()}"
                headers[ALT_APP_ID] = self.app_id
                headers[INSTANCE_ID] = self.instance_id
                logger.info("JWT successfully signed.")
            else:
                logger.info("JWT disabled for local testing.")
        except Exception as e:
            logger.error(
                "ClientHttpResponse: RESTRESTSecurityInterceptor unable to JWT-secure headers. "
                f"exception={e!r} localizemessage={e}"
            )
            raise SigningError(str(e)) from e

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token issued for this domain.

        Raises:
            JwtValidationError: If the token is invalid or expired
        """
        try:
            self._ensure_config()
            return jwt.decode(
                token,
                self._key,
                algorithms=[self.algorithm],
                audience=self.domain
            )
        except jwt.ExpiredSignatureError as e:
            raise JwtValidationError(f"JWT expired: {e}", status_code=401) from e
        except jwt.InvalidTokenError as e:
            raise JwtValidationError(f"Invalid JWT: {e}", status_code=401) from e
        except (ValueError, OSError) as e:
            raise JwtValidationError(f"JWT validation unavailable: {e}", status_code=500) from e

    def _encode(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.app_id,
            "sub": self.instance_id,
            "aud": self.domain,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "jti": str(uuid.uuid4())
        }
        return jwt.encode(claims, self._key, algorithm=self.algorithm)

    def _ensure_config(self) -> None:
        logger.info("Ensuring the existence of sample JWT Authenticator Config for JWT signing.")
        with self._lock:
            if self._key is not None:
                logger.info("JWT Authenticator config exists. Proceeding with signing.")
                return
            logger.warning("sample JWT Authenticator config does not exist at JWT signing time.")
            self.configure()
            logger.info("sample JWT Authenticator config was successfully created for JWT signing")
