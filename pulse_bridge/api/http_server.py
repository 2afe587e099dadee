"""
HTTP server for pulse-bridge service using FastAPI.
Provides the sample endpoint and the health and info management endpoints.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse

from ..adapters.jwt_signer import JwtRequestSigner
from ..domain.ports import JwtValidationError, SigningError
from ..telemetry.logger import MetricsLogger
from .auth import JwtAuthDependency


logger = logging.getLogger(__name__)

STATUS_UP = "UP"
STATUS_OUT_OF_SERVICE = "OUT_OF_SERVICE"


class HealthCheck:
    """
    Service health, OUT_OF_SERVICE until the first tick marks it UP.

    The ticker runs at once and then every ``interval_seconds``.
    """

    def __init__(self, interval_seconds: float = 10.0):
        self.interval_seconds = interval_seconds
        self.status = STATUS_OUT_OF_SERVICE
        self._task: Optional[asyncio.Task] = None

    @property
    def is_up(self) -> bool:
        return self.status == STATUS_UP

    def tick(self) -> None:
        self.status = STATUS_UP

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="HealthCheckTaskTimer")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class PulseBridgeAPI:
    """
    FastAPI application for pulse-bridge service.
    Handles the sample endpoint and management endpoints.
    """

    def __init__(
        self,
        signer: JwtRequestSigner,
        health_check: HealthCheck,
        app_name: str = "springbootsampleapp",
        description: str = "",
        version: str = "1.0.0",
        routes: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize FastAPI application.

        Args:
            signer: JWT signer, also used to validate incoming tokens
            health_check: Health indicator reported on /health
            app_name: Application name
            description: Application description
            version: Application version
            routes: Route id -> queue name, reported on /info
        """
        self.signer = signer
        self.health_check = health_check
        self.app_name = app_name
        self.description = description
        self.version = version
        self.routes = routes or {}
        self.metrics = MetricsLogger()

        self.app = FastAPI(
            title=app_name,
            version=version,
            description=description,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self._setup_middleware()

        self.auth_dependency = JwtAuthDependency(signer)

        self._setup_routes()

        self._setup_exception_handlers()

    def _setup_middleware(self) -> None:
        """Setup FastAPI middleware."""

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            start_time = time.time()

            logger.info(
                f"Request started: {request.method} {request.url.path}",
                extra={
                    "component": "http_server",
                    "method": request.method,
                    "path": request.url.path,
                    "client_ip": request.client.host if request.client else "unknown"
                }
            )

            response = await call_next(request)

            elapsed_ms = (time.time() - start_time) * 1000
            self.metrics.log_http_request(request.method, request.url.path, response.status_code, elapsed_ms)

            return response

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""

        @self.app.get(
            f"/ship/{self.app_name}/v1/",
            summary="Sample Endpoint",
            description="Confirms the service is serving requests"
        )
        async def sample(_: Optional[Dict[str, Any]] = Depends(self.auth_dependency)) -> dict:
            return {"success": "true"}

        @self.app.get(
            "/health",
            summary="Health Check",
            description="OUT_OF_SERVICE until the health check task has run"
        )
        async def health() -> JSONResponse:
            return JSONResponse(
                status_code=200 if self.health_check.is_up else 503,
                content={"status": self.health_check.status}
            )

        @self.app.get(
            "/info",
            summary="Info",
            description="Application name, description and version"
        )
        async def info() -> dict:
            return {
                "app": {
                    "name": self.app_name,
                    "description": self.description,
                    "version": self.version
                },
                "routes": self.routes
            }

    def _setup_exception_handlers(self) -> None:
        """Setup custom exception handlers."""

        @self.app.exception_handler(JwtValidationError)
        async def jwt_exception_handler(request: Request, exc: JwtValidationError):
            logger.warning(
                f"Authentication failed: {exc}",
                extra={
                    "component": "http_server",
                    "path": request.url.path,
                    "client_ip": request.client.host if request.client else "unknown"
                }
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": "Authentication failed"}
            )

        @self.app.exception_handler(SigningError)
        async def signing_exception_handler(request: Request, exc: SigningError):
            logger.error(f"Signing error: {exc}", extra={"component": "http_server", "path": request.url.path})
            return JSONResponse(
                status_code=500,
                content={"detail": f"Signing error: {str(exc)}"}
            )
