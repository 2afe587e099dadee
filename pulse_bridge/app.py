"""
Main application module for pulse-bridge service.
Implements dependency injection and service composition.
"""

import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
import uvicorn
from redis.exceptions import RedisError

from .config import load_config, AppConfig
from .telemetry.logger import setup_logging
from .domain.messaging import app_messaging_resources
from .adapters.jwt_signer import JwtRequestSigner
from .adapters.pulse_client import OutgoingRestCall, StaticServiceDiscovery
from .adapters.resilience import CommandGuard
from .adapters.sqs_consumer import SqsDeadLetterSender, SqsRouteConsumer
from .infra.sqs_provisioner import SqsProvisioner, create_sqs_client, provision_legacy_queues
from .infra.sns_provisioner import SnsProvisioner, create_sns_client
from .infra.local_s3 import LocalS3Client
from .infra.s3 import create_s3_client
from .infra.redis_client import RedisClient
from .infra.product_cache import ProductEnrichmentCache
from .services.trace_processor import DistributedTraceProcessor
from .services.error_handling import AppRoutePolicy, RedeliveryPolicy
from .services.headers import PulseHeadersProcessor, RestHeadersSetter
from .services.egress import EgressToPulseRoute, PULSE_POST_CALL_ROUTE_ID
from .services.ingress import PULSE_GET_CALL_ROUTE_ID
from .services.shipping_routes import (
    IntakeRoutes,
    NspMessagingRoute,
    ShipConfirmationRoute,
    ShipStatusRoute
)
from .api.http_server import HealthCheck, PulseBridgeAPI


logger = logging.getLogger(__name__)


class PulseBridgeService:
    """
    Main service class that composes all dependencies and manages the
    service lifecycle.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize service with configuration.

        Args:
            config: Application configuration
        """
        self.config = config

        # Dependencies (will be initialized in setup)
        self.sqs_client = None
        self.sns_client = None
        self.s3_client = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.redis_client: Optional[RedisClient] = None
        self.product_cache: Optional[ProductEnrichmentCache] = None
        self.signer: Optional[JwtRequestSigner] = None
        self.intake_routes: Optional[IntakeRoutes] = None
        self.nsp_route: Optional[NspMessagingRoute] = None
        self.egress_route: Optional[EgressToPulseRoute] = None
        self.consumers: List[SqsRouteConsumer] = []
        self.health_check: Optional[HealthCheck] = None
        self.api: Optional[PulseBridgeAPI] = None

        # Lifecycle management
        self._shutdown_event = asyncio.Event()
        self._setup_signal_handlers()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    async def setup(self) -> None:
        """
        Setup all service dependencies.

        Raises:
            Exception: If setup fails
        """
        try:
            logger.info("Setting up pulse-bridge service")

            self.sqs_client = create_sqs_client(self.config.aws)
            self.sns_client = create_sns_client(self.config.aws)
            if self.config.aws.provision_resources:
                await asyncio.to_thread(self._provision)

            self.s3_client = create_s3_client(self.config)

            if self.config.redis.enabled:
                await self._setup_product_cache()

            self.signer = JwtRequestSigner.from_config(self.config.jwt)
            if self.signer.enabled:
                try:
                    self.signer.configure()
                except Exception as e:
                    logger.error(f"Status=Error Event=JWTConfiguration Message={e}")

            self._setup_routes()

            self.health_check = HealthCheck(self.config.server.health_interval_seconds)
            routes = self.intake_routes.describe()
            routes[self.nsp_route.route_id] = self.nsp_route.queue_name
            self.api = PulseBridgeAPI(
                signer=self.signer,
                health_check=self.health_check,
                app_name=self.config.app.name,
                description=self.config.app.description,
                version=self.config.app.version,
                routes=routes
            )

            logger.info("Service setup completed successfully")

        except Exception as e:
            logger.error(f"Service setup failed: {e}")
            await self.cleanup()
            raise

    def _provision(self) -> None:
        """Create queues, then subscribe them to their topics."""
        provision_legacy_queues(self.sqs_client, self.config.sqs, self.config.is_local)

        resources = app_messaging_resources(self.config)
        SqsProvisioner.from_config(self.sqs_client, self.config).provision(resources)

        if self.sns_client is not None:
            SnsProvisioner(
                self.sns_client,
                self.sqs_client,
                is_local=self.config.aws.local,
                is_localstack=self.config.aws.localstack
            ).provision(resources)

    async def _setup_product_cache(self) -> None:
        self.redis_client = RedisClient.from_config(self.config.redis)
        try:
            await self.redis_client.connect()
        except RedisError as e:
            logger.warning(f"Product enrichment disabled: {e}", extra={"component": "app"})
            self.redis_client = None
            return

        self.product_cache = ProductEnrichmentCache(
            self.redis_client,
            cache_name=self.config.redis.cache_name,
            ttl_seconds=self.config.redis.ttl_seconds
        )

    def _pulse_call(self, route_id: str, discovery: StaticServiceDiscovery, trace_processor) -> OutgoingRestCall:
        return OutgoingRestCall(
            vip_name=self.config.pulse.vip_name,
            base_url=self.config.pulse.url_suffix,
            route_id=route_id,
            discovery=discovery,
            guard=CommandGuard.from_config(route_id, self.config.rest),
            app_name=self.config.app.name,
            client=self.http_client,
            trace_processor=trace_processor
        )

    def _setup_routes(self) -> None:
        config = self.config
        trace_processor = DistributedTraceProcessor()
        discovery = StaticServiceDiscovery(config.pulse.services)

        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.rest.socket_timeout_ms / 1000.0, connect=config.rest.connect_timeout_ms / 1000.0)
        )
        get_call = self._pulse_call(PULSE_GET_CALL_ROUTE_ID, discovery, trace_processor)
        post_call = self._pulse_call(PULSE_POST_CALL_ROUTE_ID, discovery, trace_processor)

        headers_processor = PulseHeadersProcessor(
            RestHeadersSetter(self.signer, config.jwt.use_alternate_header),
            config.pulse.vip_name
        )
        app_policy = AppRoutePolicy.from_config(config)

        ship_confirmation_route = ShipConfirmationRoute(app_policy, trace_processor, config.app.name)
        ship_status_route = ShipStatusRoute(app_policy, trace_processor, config.app.name, self.product_cache)
        self.intake_routes = IntakeRoutes(
            config,
            get_call,
            headers_processor,
            trace_processor,
            ship_confirmation_route,
            ship_status_route
        )

        if config.routes.nsp_publish_to_pulse:
            self.egress_route = EgressToPulseRoute(
                post_call,
                headers_processor,
                trace_processor,
                RedeliveryPolicy.resolve(config.redelivery),
                url_parameters_suffix=config.routes.url_parameters_suffix,
                dlq_name=config.routes.nsp_dlq_name,
                dlq_sender=SqsDeadLetterSender(self.sqs_client)
            )

        self.nsp_route = NspMessagingRoute(
            config.sqs.nsp_queue,
            app_policy,
            trace_processor,
            config.app.name,
            config.sqs,
            egress=self.egress_route,
            event_context_name=config.routes.nsp_event_context_name,
            event_context_type=config.routes.nsp_event_context_type
        )

        self.consumers = self.intake_routes.create_consumers(self.sqs_client)
        self.consumers.append(self.nsp_route.create_consumer(self.sqs_client))

    async def cleanup(self) -> None:
        """Cleanup service resources."""
        logger.info("Cleaning up service resources")

        try:
            for consumer in self.consumers:
                await consumer.stop()

            if self.health_check:
                await self.health_check.stop()

            if self.http_client:
                await self.http_client.aclose()
                self.http_client = None

            if self.redis_client:
                await self.redis_client.close()
                self.redis_client = None

            if isinstance(self.s3_client, LocalS3Client):
                self.s3_client.close()

            logger.info("Service cleanup completed")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")

    async def run(self) -> None:
        """
        Run the service.

        Starts the queue consumers and the HTTP server, and waits for the
        server to exit or a shutdown signal.
        """
        if not self.api:
            raise RuntimeError("Service not setup. Call setup() first.")

        for consumer in self.consumers:
            await consumer.start()
        self.health_check.start()

        logger.info(
            f"Starting pulse-bridge HTTP server on {self.config.server.host}:{self.config.server.port}"
        )

        server_config = uvicorn.Config(
            app=self.api.app,
            host=self.config.server.host,
            port=self.config.server.port,
            log_level=self.config.server.log_level,
            access_log=True
        )
        server = uvicorn.Server(server_config)

        async def watch_shutdown() -> None:
            await self._shutdown_event.wait()
            server.should_exit = True

        watcher = asyncio.create_task(watch_shutdown())
        logger.info(f"Application {self.config.app.name} is up")

        try:
            await server.serve()
        except Exception as e:
            logger.error(f"Server error: {e}")
            raise
        finally:
            watcher.cancel()

    @asynccontextmanager
    async def lifespan(self):
        """
        Context manager for service lifecycle.

        Handles setup and cleanup automatically.
        """
        try:
            await self.setup()
            yield self
        finally:
            await self.cleanup()


async def run_service() -> None:
    config = load_config()

    setup_logging(
        level=config.logging.level,
        service_name="pulse-bridge",
        enable_json=config.logging.json_format,
        enable_trace_ids=config.logging.enable_trace_ids
    )

    try:
        async with PulseBridgeService(config).lifespan() as service:
            await service.run()

    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error(f"Service failed: {e}")
        sys.exit(1)


def main() -> None:
    """
    Main entry point for the application.
    """
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
