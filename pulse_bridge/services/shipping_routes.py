"""
Application routes: ship confirm and ship status intake from Pulse, and the
NSP queue relay.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..adapters.sqs_consumer import SqsConsumerOptions, SqsRouteConsumer
from ..domain.exchange import Exchange
from ..domain.fulfillment_status import (
    FULFILLMENT_STATUS_ROOT,
    FulfillmentStatus,
    FulfillmentStatusTarget,
    StatusLine,
    TargetLine,
    TargetLines
)
from ..domain.ports import RestCall, Route
from ..domain.pulse import EventContextHeaders
from ..domain.shipment import SHIPMENT_ROOT, Shipment
from ..domain.xml_binding import message_id_from_xml
from ..infra.product_cache import ProductEnrichmentCache
from .egress import EgressToPulseRoute, XmlEventMetadataSetter
from .error_handling import AppRoutePolicy, MESSAGE_ID_PROPERTY, RedeliveryPolicy
from .headers import PulseHeadersProcessor
from .ingress import IngressFromPulseRoute


logger = logging.getLogger(__name__)

SHIP_CONFIRM_FMG_TO_DOD_ROUTE = "ShipConfirmRoute"
SHIP_STATUS_FMG_TO_DOD_ROUTE = "ShipStatusFRoute"

SHIP_CONFIRM_ROUTE_ID = "ShipConfirmRouter"
SHIP_CONFIRM_ROUTE_DESCRIPTION = "Router to generate ship confirm NSP payload"

SHIP_CANCEL_ROUTE_ID = "ShipCancelUpdateRouter"
SHIP_CANCEL_ROUTE_DESCRIPTION = "Router to generate ship cancel NSP payload"

NSP_ROUTE_ID = "PulseRouter"
NSP_ROUTE_DESCRIPTION = "Router to post messages to NSP"

# Exchange property holding the parsed status update of a ShipCancelUpdateRouter message
FULFILLMENT_STATUS_PROPERTY = "FulfillmentStatus"


class ShipConfirmationRoute(Route):
    """Parses a ship confirmation ``<shipment>`` document into a Shipment."""

    route_id = SHIP_CONFIRM_ROUTE_ID
    description = SHIP_CONFIRM_ROUTE_DESCRIPTION

    def __init__(self, policy: AppRoutePolicy, trace_processor: Callable[[Exchange], None], app_name: str):
        self.policy = policy
        self.trace_processor = trace_processor
        self.app_name = app_name

    async def process(self, exchange: Exchange) -> None:
        exchange.route_id = self.route_id
        await self.policy.run(exchange, self._confirm)

    async def _confirm(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        logger.info(f"Starting the Event={self.route_id}  for {self.app_name} repo")
        logger.info(
            "Event=ShipConfirmRoute Status=Started Message=SQS Message received for "
            f"ShipConfirmation Events = {exchange.body_as_text()}"
        )

        body = exchange.body_as_text()
        exchange.set_property(MESSAGE_ID_PROPERTY, message_id_from_xml(body, SHIPMENT_ROOT))
        exchange.body = Shipment.from_xml(body)

        logger.info(f"Event=ShipConfirmRoute Status=Completed id = {exchange.get_property(MESSAGE_ID_PROPERTY)}")
        logger.info(f"Complete the Event={self.route_id}  for {self.app_name} repo")


class ShipStatusRoute(Route):
    """
    Parses a ``<fulfillmentStatus>`` update and maps it to the outgoing
    status payload.

    With a product cache, each line's product and size code come from the
    cached record for its universal product code.
    """

    route_id = SHIP_CANCEL_ROUTE_ID
    description = SHIP_CANCEL_ROUTE_DESCRIPTION

    def __init__(
        self,
        policy: AppRoutePolicy,
        trace_processor: Callable[[Exchange], None],
        app_name: str,
        product_cache: Optional[ProductEnrichmentCache] = None
    ):
        self.policy = policy
        self.trace_processor = trace_processor
        self.app_name = app_name
        self.product_cache = product_cache

    async def process(self, exchange: Exchange) -> None:
        exchange.route_id = self.route_id
        await self.policy.run(exchange, self._update_status)

    async def _update_status(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        logger.info(f"Starting the Event={self.route_id}  for {self.app_name} repo")
        logger.info(
            "Event=ShipStatus Status=Started Message=SQS Message received for "
            f"ShipStatus Events = {exchange.body_as_text()}"
        )

        body = exchange.body_as_text()
        exchange.set_property(MESSAGE_ID_PROPERTY, message_id_from_xml(body, FULFILLMENT_STATUS_ROOT))
        status = FulfillmentStatus.from_xml(body)
        exchange.set_property(FULFILLMENT_STATUS_PROPERTY, status)
        exchange.body = await self.to_target(status)

        logger.info(f"Event=ShipStatus Status=Completed id = {exchange.get_property(MESSAGE_ID_PROPERTY)}")
        logger.info(f"Complete the Event={self.route_id}  for {self.app_name} repo")

    async def to_target(self, status: FulfillmentStatus) -> FulfillmentStatusTarget:
        lines = [await self._target_line(line) for line in status.all_lines()]
        return FulfillmentStatusTarget(
            fulfillment_request_number=status.fulfillment_request_number,
            transaction_reference=status.transaction_reference,
            creation_date=status.creation_date,
            ship_from_location=status.ship_from_location,
            seller_organization_code=status.seller_organization_code,
            customer_order_number=status.customer_order_number,
            order_type=status.order_type,
            lines=[TargetLines(line=lines)] if lines else [],
            transaction_date=status.transaction_date,
            message_id=status.message_id
        )

    async def _target_line(self, line: StatusLine) -> TargetLine:
        upc = None
        for group in line.containers:
            for container in group.container:
                if container.universal_product_code is not None:
                    upc = container.universal_product_code
                    break
            if upc is not None:
                break

        target = TargetLine(
            line_number=line.line_number,
            order_line_key=line.order_line_identifier,
            universal_product_code=upc,
            order_line_status=line.order_line_status,
            rejected_quantity=line.rejected_quantity,
            confirmed_quantity=line.confirmed_quantity
        )

        if self.product_cache is not None and upc is not None:
            record = await self.product_cache.get(upc)
            if record:
                target.product_code = record.get("productCode")
                target.size_code = record.get("sizeCode")
            else:
                logger.debug(f"No product enrichment for upc {upc}")
        return target


class NspMessagingRoute(Route):
    """
    Consumes the NSP queue. With ``egress`` the message is published to
    Pulse as an XML event keyed by its messageID.
    """

    route_id = NSP_ROUTE_ID
    description = NSP_ROUTE_DESCRIPTION

    def __init__(
        self,
        queue_name: str,
        policy: AppRoutePolicy,
        trace_processor: Callable[[Exchange], None],
        app_name: str,
        sqs_config,
        egress: Optional[EgressToPulseRoute] = None,
        event_context_name: str = "ce_fmg_sc_canonical",
        event_context_type: str = "EP_SHIP_CONFIRM"
    ):
        self.queue_name = queue_name
        self.policy = policy
        self.trace_processor = trace_processor
        self.app_name = app_name
        self.egress = egress
        self.event_context_name = event_context_name
        self.event_context_type = event_context_type
        self.metadata_setter = XmlEventMetadataSetter()
        self.options = SqsConsumerOptions.from_config(
            sqs_config,
            message_attribute_names=["All"],
            delete_after_read=True
        )

    def create_consumer(self, sqs_client) -> SqsRouteConsumer:
        return SqsRouteConsumer(sqs_client, self.queue_name, self.options, self.process, self.route_id)

    async def process(self, exchange: Exchange) -> None:
        exchange.route_id = self.route_id
        await self.policy.run(exchange, self._relay)

    async def _relay(self, exchange: Exchange) -> None:
        self.trace_processor(exchange)
        logger.info(f"Starting the Event={self.route_id}  for {self.app_name} repo")
        logger.info(f"Event=NspRoute Status=Started Message=SQS Message received = {exchange.body_as_text()}")

        body = exchange.body_as_text()
        message_id = message_id_from_xml(body, SHIPMENT_ROOT)
        exchange.set_header(MESSAGE_ID_PROPERTY, message_id)
        exchange.set_property(MESSAGE_ID_PROPERTY, message_id)
        exchange.body = body

        if self.egress is not None:
            exchange.set_header(EventContextHeaders.BUSINESS_KEY_NAME, MESSAGE_ID_PROPERTY)
            exchange.set_header(EventContextHeaders.BUSINESS_KEY_VALUE, message_id)
            self.metadata_setter.set_metadata(exchange, self.event_context_name, self.event_context_type)
            await self.egress.process(exchange)

        logger.info(f"Event=NspRoute Status=Completed id = {exchange.get_property(MESSAGE_ID_PROPERTY)}")
        logger.info(f"Complete the Event={self.route_id}  for {self.app_name} repo")


class IntakeRoutes:
    """
    Ingress routes that read Pulse notifications from the ship confirm and
    ship status queues and hand the decoded documents to their routers.

    Neither route has a DLQ of its own: failures are re-raised and the
    queue redrive policy moves the message to its dead letter queue.
    """

    def __init__(
        self,
        config,
        rest_call: RestCall,
        headers_processor: PulseHeadersProcessor,
        trace_processor: Callable[[Exchange], None],
        ship_confirmation_route: ShipConfirmationRoute,
        ship_status_route: ShipStatusRoute
    ):
        policy = RedeliveryPolicy.resolve(config.redelivery)

        def ingress(route_id: str, queue_name: str, consumer: Route) -> IngressFromPulseRoute:
            return IngressFromPulseRoute(
                route_id=route_id,
                queue_name=queue_name,
                consumer=consumer.process,
                rest_call=rest_call,
                headers_processor=headers_processor,
                trace_processor=trace_processor,
                policy=policy,
                sqs_config=config.sqs,
                stash_encoded_data=config.routes.stash_encoded_data,
                url_parameters_suffix=config.routes.url_parameters_suffix
            )

        self.ship_confirm = ingress(SHIP_CONFIRM_FMG_TO_DOD_ROUTE, config.sqs.ship_confirm_queue, ship_confirmation_route)
        logger.info("Inside IntakeRoute - Setting shipConfirmRouteBuilder")
        self.ship_status = ingress(SHIP_STATUS_FMG_TO_DOD_ROUTE, config.sqs.cancel_queue, ship_status_route)
        logger.info("Inside IntakeRoute - Setting shipCancelUpdateRouteBuilder")

    @property
    def routes(self) -> List[IngressFromPulseRoute]:
        return [self.ship_confirm, self.ship_status]

    def create_consumers(self, sqs_client) -> List[SqsRouteConsumer]:
        return [route.create_consumer(sqs_client) for route in self.routes]

    def describe(self) -> Dict[str, Any]:
        return {route.route_id: route.queue_name for route in self.routes}
