"""
Fulfillment status documents: the incoming ``<fulfillmentStatus>`` update and
the outgoing ship cancel/status payload built from it.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .xml_binding import parse_xml, to_xml


FULFILLMENT_STATUS_ROOT = "fulfillmentStatus"
FULFILLMENT_STATUS_MESSAGE_ID_PATH = "/fulfillmentStatus/messageID"


class _XmlModel(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True, alias_generator=to_camel)


class StatusContainer(_XmlModel):
    number: Optional[str] = None
    quantity: Optional[str] = None
    tracking_number: Optional[str] = None
    universal_product_code: Optional[int] = None


class StatusContainers(_XmlModel):
    container: List[StatusContainer] = Field(default_factory=list)


class StatusLine(_XmlModel):
    order_line_identifier: Optional[str] = None
    line_number: Optional[str] = None
    transaction_date: Optional[str] = None
    confirmed_quantity: Optional[str] = None
    rejected_quantity: Optional[str] = None
    reason_text: Optional[str] = None
    external_delivery_line_number: Optional[str] = None
    order_line_status: Optional[str] = None
    storage_type: Optional[str] = None
    containers: List[StatusContainers] = Field(default_factory=list)


class StatusLines(_XmlModel):
    line: List[StatusLine] = Field(default_factory=list)


class StatusDimensions(_XmlModel):
    gross_weight: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    linear_unit_of_measure: Optional[str] = None
    net_weight: Optional[float] = None
    number: Optional[str] = None
    weight_unit_of_measure: Optional[str] = None
    width: Optional[float] = None


class StatusContainerDetail(_XmlModel):
    dimensions: Optional[StatusDimensions] = None


class StatusContainerDetails(_XmlModel):
    container_detail: List[StatusContainerDetail] = Field(default_factory=list)


class FulfillmentStatus(_XmlModel):
    """Fulfillment request status update (cancel, reject, partial ship)."""

    ship_from_location: Optional[str] = None
    seller_organization_code: Optional[str] = None
    transaction_reference: Optional[str] = None
    fulfillment_request_number: Optional[str] = None
    external_order_number: Optional[str] = None
    order_type: Optional[str] = None
    customer_order_number: Optional[str] = None
    creation_date: Optional[str] = None
    user_id: Optional[str] = None
    external_delivery_number: Optional[str] = None
    message_id: Optional[str] = Field(None, alias="messageID")
    transaction_date: Optional[str] = None
    is_complete_fr_update: bool = Field(False, alias="isCompleteFRUpdate")
    fulfillment_status: Optional[str] = None
    lines: List[StatusLines] = Field(default_factory=list)
    container_details: List[StatusContainerDetails] = Field(default_factory=list)
    work_order_number: Optional[str] = None

    @classmethod
    def from_xml(cls, xml) -> "FulfillmentStatus":
        return parse_xml(cls, xml, FULFILLMENT_STATUS_ROOT)

    def all_lines(self) -> List[StatusLine]:
        return [line for group in self.lines for line in group.line]


class TargetLine(_XmlModel):
    line_number: Optional[str] = None
    order_line_key: Optional[str] = None
    product_code: Optional[str] = None
    size_code: Optional[str] = None
    universal_product_code: Optional[int] = None
    order_line_status: Optional[str] = None
    rejected_quantity: Optional[str] = None
    confirmed_quantity: Optional[str] = None


class TargetLines(_XmlModel):
    line: List[TargetLine] = Field(default_factory=list)


class FulfillmentStatusTarget(_XmlModel):
    """Ship cancel/status payload sent downstream."""

    fulfillment_request_number: Optional[str] = None
    transaction_reference: Optional[str] = None
    creation_date: Optional[str] = None
    ship_from_location: Optional[str] = None
    seller_organization_code: Optional[str] = None
    customer_order_number: Optional[str] = None
    order_type: Optional[str] = None
    lines: List[TargetLines] = Field(default_factory=list)
    transaction_date: Optional[str] = None
    message_id: Optional[str] = Field(None, alias="messageID")

    def to_xml(self) -> str:
        return to_xml(self, FULFILLMENT_STATUS_ROOT)
