"""
Ship confirm document: ``<shipment>`` as published by the fulfillment system.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .xml_binding import parse_xml


SHIPMENT_ROOT = "shipment"
SHIPMENT_MESSAGE_ID_PATH = "/shipment/messageID"


class _XmlModel(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True, alias_generator=to_camel)


class Dimensions(_XmlModel):
    gross_weight: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    linear_unit_of_measure: Optional[str] = None
    net_weight: Optional[float] = None
    number: Optional[str] = None
    weight_unit_of_measure: Optional[str] = None
    width: Optional[float] = None


class ContainerDetail(_XmlModel):
    dimensions: Optional[Dimensions] = None


class ContainerDetails(_XmlModel):
    container_detail: List[ContainerDetail] = Field(default_factory=list)


class ExternalDeliveryDetail(_XmlModel):
    external_delivery_number: Optional[str] = None
    external_delivery_line_number: Optional[str] = None
    quantity: Optional[str] = None


class ExternalDeliveryDetails(_XmlModel):
    external_delivery_detail: List[ExternalDeliveryDetail] = Field(default_factory=list)


class Container(_XmlModel):
    number: Optional[str] = None
    external_delivery_details: Optional[ExternalDeliveryDetails] = None
    quantity: Optional[str] = None
    tracking_number: Optional[str] = None
    universal_product_code: Optional[int] = None


class Containers(_XmlModel):
    container: List[Container] = Field(default_factory=list)


class SerialNumbers(_XmlModel):
    serial_number: List[str] = Field(default_factory=list)


class Line(_XmlModel):
    containers: Optional[Containers] = None
    order_line_identifier: Optional[int] = None
    line_number: Optional[str] = None
    serial_numbers: Optional[SerialNumbers] = None


class Lines(_XmlModel):
    line: List[Line] = Field(default_factory=list)


class Address(_XmlModel):
    address1: Optional[str] = None
    address2: Optional[str] = None
    address3: Optional[str] = None
    address4: Optional[str] = None
    address5: Optional[str] = None
    ship_to_address_id: Optional[int] = None
    city: Optional[str] = None
    ship_to_country: Optional[str] = None
    pick_up_location: Optional[str] = None
    pick_up_location_type: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class ContactInformation(_XmlModel):
    day_phone: Optional[str] = None
    email: Optional[str] = None
    evening_phone_number: Optional[str] = None
    ship_to_country: Optional[str] = None


class Recipient(_XmlModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_name: Optional[str] = None


class ShipTo(_XmlModel):
    address: Optional[Address] = None
    contact_information: Optional[ContactInformation] = None
    recipient: Optional[Recipient] = None


class Shipment(_XmlModel):
    """Ship confirmation for one fulfillment request."""

    actual_shipment_date: Optional[str] = None
    bill_of_lading: Optional[str] = None
    order_classification: Optional[str] = None
    fulfillment_request_number: Optional[str] = None
    seller_organization_code: Optional[str] = None
    ship_from_location: Optional[str] = None
    shipping_method: Optional[str] = None
    standardized_actual_shipping_method: Optional[str] = None
    short_ship_flag: bool = False
    split_ship_flag: Optional[str] = None
    standard_carrier_alpha_code: Optional[str] = None
    work_order_number: Optional[str] = None
    country_of_origin: Optional[str] = None
    ship_to: Optional[ShipTo] = None
    lines: Optional[Lines] = None
    container_details: Optional[ContainerDetails] = None

    @classmethod
    def from_xml(cls, xml) -> "Shipment":
        return parse_xml(cls, xml, SHIPMENT_ROOT)
