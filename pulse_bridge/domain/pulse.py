"""
Pulse event bus payload models and the exchange header names that feed them.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict


class EventContextHeaders:
    """Exchange headers read when building an event context."""

    BUSINESS_KEY_VALUE = "EventContextBusinessKeyValue"
    BUSINESS_KEY_NAME = "EventContextBusinessKeyName"
    NAME = "EventContextName"
    RETENTION_DAYS = "EventContextRetentionDays"
    TYPE = "EventContextType"
    VERSION = "EventContextVersion"
    EVENT_CONTEXT_FILTER_MAP_ENTRY_SETS = "EventContextFilterMapEntrySets"


class EventDataHeaders:
    """Exchange headers read when building event data."""

    ENCODING = "EventDataEncoding"
    ENCODED_DATA = "EncodedEventData"
    CONTENT_TYPE = "EventDataContentType"


class RouteHeaders:
    """Headers and properties shared by the Pulse routes."""

    PULSE_HTTP_REQUEST_METHOD = "PulseHttpRequestMethod"
    PULSE_RESPONSE_EVENTID = "PulseResponseEventId"
    STASH_ENCODED_DATA_FLAG = "StashEncodedDataFlag"
    PULSE_EVENT_ID = "PulseEventId"
    PULSE_SNS_MESSAGE_ATTRIBUTES = "PulseSNSMessageAttributes"
    PULSE_SNS_MESSAGE = "PulseSNSMessage"


class EventContextVersion(str, Enum):
    V1_0 = "1.0"


class EventDataEncoding(str, Enum):
    GZIP_BASE64 = "GZIP_BASE64"
    BASE64 = "BASE64"


class EventContext(BaseModel):
    """Pulse event context: identifies the event and how long Pulse keeps it."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    version: Optional[str] = Field(None, description="Event context schema version")
    type: Optional[str] = Field(None, description="Event type, e.g. EP_SHIP_CANCEL")
    name: Optional[str] = Field(None, description="Event context name, usually the topic name")
    business_key_name: Optional[str] = Field(None, alias="businessKeyName")
    business_key_value: Optional[str] = Field(None, alias="businessKeyValue")
    date: Optional[str] = Field(None, description="UTC timestamp, yyyy-MM-ddTHH:mm:ss.SSSZ")
    retention_days: Optional[str] = Field(None, alias="retentionDays")
    filter_map: Dict[str, Any] = Field(default_factory=dict, alias="filterMap")
    meta_data: Dict[str, Any] = Field(default_factory=dict, alias="metaData")


class EventData(BaseModel):
    """Pulse event data: the encoded payload."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    content_type: Optional[str] = Field(None, alias="contentType")
    encoding: Optional[str] = Field(None, description="GZIP_BASE64 or BASE64")
    value: Optional[str] = Field(None, description="Encoded payload")


class Pulse(BaseModel):
    """Pulse event envelope."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    event_context: EventContext = Field(..., alias="eventContext")
    data: Optional[EventData] = Field(None, description="Missing on events that carry no payload")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, payload: str) -> "Pulse":
        return cls.model_validate_json(payload)
