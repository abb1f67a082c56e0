"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the provider API and the UI API
- Response models, including the outbound message envelope
- Status callback (webhook event) models
- Normalization helpers for fields that arrive in more than one shape
"""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer


MOCK_CARRIER = "SmsSink Mock Carrier"
MOCK_LINE_TYPE = "Wireless"


# =============================================================================
# Shared Models
# =============================================================================

class PhoneNumber(BaseModel):
    """A phone number as it appears in provider payloads."""
    phone_number: str = ""
    carrier: str = ""
    line_type: str = ""


class Recipient(PhoneNumber):
    """A recipient entry with its per-recipient delivery status."""
    status: Optional[str] = None


# =============================================================================
# Normalization
# =============================================================================

# Outbound 'to' is "+1555..." or ["+1555..."]; inbound payloads may also
# carry [{"phone_number": "+1555..."}]
OutboundRecipientField = Union[str, List[str], None]
RecipientField = Union[str, List[Union[str, PhoneNumber]], None]
SenderField = Union[str, PhoneNumber, None]


def phone_number_of(value: SenderField) -> str:
    """Resolve a bare number or a phone-number object to a string."""
    if value is None:
        return ""
    if isinstance(value, PhoneNumber):
        return value.phone_number
    return value


def normalize_to(value: RecipientField) -> str:
    """
    Resolve the 'to' field to a single recipient number.

    The first element is used when a list is given; an empty string is
    returned when neither shape yields a value.
    """
    if isinstance(value, list):
        return phone_number_of(value[0]) if value else ""
    return phone_number_of(value)


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageRequest(BaseModel):
    """
    Body of POST /v2/messages.

    Only JSON types are checked here; business rules (required fields,
    text-or-media) are applied by the validator so that a missing field is
    reported as 422 while a wrongly typed one is a malformed body (400).
    """
    from_number: Optional[str] = Field(None, alias="from")
    to: OutboundRecipientField = None
    text: Optional[str] = None
    media_urls: Optional[List[str]] = None
    messaging_profile_id: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_failover_url: Optional[str] = None
    use_profile_webhooks: Optional[bool] = None

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "from": "+15550001111",
                    "to": "+15552223333",
                    "text": "Hello",
                    "messaging_profile_id": "profile-123",
                    "webhook_url": "http://localhost:9000/status",
                }
            ]
        },
    )

    def recipient(self) -> str:
        return normalize_to(self.to)


class FlatInboundRequest(BaseModel):
    """Inbound message with fields at the top level (simple format)."""
    from_number: SenderField = Field(None, alias="from")
    to: RecipientField = None
    text: Optional[str] = None
    media_urls: Optional[List[str]] = None
    messaging_profile_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def sender(self) -> str:
        return phone_number_of(self.from_number)

    def recipient(self) -> str:
        return normalize_to(self.to)


class InboundPayload(FlatInboundRequest):
    """Inner payload of an enveloped inbound event."""
    id: Optional[str] = None
    direction: Optional[str] = None


class InboundEventData(BaseModel):
    event_type: Optional[str] = None
    payload: InboundPayload

    model_config = ConfigDict(extra="ignore")


class InboundEnvelope(BaseModel):
    """Provider-style event envelope: {"data": {"event_type", "payload": {...}}}."""
    data: InboundEventData

    model_config = ConfigDict(extra="ignore")


class CredentialUpdate(BaseModel):
    api_key: Optional[str] = None


class SettingsUpdate(BaseModel):
    debug_mode: Optional[bool] = None


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorDetail(BaseModel):
    code: str
    title: str
    detail: str


class ErrorResponse(BaseModel):
    """Provider error envelope: {"errors": [{code, title, detail}]}."""
    errors: List[ErrorDetail]


class OutboundMessage(BaseModel):
    """The 'data' object returned by POST /v2/messages."""
    id: str
    record_type: str = "message"
    direction: str = "outbound"
    messaging_profile_id: str
    from_number: PhoneNumber = Field(..., alias="from")
    to: List[Recipient]
    text: str
    media: List[str] = Field(default_factory=list)
    type: str
    valid_until: str
    webhook_url: str = ""
    webhook_failover_url: str = ""
    use_profile_webhooks: Optional[bool] = None
    encoding: str = "GSM-7"
    parts: int = 1
    tags: List[str] = Field(default_factory=list)
    cost: Optional[Any] = None
    received_at: Optional[str] = None
    sent_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _omit_unset_profile_flag(self, handler):
        # use_profile_webhooks is echoed only when the client sent it
        data = handler(self)
        if self.use_profile_webhooks is None:
            data.pop("use_profile_webhooks", None)
        return data


class MessageEnvelope(BaseModel):
    data: OutboundMessage


class InboundResponse(BaseModel):
    status: str = "received"


class StatusResponse(BaseModel):
    status: str = "success"


class MessageRecordResponse(BaseModel):
    """A stored message as listed by GET /api/messages."""
    id: str
    created_at: str
    sender: str
    recipient: str
    content: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list)
    messaging_profile_id: Optional[str] = None
    direction: str


class SimulatedInboundResponse(BaseModel):
    id: str
    from_number: str = Field(..., alias="from")
    to: str
    text: str
    media_urls: List[str] = Field(default_factory=list)
    direction: str = "inbound"
    created_at: str

    model_config = ConfigDict(populate_by_name=True)


class CredentialResponse(BaseModel):
    api_key: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class LogEntryResponse(BaseModel):
    id: int
    created_at: str
    level: str
    category: str
    message: str
    details: Optional[Any] = None


class SettingsResponse(BaseModel):
    debug_mode: bool


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# Status Callback Models
# =============================================================================

class CallbackPayload(BaseModel):
    """Message snapshot carried by a status callback event."""
    id: str
    record_type: str = "message"
    direction: str = "outbound"
    messaging_profile_id: str
    from_number: PhoneNumber = Field(..., alias="from")
    to: List[Recipient]
    text: str
    media: List[str] = Field(default_factory=list)
    type: str
    status: str
    sent_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class CallbackEventData(BaseModel):
    event_type: str
    id: str
    occurred_at: str
    record_type: str = "event"
    payload: CallbackPayload


class CallbackEvent(BaseModel):
    """Body POSTed to webhook_url: {"data": {...}}."""
    data: CallbackEventData
