"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for outbound send endpoints
- Response models for API responses

Webhook bodies are provider-driven and semi-structured, so they are read
as plain JSON and classified rather than validated against a model.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SessionMessageRequest(BaseModel):
    """Body for sending a free-form session message."""
    text: str = Field(
        ...,
        min_length=1,
        max_length=4096,
        description="Message text content"
    )


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for an acknowledged webhook event."""
    success: bool = Field(default=True, description="Event was ledgered and handled")
    event_id: str = Field(
        ...,
        serialization_alias="eventId",
        description="Ledger id of the recorded event"
    )


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    detail: Optional[Any] = Field(None, description="Collaborator error detail, when available")


class MessageView(BaseModel):
    """
    One message of a conversation thread as returned by the API.
    Timestamps are epoch milliseconds; formattedDate is ISO-8601 UTC.
    """
    id: str = Field(..., description="Message identifier")
    text: Optional[str] = Field(None, description="Message content")
    direction: str = Field(..., description="incoming or outgoing")
    status: str = Field(..., description="Delivery status")
    timestamp: int = Field(..., description="Message time in epoch milliseconds")
    formatted_date: str = Field(
        ...,
        serialization_alias="formattedDate",
        description="Message time as ISO-8601"
    )
    counterparty_id: Optional[str] = Field(
        None,
        serialization_alias="counterpartyId",
        description="Remote party address"
    )

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, message: Any) -> "MessageView":
        return cls(
            id=message.id,
            text=message.text,
            direction=message.direction,
            status=message.status,
            timestamp=message.timestamp,
            formatted_date=format_ms(message.timestamp),
            counterparty_id=message.counterparty_id,
        )


class OutboundMessageResponse(BaseModel):
    """Response model for a successful outbound send."""
    status: str = Field(..., description="Send status")
    message: MessageView


class WebhookEventView(BaseModel):
    """Ledger entry as returned by the inspection endpoint."""
    id: str
    event_type: Optional[str] = Field(None, serialization_alias="eventType")
    received_at: datetime = Field(..., serialization_alias="receivedAt")
    processed: bool
    raw_event: Optional[Any] = Field(None, serialization_alias="rawEvent")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    index_ready: Optional[bool] = Field(None, description="Composite thread index is built")


def format_ms(timestamp_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision and Z suffix."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
