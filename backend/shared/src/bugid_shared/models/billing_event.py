"""Billing provider webhook payload models.

The provider delivers an event either wrapped as ``{"event": {...}}`` or as
the bare event object. Both shapes are resolved once, in
``parse_billing_event``, into a single ``BillingEvent``.
"""

import math
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .enums import (
    GRANT_EVENT_TYPES,
    REVOKE_EVENT_TYPES,
    BillingEventType,
    EntitlementTransition,
)
from .errors import MalformedPayload


class ProviderEventObject(BaseModel):
    """Event object as sent by the provider (only the fields we read)."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    type: Optional[str] = None
    app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    event_timestamp_ms: Optional[int] = None

    @field_validator("event_timestamp_ms", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Any:
        # Only logged, so an unusable value is dropped rather than rejected
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value)


class WrappedEventPayload(BaseModel):
    """Payload shape ``{"event": {...}, "api_version": ...}``."""

    model_config = ConfigDict(extra="ignore")

    event: ProviderEventObject


class FlatEventPayload(ProviderEventObject):
    """Payload shape where the body is the event object itself."""


ProviderPayload = Union[WrappedEventPayload, FlatEventPayload]


class BillingEvent(BaseModel):
    """Canonical billing event consumed by the webhook pipeline."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Provider event id, the idempotency key")
    event_type: Optional[str] = Field(
        default=None,
        description="Raw provider event type",
        examples=["INITIAL_PURCHASE", "CANCELLATION"],
    )
    app_user_id: str = Field(..., description="User key of the entitlement record")
    product_id: Optional[str] = Field(default=None, examples=["bugid_weekly_299"])
    event_timestamp_ms: Optional[int] = None

    @property
    def known_type(self) -> Optional[BillingEventType]:
        """Recognised event type, or None for anything we do not act on."""
        try:
            return BillingEventType(self.event_type)
        except ValueError:
            return None

    @property
    def transition(self) -> EntitlementTransition:
        """Mutation direction implied by the event type."""
        known = self.known_type
        if known in GRANT_EVENT_TYPES:
            return EntitlementTransition.GRANT
        if known in REVOKE_EVENT_TYPES:
            return EntitlementTransition.REVOKE
        return EntitlementTransition.NONE

    def log_context(self) -> dict[str, Any]:
        """Fields that are safe to attach to log records."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "app_user_id": self.app_user_id,
            "product_id": self.product_id,
            "event_timestamp_ms": self.event_timestamp_ms,
        }


def _read_provider_payload(payload: Any) -> ProviderPayload:
    if not isinstance(payload, dict):
        raise MalformedPayload({"reason": "Payload must be a JSON object"})

    try:
        if isinstance(payload.get("event"), dict):
            return WrappedEventPayload.model_validate(payload)
        return FlatEventPayload.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise MalformedPayload({"reason": f"Invalid fields: {', '.join(fields)}"}) from e


def parse_billing_event(payload: Any) -> BillingEvent:
    """Normalize a provider payload into a BillingEvent.

    Args:
        payload: Decoded JSON body of the webhook request

    Returns:
        The canonical event record

    Raises:
        MalformedPayload: If the body is not an object, or app_user_id or
            the event id is missing
    """
    parsed = _read_provider_payload(payload)
    obj = parsed.event if isinstance(parsed, WrappedEventPayload) else parsed

    if not obj.app_user_id:
        raise MalformedPayload({"reason": "Missing app_user_id"})

    if not obj.id:
        raise MalformedPayload({"reason": "Missing event ID"})

    return BillingEvent(
        event_id=obj.id,
        event_type=obj.type,
        app_user_id=obj.app_user_id,
        product_id=obj.product_id or None,
        event_timestamp_ms=obj.event_timestamp_ms,
    )
