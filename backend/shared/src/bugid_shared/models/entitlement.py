"""Entitlement record and processed-event marker models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import EntitlementState, MarkerStatus


class Entitlement(BaseModel):
    """Per-user token balance and subscription status.

    Stored in the ``entitlements`` table keyed by ``app_user_id``.
    """

    model_config = ConfigDict(strict=True)

    app_user_id: str = Field(..., description="Identity-provider user id")
    token_balance: int = Field(
        default=0,
        ge=0,
        description="Consumable identification credits",
    )
    subscription_active: bool = Field(
        default=False,
        description="True while the user holds a live paid entitlement",
    )
    subscription_product_id: Optional[str] = Field(
        default=None,
        examples=["bugid_weekly_299", "bugid_yearly_6999"],
    )
    last_event_type: Optional[str] = None
    last_grant_at: Optional[datetime] = None
    last_revoke_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def state(self) -> EntitlementState:
        if self.subscription_active:
            return EntitlementState.ENTITLED
        return EntitlementState.UNENTITLED


class ProcessedEventMarker(BaseModel):
    """Idempotency record for one provider event.

    Used for:
    - Idempotency: a ``processed`` marker means the mutation committed
    - Auditing: what was applied to which user
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(..., description="Provider event id")
    status: MarkerStatus
    app_user_id: Optional[str] = None
    event_type: Optional[str] = None
    product_id: Optional[str] = None
    claimed_at: Optional[int] = Field(
        default=None,
        description="Epoch seconds when the current claim was taken",
    )
    processed_at: Optional[datetime] = None
    expires_at: Optional[int] = Field(
        default=None,
        description="Epoch seconds, DynamoDB TTL attribute",
    )
    error_message: Optional[str] = None
