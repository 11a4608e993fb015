"""Internal entitlement endpoints.

- GET  /entitlements/{app_user_id}: read a record for manual reconciliation
- POST /entitlements/{app_user_id}: create the record with starter tokens
  when an account is created (first write wins)

Both require the internal API bearer token, never the provider token.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from bugid_api.dependencies import get_entitlement_service
from bugid_api.security import require_internal_auth
from bugid_shared.models import Entitlement, EntitlementNotFound, EntitlementState, ErrorResponse
from bugid_shared.services.entitlement_service import EntitlementService

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


class EntitlementResponse(BaseModel):
    """Entitlement record as returned by the internal API."""

    app_user_id: str
    token_balance: int
    subscription_active: bool
    state: EntitlementState
    subscription_product_id: str | None = None
    last_event_type: str | None = None
    last_grant_at: datetime | None = None
    last_revoke_at: datetime | None = None

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement) -> "EntitlementResponse":
        return cls(
            app_user_id=entitlement.app_user_id,
            token_balance=entitlement.token_balance,
            subscription_active=entitlement.subscription_active,
            state=entitlement.state,
            subscription_product_id=entitlement.subscription_product_id,
            last_event_type=entitlement.last_event_type,
            last_grant_at=entitlement.last_grant_at,
            last_revoke_at=entitlement.last_revoke_at,
        )


class EnsureEntitlementResponse(BaseModel):
    """Result of the account bootstrap call."""

    created: bool
    entitlement: EntitlementResponse


@router.get(
    "/{app_user_id}",
    summary="Get a user's entitlement record",
    response_model=EntitlementResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_entitlement(
    app_user_id: str,
    _: None = Depends(require_internal_auth),
    service: EntitlementService = Depends(get_entitlement_service),
) -> EntitlementResponse:
    entitlement = await run_in_threadpool(service.get_entitlement, app_user_id)
    if entitlement is None:
        raise EntitlementNotFound({"app_user_id": app_user_id})
    return EntitlementResponse.from_entitlement(entitlement)


@router.post(
    "/{app_user_id}",
    summary="Create a user's entitlement record if absent",
    description="Called at account creation. Grants starter tokens to new users only.",
    response_model=EnsureEntitlementResponse,
    responses={401: {"model": ErrorResponse}},
)
async def ensure_entitlement(
    app_user_id: str,
    _: None = Depends(require_internal_auth),
    service: EntitlementService = Depends(get_entitlement_service),
) -> EnsureEntitlementResponse:
    entitlement, created = await run_in_threadpool(service.ensure_entitlement, app_user_id)
    return EnsureEntitlementResponse(
        created=created,
        entitlement=EntitlementResponse.from_entitlement(entitlement),
    )
