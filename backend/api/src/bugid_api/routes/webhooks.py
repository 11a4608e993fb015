"""Webhook endpoints for external service integrations.

Provides endpoints for:
- Billing provider subscription events (INITIAL_PURCHASE, RENEWAL,
  CANCELLATION, EXPIRATION, TEST, TRANSFER, ...)

These endpoints do NOT use user authentication; the provider sends a
shared bearer token configured in its dashboard.
"""

import json

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from bugid_api.dependencies import get_webhook_handler
from bugid_api.security import require_webhook_auth
from bugid_shared.models.errors import ErrorResponse, MalformedPayload
from bugid_shared.services.webhook_handler import WebhookHandler
from bugid_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


# === Response Models ===


class WebhookResponse(BaseModel):
    """Standard webhook response."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: str  # "success", "duplicate", "skipped"
    message: str | None = None


# === Webhook Endpoint ===


@router.post(
    "/webhooks/revenuecat",
    summary="Receive billing provider subscription events",
    description="""
Endpoint for billing provider webhook events. Handles:
- INITIAL_PURCHASE, RENEWAL: grant product tokens and activate the subscription
- CANCELLATION, EXPIRATION: deactivate the subscription and reset tokens to 0
- TEST, TRANSFER and any other type: acknowledged without changes

**Authentication**: `Authorization: Bearer <token>`.

**Idempotent**: Duplicate events (same event id) return 200 with 'duplicate' result.
""",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event processed, duplicate or acknowledged", "model": WebhookResponse},
        400: {"description": "Missing app_user_id or event id", "model": ErrorResponse},
        401: {"description": "Missing, malformed or invalid bearer token", "model": ErrorResponse},
        409: {"description": "Event is being applied by another delivery", "model": ErrorResponse},
        500: {"description": "Secret not configured or store failure", "model": ErrorResponse},
    },
)
async def handle_billing_webhook(
    request: Request,
    _: None = Depends(require_webhook_auth),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    """Handle incoming billing provider webhook events.

    The bearer token is verified by require_webhook_auth before the handler
    is built; the handler then parses, deduplicates and applies the event.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Webhook body is not valid JSON (%d bytes)", len(body))
        raise MalformedPayload({"reason": "Body is not valid JSON"})

    # boto3 calls block; keep them off the event loop
    outcome = await run_in_threadpool(handler.handle, payload)

    return WebhookResponse(
        received=True,
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        processing_result=outcome.processing_result.value,
        message=outcome.message,
    )
