"""Webhook handler for processing billing provider events.

Provides business logic for handling webhook events separate from
HTTP routing concerns. Authentication happens before this layer; the
handler parses, deduplicates and applies one event:

    parse -> already processed? -> claim -> mutation + finalize marker

Only a committed transaction marks the event as processed.
"""

from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from bugid_shared.models import (
    BillingEvent,
    BillingEventType,
    EntitlementTransition,
    EventInProgress,
    MalformedPayload,
    PersistenceError,
    ProcessingResult,
    parse_billing_event,
)
from bugid_shared.utils.logging import get_logger, log_entitlement_change, log_webhook_event

from .entitlement_service import EntitlementService
from .event_markers import ProcessedEventStore

if TYPE_CHECKING:
    from .config import WebhookSettings
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class WebhookOutcome(BaseModel):
    """Result of handling one delivery."""

    event_id: str
    event_type: str | None = None
    processing_result: ProcessingResult
    message: str


class WebhookHandler:
    """Handler for processing billing webhook events.

    Holds no per-request state; safe to share across concurrent requests.
    """

    def __init__(
        self,
        db: "DynamoDBService",
        settings: "WebhookSettings",
        entitlements: EntitlementService | None = None,
        markers: ProcessedEventStore | None = None,
    ) -> None:
        """Initialize webhook handler.

        Args:
            db: DynamoDB service instance
            settings: Webhook settings
            entitlements: Entitlement service (built from db if omitted)
            markers: Marker store (built from db if omitted)
        """
        self._db = db
        self.settings = settings
        self.entitlements = entitlements or EntitlementService(db, settings)
        self.markers = markers or ProcessedEventStore(db, settings)

    def parse(self, payload: Any) -> BillingEvent:
        """Parse and log a payload.

        Raises:
            MalformedPayload: If required fields are missing
        """
        try:
            event = parse_billing_event(payload)
        except MalformedPayload as e:
            reason = (e.details or {}).get("reason", "malformed payload")
            obj = payload.get("event", payload) if isinstance(payload, dict) else {}
            if not isinstance(obj, dict):
                obj = {}
            log_webhook_event(
                logger,
                obj.get("type"),
                obj.get("id"),
                app_user_id=obj.get("app_user_id"),
                result="rejected",
                error=reason,
            )
            raise

        logger.info(
            "Received authenticated billing webhook: event_id=%s type=%s user=%s "
            "product=%s timestamp_ms=%s",
            event.event_id,
            event.event_type,
            event.app_user_id,
            event.product_id,
            event.event_timestamp_ms,
            extra=event.log_context(),
        )
        return event

    def handle(self, payload: Any) -> WebhookOutcome:
        """Process one webhook payload.

        Args:
            payload: Decoded JSON body

        Returns:
            WebhookOutcome describing what was done

        Raises:
            MalformedPayload: If app_user_id or the event id is missing
            EventInProgress: If another delivery holds a live claim on the event
            PersistenceError: If a store read or write fails; the event is
                left re-claimable so the provider's retry applies it
        """
        event = self.parse(payload)
        return self.process_event(event)

    def process_event(self, event: BillingEvent) -> WebhookOutcome:
        """Deduplicate and apply a parsed event."""
        if self.markers.is_processed(event.event_id):
            return self._duplicate(event)

        claim_id = self.markers.claim(event)
        if claim_id is None:
            # Lost the race to a delivery that has since committed
            if self.markers.is_processed(event.event_id):
                return self._duplicate(event)
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                app_user_id=event.app_user_id,
                result="in_progress",
            )
            raise EventInProgress({"event_id": event.event_id})

        mutation = self.entitlements.plan_mutation(event)
        if mutation is None:
            self._log_unmutated_event(event)

        items = [self.markers.complete_action(event, claim_id)]
        if mutation is not None:
            items.insert(0, mutation.action)

        try:
            committed = self._db.transact_write(items)
        except (ClientError, BotoCoreError) as e:
            committed = False
            error = str(e)
        else:
            error = "Transaction cancelled"

        if not committed:
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                app_user_id=event.app_user_id,
                product_id=event.product_id,
                result="error",
                error=error,
            )
            if mutation is not None:
                log_entitlement_change(
                    logger,
                    mutation.transition.value,
                    event.app_user_id,
                    event_type=event.event_type,
                    product_id=event.product_id,
                    error=error,
                )
            self.markers.release(event.event_id, claim_id, error)
            raise PersistenceError(
                {"event_id": event.event_id, "event_type": str(event.event_type)}
            )

        if mutation is None:
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                app_user_id=event.app_user_id,
                result="skipped",
            )
            return WebhookOutcome(
                event_id=event.event_id,
                event_type=event.event_type,
                processing_result=ProcessingResult.SKIPPED,
                message=f"Event type '{event.event_type}' acknowledged without changes",
            )

        log_entitlement_change(
            logger,
            mutation.transition.value,
            event.app_user_id,
            event_type=event.event_type,
            product_id=event.product_id,
            tokens=mutation.tokens,
            subscription_active=mutation.subscription_active,
        )
        log_webhook_event(
            logger,
            event.event_type,
            event.event_id,
            app_user_id=event.app_user_id,
            product_id=event.product_id,
            result="success",
        )
        return WebhookOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            processing_result=ProcessingResult.SUCCESS,
            message="Webhook processed successfully.",
        )

    def _duplicate(self, event: BillingEvent) -> WebhookOutcome:
        logger.info("Event %s already processed. Skipping.", event.event_id)
        log_webhook_event(
            logger,
            event.event_type,
            event.event_id,
            app_user_id=event.app_user_id,
            result="duplicate",
        )
        return WebhookOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            processing_result=ProcessingResult.DUPLICATE,
            message="Event already processed.",
        )

    def _log_unmutated_event(self, event: BillingEvent) -> None:
        if event.transition != EntitlementTransition.NONE:
            return

        known = event.known_type
        if known == BillingEventType.TEST:
            logger.info("TEST event: Auth OK.")
        elif known == BillingEventType.TRANSFER:
            logger.warning(
                "TRANSFER event received for user %s. Manual review needed.",
                event.app_user_id,
                extra=event.log_context(),
            )
        else:
            logger.info(
                "Unhandled event type: %s for user %s. Acknowledging.",
                event.event_type,
                event.app_user_id,
            )
