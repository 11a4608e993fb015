"""Processed-event markers: the idempotency guard for billing webhooks.

The provider delivers at least once, so every event id is claimed before
any entitlement mutation:

  1. PutItem ... ConditionExpression attribute_not_exists(event_id)
       succeeded : this request owns the event, status = processing
       failed    : a marker exists, try step 2
  2. UpdateItem ... WHERE status = failed OR (status = processing AND stale)
       succeeded : previous attempt failed or died; re-claimed
       failed    : processed (duplicate), or another request holds a live
                   claim (reported as retryable)

The claim is finalized to ``processed`` in the same transaction as the
entitlement mutation (see complete_action), so a processed marker always
implies a committed mutation. On a persistence failure the claim is
released as ``failed`` and the provider retry can take it over.
"""

import datetime as dt
import logging
import uuid
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from bugid_shared.models import (
    BillingEvent,
    MarkerStatus,
    PersistenceError,
    ProcessedEventMarker,
)

if TYPE_CHECKING:
    from .config import WebhookSettings
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


class ProcessedEventStore:
    """Claims, finalizes and releases processed-event markers."""

    MARKERS_TABLE = "processed-billing-events"

    def __init__(self, db: "DynamoDBService", settings: "WebhookSettings") -> None:
        """Initialize marker store.

        Args:
            db: DynamoDB service instance
            settings: Provides claim lease and retention window
        """
        self.db = db
        self.settings = settings

    def _expires_at(self, now: dt.datetime) -> int | None:
        days = self.settings.processed_event_retention_days
        if days <= 0:
            return None
        return int((now + dt.timedelta(days=days)).timestamp())

    def get_marker(self, event_id: str) -> ProcessedEventMarker | None:
        """Fetch the marker for an event id.

        Raises:
            PersistenceError: If the read fails
        """
        try:
            item = self.db.get_item(
                self.MARKERS_TABLE, {"event_id": event_id}, consistent_read=True
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to read marker for event %s: %s", event_id, e)
            raise PersistenceError({"event_id": event_id}) from e

        if item is None:
            return None
        return self._item_to_marker(item)

    def is_processed(self, event_id: str) -> bool:
        """True if the event was already applied."""
        marker = self.get_marker(event_id)
        return marker is not None and marker.status == MarkerStatus.PROCESSED

    def claim(self, event: BillingEvent) -> str | None:
        """Atomically claim an event for processing.

        Args:
            event: Parsed billing event

        Returns:
            A claim id to pass to complete_action/release, or None when
            the event is processed or being processed elsewhere.

        Raises:
            PersistenceError: If the store rejects the write for a reason
                other than the claim condition
        """
        claim_id = uuid.uuid4().hex
        now = dt.datetime.now(dt.UTC)
        claimed_at = int(now.timestamp())

        item: dict[str, Any] = {
            "event_id": event.event_id,
            "status": MarkerStatus.PROCESSING.value,
            "claim_id": claim_id,
            "claimed_at": claimed_at,
            "app_user_id": event.app_user_id,
            "event_type": event.event_type,
            "product_id": event.product_id,
        }
        expires_at = self._expires_at(now)
        if expires_at is not None:
            item["expires_at"] = expires_at

        try:
            if self.db.put_item(
                self.MARKERS_TABLE,
                item,
                condition_expression="attribute_not_exists(event_id)",
            ):
                return claim_id

            reclaimed = self.db.update_item(
                self.MARKERS_TABLE,
                {"event_id": event.event_id},
                "SET #status = :processing, claim_id = :claim_id, claimed_at = :now "
                "REMOVE error_message",
                {
                    ":processing": MarkerStatus.PROCESSING.value,
                    ":failed": MarkerStatus.FAILED.value,
                    ":claim_id": claim_id,
                    ":now": claimed_at,
                    ":stale_before": claimed_at - self.settings.event_claim_lease_seconds,
                },
                {"#status": "status"},  # status is reserved word
                condition_expression=(
                    "#status = :failed OR "
                    "(#status = :processing AND claimed_at < :stale_before)"
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to claim event %s: %s", event.event_id, e)
            raise PersistenceError({"event_id": event.event_id}) from e

        if reclaimed is None:
            return None

        logger.info("Re-claimed event %s after failed or stale attempt", event.event_id)
        return claim_id

    def complete_action(self, event: BillingEvent, claim_id: str) -> dict[str, Any]:
        """Transaction entry finalizing a claimed marker as processed.

        The condition fails the whole transaction if the claim was taken
        over in the meantime.
        """
        return self.db.update_action(
            self.MARKERS_TABLE,
            {"event_id": event.event_id},
            "SET #status = :processed, processed_at = :now, "
            "app_user_id = :app_user_id, event_type = :event_type, product_id = :product_id",
            {
                ":processed": MarkerStatus.PROCESSED.value,
                ":processing": MarkerStatus.PROCESSING.value,
                ":claim_id": claim_id,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
                ":app_user_id": event.app_user_id,
                ":event_type": event.event_type,
                ":product_id": event.product_id,
            },
            {"#status": "status"},
            condition_expression="#status = :processing AND claim_id = :claim_id",
        )

    def release(self, event_id: str, claim_id: str, error_message: str) -> None:
        """Mark a claim as failed so a later delivery can re-claim it.

        A failure here is logged, not raised: the caller is already
        reporting a persistence error and the claim lease covers the
        leftover ``processing`` marker.
        """
        try:
            released = self.db.update_item(
                self.MARKERS_TABLE,
                {"event_id": event_id},
                "SET #status = :failed, error_message = :error",
                {
                    ":failed": MarkerStatus.FAILED.value,
                    ":processing": MarkerStatus.PROCESSING.value,
                    ":claim_id": claim_id,
                    ":error": error_message,
                },
                {"#status": "status"},
                condition_expression="#status = :processing AND claim_id = :claim_id",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to release claim on event %s: %s", event_id, e)
            return

        if released is None:
            logger.warning("Claim on event %s no longer held, not released", event_id)

    def _item_to_marker(self, item: dict[str, Any]) -> ProcessedEventMarker:
        processed_at = item.get("processed_at")
        return ProcessedEventMarker(
            event_id=item["event_id"],
            # Markers without a status predate claims and were written after the mutation
            status=MarkerStatus(item.get("status", MarkerStatus.PROCESSED.value)),
            app_user_id=item.get("app_user_id"),
            event_type=item.get("event_type"),
            product_id=item.get("product_id"),
            claimed_at=int(item["claimed_at"]) if item.get("claimed_at") is not None else None,
            processed_at=dt.datetime.fromisoformat(processed_at) if processed_at else None,
            expires_at=int(item["expires_at"]) if item.get("expires_at") is not None else None,
            error_message=item.get("error_message"),
        )
