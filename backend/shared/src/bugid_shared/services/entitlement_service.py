"""Entitlement state machine for subscription lifecycle events.

Grants move a user to ENTITLED and add the product's tokens; revokes move
the user to UNENTITLED and reset the balance to exactly zero. Every
mutation is one UpdateItem on the user's record that touches only the
named attributes, so unrelated fields written by other collaborators
survive.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any, NamedTuple

from botocore.exceptions import BotoCoreError, ClientError

from bugid_shared.models import (
    BillingEvent,
    Entitlement,
    EntitlementTransition,
    PersistenceError,
)
from bugid_shared.utils.logging import get_logger, log_entitlement_change

if TYPE_CHECKING:
    from .config import WebhookSettings
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class EntitlementMutation(NamedTuple):
    """A planned grant or revoke, ready to join a transaction."""

    transition: EntitlementTransition
    action: dict[str, Any]
    tokens: int
    subscription_active: bool


class EntitlementService:
    """Service for reading and mutating entitlement records."""

    ENTITLEMENTS_TABLE = "entitlements"

    def __init__(self, db: "DynamoDBService", settings: "WebhookSettings") -> None:
        """Initialize entitlement service.

        Args:
            db: DynamoDB service instance
            settings: Provides the product-to-token table and grant policy
        """
        self.db = db
        self.settings = settings

    def tokens_for_product(self, product_id: str | None, app_user_id: str) -> int:
        """Look up how many tokens a product grants.

        Unknown products grant 0 and are logged for follow-up.
        """
        tokens = self.settings.product_token_grants.get(product_id or "")
        if tokens is None:
            logger.warning(
                'Unknown product ID "%s" for token grant for user %s. Granting 0 tokens.',
                product_id,
                app_user_id,
            )
            return 0
        return tokens

    def plan_mutation(self, event: BillingEvent) -> EntitlementMutation | None:
        """Decide the mutation for an event.

        Args:
            event: Parsed billing event

        Returns:
            The mutation to apply, or None when the event leaves the
            record unchanged.
        """
        transition = event.transition

        if transition == EntitlementTransition.GRANT:
            tokens = self.tokens_for_product(event.product_id, event.app_user_id)
            known_product = (event.product_id or "") in self.settings.product_token_grants
            if not known_product and not self.settings.entitle_unknown_products:
                logger.warning(
                    "Not entitling user %s for unknown product %s (%s)",
                    event.app_user_id,
                    event.product_id,
                    event.event_type,
                )
                return None
            return EntitlementMutation(
                transition=transition,
                action=self.grant_action(event, tokens),
                tokens=tokens,
                subscription_active=True,
            )

        if transition == EntitlementTransition.REVOKE:
            return EntitlementMutation(
                transition=transition,
                action=self.revoke_action(event),
                tokens=0,
                subscription_active=False,
            )

        return None

    def grant_action(self, event: BillingEvent, tokens: int) -> dict[str, Any]:
        """Transaction entry: add tokens and mark the subscription active."""
        now = dt.datetime.now(dt.UTC).isoformat()
        return self.db.update_action(
            self.ENTITLEMENTS_TABLE,
            {"app_user_id": event.app_user_id},
            "SET subscription_active = :active, subscription_product_id = :product_id, "
            "last_event_type = :event_type, last_grant_at = :now, updated_at = :now, "
            "created_at = if_not_exists(created_at, :now) "
            "ADD token_balance :tokens",
            {
                ":active": True,
                ":product_id": event.product_id,
                ":event_type": event.event_type,
                ":now": now,
                ":tokens": tokens,
            },
        )

    def revoke_action(self, event: BillingEvent) -> dict[str, Any]:
        """Transaction entry: reset tokens to zero and deactivate."""
        now = dt.datetime.now(dt.UTC).isoformat()
        return self.db.update_action(
            self.ENTITLEMENTS_TABLE,
            {"app_user_id": event.app_user_id},
            "SET token_balance = :zero, subscription_active = :inactive, "
            "last_event_type = :event_type, last_revoke_at = :now, updated_at = :now, "
            "created_at = if_not_exists(created_at, :now)",
            {
                ":zero": 0,
                ":inactive": False,
                ":event_type": event.event_type,
                ":now": now,
            },
        )

    def get_entitlement(self, app_user_id: str) -> Entitlement | None:
        """Read a user's entitlement record.

        Raises:
            PersistenceError: If the read fails
        """
        try:
            item = self.db.get_item(
                self.ENTITLEMENTS_TABLE, {"app_user_id": app_user_id}, consistent_read=True
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to read entitlement for user %s: %s", app_user_id, e)
            raise PersistenceError({"app_user_id": app_user_id}) from e

        if item is None:
            return None
        return self._item_to_entitlement(item)

    def ensure_entitlement(self, app_user_id: str) -> tuple[Entitlement, bool]:
        """Create a record with starter tokens unless one already exists.

        First write wins: an existing record, including one created by a
        billing event, is returned unchanged.

        Args:
            app_user_id: Identity-provider user id

        Returns:
            Tuple of (entitlement, created)

        Raises:
            PersistenceError: If the store write or read fails
        """
        now = dt.datetime.now(dt.UTC)
        item: dict[str, Any] = {
            "app_user_id": app_user_id,
            "token_balance": self.settings.starter_tokens,
            "subscription_active": False,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }

        try:
            created = self.db.put_item(
                self.ENTITLEMENTS_TABLE,
                item,
                condition_expression="attribute_not_exists(app_user_id)",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to create entitlement for user %s: %s", app_user_id, e)
            raise PersistenceError({"app_user_id": app_user_id}) from e

        if created:
            log_entitlement_change(
                logger,
                "bootstrap",
                app_user_id,
                tokens=self.settings.starter_tokens,
                subscription_active=False,
            )
            return self._item_to_entitlement(item), True

        existing = self.get_entitlement(app_user_id)
        if existing is None:
            # Condition failed yet the record is gone; nothing deletes records
            raise PersistenceError({"app_user_id": app_user_id})
        return existing, False

    def _item_to_entitlement(self, item: dict[str, Any]) -> Entitlement:
        """Convert a DynamoDB item (Decimals, ISO strings) to an Entitlement."""

        def _ts(name: str) -> dt.datetime | None:
            value = item.get(name)
            return dt.datetime.fromisoformat(value) if value else None

        return Entitlement(
            app_user_id=item["app_user_id"],
            token_balance=int(item.get("token_balance", 0)),
            subscription_active=bool(item.get("subscription_active", False)),
            subscription_product_id=item.get("subscription_product_id"),
            last_event_type=item.get("last_event_type"),
            last_grant_at=_ts("last_grant_at"),
            last_revoke_at=_ts("last_revoke_at"),
            created_at=_ts("created_at"),
            updated_at=_ts("updated_at"),
        )
