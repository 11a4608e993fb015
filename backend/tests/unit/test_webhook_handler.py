"""Unit tests for WebhookHandler.

Tests verify end-to-end processing against mocked tables:
- Grants and revokes are applied once per event id
- Redelivered events are acknowledged as duplicates
- Persistence failures leave the event re-claimable
"""

import time
from typing import Any
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from bugid_shared.models import (
    EventInProgress,
    MalformedPayload,
    MarkerStatus,
    PersistenceError,
    ProcessingResult,
    parse_billing_event,
)
from bugid_shared.services.config import WebhookSettings
from bugid_shared.services.webhook_handler import WebhookHandler
from conftest import TEST_APP_USER_ID, YEARLY_PRODUCT, make_event, wrap_event


def _entitlement(handler: WebhookHandler) -> Any:
    return handler.entitlements.get_entitlement(TEST_APP_USER_ID)


def _seed(entitlements_table: Any, token_balance: int, active: bool) -> None:
    entitlements_table.put_item(
        Item={
            "app_user_id": TEST_APP_USER_ID,
            "token_balance": token_balance,
            "subscription_active": active,
        }
    )


def _transaction_error() -> ClientError:
    return ClientError(
        {"Error": {"Code": "InternalServerError", "Message": "Injected failure"}},
        "TransactWriteItems",
    )


class TestGrantEvents:
    """INITIAL_PURCHASE and RENEWAL add tokens."""

    def test_initial_purchase_weekly(self, webhook_handler: WebhookHandler) -> None:
        outcome = webhook_handler.handle(wrap_event(make_event()))

        assert outcome.processing_result == ProcessingResult.SUCCESS
        assert outcome.event_id == "evt-0001"
        assert outcome.event_type == "INITIAL_PURCHASE"
        entitlement = _entitlement(webhook_handler)
        assert entitlement.token_balance == 200
        assert entitlement.subscription_active is True
        assert webhook_handler.markers.is_processed("evt-0001")

    def test_renewal_adds_to_balance(
        self, webhook_handler: WebhookHandler, entitlements_table: Any
    ) -> None:
        _seed(entitlements_table, 50, True)

        webhook_handler.handle(
            make_event(event_id="evt-renew", event_type="RENEWAL", product_id=YEARLY_PRODUCT)
        )

        assert _entitlement(webhook_handler).token_balance == 4050

    def test_unknown_product_entitles_with_zero_tokens(
        self, webhook_handler: WebhookHandler
    ) -> None:
        outcome = webhook_handler.handle(make_event(product_id="bugid_lifetime"))

        assert outcome.processing_result == ProcessingResult.SUCCESS
        entitlement = _entitlement(webhook_handler)
        assert entitlement.token_balance == 0
        assert entitlement.subscription_active is True

    def test_unknown_product_skipped_when_policy_disabled(self, db: Any) -> None:
        handler = WebhookHandler(db, WebhookSettings(entitle_unknown_products=False))

        outcome = handler.handle(make_event(product_id="bugid_lifetime"))

        assert outcome.processing_result == ProcessingResult.SKIPPED
        assert _entitlement(handler) is None
        assert handler.markers.is_processed("evt-0001")


class TestRevokeEvents:
    """CANCELLATION and EXPIRATION reset the balance."""

    @pytest.mark.parametrize("event_type", ["CANCELLATION", "EXPIRATION"])
    def test_revoke(
        self, webhook_handler: WebhookHandler, entitlements_table: Any, event_type: str
    ) -> None:
        _seed(entitlements_table, 4000, True)

        outcome = webhook_handler.handle(wrap_event(make_event(event_type=event_type)))

        assert outcome.processing_result == ProcessingResult.SUCCESS
        entitlement = _entitlement(webhook_handler)
        assert entitlement.token_balance == 0
        assert entitlement.subscription_active is False


class TestNoOpEvents:
    """TEST, TRANSFER and unrecognized types change nothing."""

    @pytest.mark.parametrize("event_type", ["TEST", "TRANSFER", "SUBSCRIPTION_PAUSED"])
    def test_record_unchanged(
        self, webhook_handler: WebhookHandler, entitlements_table: Any, event_type: str
    ) -> None:
        _seed(entitlements_table, 7, True)

        outcome = webhook_handler.handle(make_event(event_type=event_type))

        assert outcome.processing_result == ProcessingResult.SKIPPED
        assert event_type in outcome.message
        entitlement = _entitlement(webhook_handler)
        assert entitlement.token_balance == 7
        assert entitlement.subscription_active is True
        assert webhook_handler.markers.is_processed("evt-0001")

    def test_transfer_is_flagged_for_review(
        self, webhook_handler: WebhookHandler, caplog: pytest.LogCaptureFixture
    ) -> None:
        webhook_handler.handle(make_event(event_type="TRANSFER"))

        assert "Manual review needed" in caplog.text


class TestIdempotency:
    """Replayed events are applied at most once."""

    def test_replay_does_not_double_grant(self, webhook_handler: WebhookHandler) -> None:
        payload = wrap_event(make_event())
        webhook_handler.handle(payload)

        for _ in range(3):
            outcome = webhook_handler.handle(payload)
            assert outcome.processing_result == ProcessingResult.DUPLICATE
            assert outcome.message == "Event already processed."

        assert _entitlement(webhook_handler).token_balance == 200

    def test_replayed_no_op_is_duplicate(self, webhook_handler: WebhookHandler) -> None:
        webhook_handler.handle(make_event(event_type="TEST"))

        outcome = webhook_handler.handle(make_event(event_type="TEST"))

        assert outcome.processing_result == ProcessingResult.DUPLICATE

    def test_in_flight_claim_is_retryable(self, webhook_handler: WebhookHandler) -> None:
        """A live claim from a delivery that never finished is not acknowledged."""
        event = parse_billing_event(make_event())
        assert webhook_handler.markers.claim(event) is not None

        with pytest.raises(EventInProgress) as exc_info:
            webhook_handler.handle(make_event())

        assert exc_info.value.details == {"event_id": "evt-0001"}
        assert _entitlement(webhook_handler) is None
        marker = webhook_handler.markers.get_marker("evt-0001")
        assert marker is not None
        assert marker.status == MarkerStatus.PROCESSING

    def test_abandoned_claim_applies_after_lease(
        self, webhook_handler: WebhookHandler, markers_table: Any
    ) -> None:
        """Once the lease runs out the provider retry takes the event over."""
        markers_table.put_item(
            Item={
                "event_id": "evt-0001",
                "status": "processing",
                "claim_id": "timed-out-delivery",
                "claimed_at": int(time.time()) - 3600,
            }
        )

        outcome = webhook_handler.handle(make_event())

        assert outcome.processing_result == ProcessingResult.SUCCESS
        assert _entitlement(webhook_handler).token_balance == 200
        assert webhook_handler.markers.is_processed("evt-0001")

    def test_claim_lost_to_committed_delivery_is_duplicate(
        self, webhook_handler: WebhookHandler
    ) -> None:
        """A refused claim on an event that committed meanwhile is a duplicate."""
        webhook_handler.handle(make_event())
        event = parse_billing_event(make_event())

        with patch.object(webhook_handler.markers, "is_processed", side_effect=[False, True]):
            outcome = webhook_handler.process_event(event)

        assert outcome.processing_result == ProcessingResult.DUPLICATE
        assert _entitlement(webhook_handler).token_balance == 200

    def test_distinct_events_each_apply(self, webhook_handler: WebhookHandler) -> None:
        webhook_handler.handle(make_event(event_id="evt-a"))
        webhook_handler.handle(make_event(event_id="evt-b", event_type="RENEWAL"))

        assert _entitlement(webhook_handler).token_balance == 400


class TestPersistenceFailure:
    """A failed write is reported and leaves the event retryable."""

    def test_transaction_error_raises_and_releases_claim(
        self, webhook_handler: WebhookHandler
    ) -> None:
        with (
            patch.object(
                webhook_handler._db, "transact_write", side_effect=_transaction_error()
            ),
            pytest.raises(PersistenceError) as exc_info,
        ):
            webhook_handler.handle(make_event())

        assert exc_info.value.details == {"event_id": "evt-0001", "event_type": "INITIAL_PURCHASE"}
        marker = webhook_handler.markers.get_marker("evt-0001")
        assert marker is not None
        assert marker.status == MarkerStatus.FAILED
        assert not webhook_handler.markers.is_processed("evt-0001")
        assert _entitlement(webhook_handler) is None

    def test_cancelled_transaction_raises(self, webhook_handler: WebhookHandler) -> None:
        with (
            patch.object(webhook_handler._db, "transact_write", return_value=False),
            pytest.raises(PersistenceError),
        ):
            webhook_handler.handle(make_event())

        assert not webhook_handler.markers.is_processed("evt-0001")

    def test_retry_after_failure_applies_once(self, webhook_handler: WebhookHandler) -> None:
        with (
            patch.object(
                webhook_handler._db, "transact_write", side_effect=_transaction_error()
            ),
            pytest.raises(PersistenceError),
        ):
            webhook_handler.handle(make_event())

        outcome = webhook_handler.handle(make_event())

        assert outcome.processing_result == ProcessingResult.SUCCESS
        assert _entitlement(webhook_handler).token_balance == 200
        assert webhook_handler.markers.is_processed("evt-0001")


class TestMalformedPayload:
    """Malformed payloads are rejected before any write."""

    def test_missing_app_user_id_writes_nothing(
        self, webhook_handler: WebhookHandler, markers_table: Any
    ) -> None:
        with pytest.raises(MalformedPayload):
            webhook_handler.handle(make_event(app_user_id=None))

        assert markers_table.scan()["Items"] == []

    def test_missing_event_id_writes_nothing(
        self, webhook_handler: WebhookHandler, entitlements_table: Any
    ) -> None:
        with pytest.raises(MalformedPayload):
            webhook_handler.handle(wrap_event(make_event(event_id=None)))

        assert entitlements_table.scan()["Items"] == []
