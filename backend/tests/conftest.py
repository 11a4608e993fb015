"""Pytest configuration and fixtures for the Bug ID entitlements backend.

This module provides reusable fixtures for testing:
- DynamoDB and SSM mocking with moto
- Settings and service fixtures wired to the mocked tables
- Billing provider payload builders
"""

import os
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-bugid")

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

TEST_WEBHOOK_TOKEN = "rc_test_bearer_token_abc123"
TEST_INTERNAL_TOKEN = "internal_test_token_xyz789"
TEST_APP_USER_ID = "firebase-uid-TEST123"
WEEKLY_PRODUCT = "bugid_weekly_299"
YEARLY_PRODUCT = "bugid_yearly_6999"

ENTITLEMENTS_TABLE = "test-bugid-entitlements"
MARKERS_TABLE = "test-bugid-processed-billing-events"


# === Service Singletons ===


@pytest.fixture(autouse=True)
def reset_service_singletons(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Reset cached services and pin test secrets for each test.

    Tests that need a missing secret delete the variable themselves.
    """
    from bugid_api.dependencies import reset_services

    monkeypatch.setenv("REVENUECAT_BEARER_TOKEN", TEST_WEBHOOK_TOKEN)
    monkeypatch.setenv("INTERNAL_API_TOKEN", TEST_INTERNAL_TOKEN)
    monkeypatch.setenv("DYNAMODB_TABLE_PREFIX", "test-bugid")

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def mock_dynamodb_tables(aws_credentials: None) -> Generator[None, None, None]:
    """Create the entitlement and marker tables inside mock_aws."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")

        client.create_table(
            TableName=ENTITLEMENTS_TABLE,
            KeySchema=[{"AttributeName": "app_user_id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "app_user_id", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        client.create_table(
            TableName=MARKERS_TABLE,
            KeySchema=[{"AttributeName": "event_id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "event_id", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        client.update_time_to_live(
            TableName=MARKERS_TABLE,
            TimeToLiveSpecification={"AttributeName": "expires_at", "Enabled": True},
        )

        yield


@pytest.fixture
def entitlements_table(mock_dynamodb_tables: None) -> Any:
    """Boto3 Table resource for direct entitlement reads/writes."""
    return boto3.resource("dynamodb", region_name="eu-west-1").Table(ENTITLEMENTS_TABLE)


@pytest.fixture
def markers_table(mock_dynamodb_tables: None) -> Any:
    """Boto3 Table resource for direct marker reads/writes."""
    return boto3.resource("dynamodb", region_name="eu-west-1").Table(MARKERS_TABLE)


@pytest.fixture
def settings() -> Any:
    """Default settings (reference product table, 90 day retention)."""
    from bugid_shared.services.config import WebhookSettings

    return WebhookSettings()


@pytest.fixture
def db(mock_dynamodb_tables: None) -> Any:
    """DynamoDBService created inside the mock_aws context."""
    from bugid_shared.services.dynamodb import DynamoDBService

    return DynamoDBService()


@pytest.fixture
def webhook_handler(db: Any, settings: Any) -> Any:
    """WebhookHandler wired to the mocked tables."""
    from bugid_shared.services.webhook_handler import WebhookHandler

    return WebhookHandler(db=db, settings=settings)


# === Payload Builders ===


def make_event(
    event_id: str | None = "evt-0001",
    event_type: str | None = "INITIAL_PURCHASE",
    app_user_id: str | None = TEST_APP_USER_ID,
    product_id: str | None = WEEKLY_PRODUCT,
    event_timestamp_ms: int | None = 1760000000000,
) -> dict[str, Any]:
    """Build a provider event object, omitting fields passed as None."""
    event = {
        "id": event_id,
        "type": event_type,
        "app_user_id": app_user_id,
        "product_id": product_id,
        "event_timestamp_ms": event_timestamp_ms,
        "environment": "SANDBOX",
        "store": "APP_STORE",
    }
    return {k: v for k, v in event.items() if v is not None}


def wrap_event(event: dict[str, Any]) -> dict[str, Any]:
    """Wrap an event object the way the provider does."""
    return {"api_version": "1.0", "event": event}
