"""Backend services for the Bug ID entitlements webhook."""

from .config import WebhookSettings, get_settings
from .dynamodb import DynamoDBService, get_dynamodb_service
from .entitlement_service import EntitlementMutation, EntitlementService
from .event_markers import ProcessedEventStore
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .webhook_auth import BearerAuthenticator
from .webhook_handler import WebhookHandler, WebhookOutcome

__all__ = [
    "BearerAuthenticator",
    "DynamoDBService",
    "EntitlementMutation",
    "EntitlementService",
    "ProcessedEventStore",
    "SSMService",
    "SSMServiceError",
    "WebhookHandler",
    "WebhookOutcome",
    "WebhookSettings",
    "get_dynamodb_service",
    "get_settings",
    "get_ssm_service",
]
