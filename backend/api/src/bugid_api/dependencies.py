"""FastAPI dependency injection providers for shared services.

Services are built lazily and cached with @lru_cache, so configuration and
secrets are read once per process and every request shares the same
instances.

Service Dependency Graph:
    WebhookSettings (get_settings)
    DynamoDBService (singleton via get_dynamodb_service)
        ├── EntitlementService
        └── WebhookHandler
                ├── EntitlementService
                └── ProcessedEventStore
    BearerAuthenticator (webhook secret / internal API secret)

Testing:
    Use reset_services() to clear cached instances between tests, or
    override providers with app.dependency_overrides.
"""

from functools import lru_cache, partial

from bugid_shared.services.config import (
    get_settings,
    load_internal_api_secret,
    load_webhook_secret,
)
from bugid_shared.services.dynamodb import get_dynamodb_service
from bugid_shared.services.entitlement_service import EntitlementService
from bugid_shared.services.webhook_auth import BearerAuthenticator
from bugid_shared.services.webhook_handler import WebhookHandler


@lru_cache
def get_webhook_authenticator() -> BearerAuthenticator:
    """Get cached authenticator holding the provider bearer token.

    A secret that failed to load is retried on later requests.
    """
    load = partial(load_webhook_secret, get_settings())
    return BearerAuthenticator(load(), realm="webhook", loader=load)


@lru_cache
def get_internal_authenticator() -> BearerAuthenticator:
    """Get cached authenticator holding the internal API bearer token."""
    load = partial(load_internal_api_secret, get_settings())
    return BearerAuthenticator(load(), realm="internal-api", loader=load)


@lru_cache
def get_entitlement_service() -> EntitlementService:
    """Get cached EntitlementService instance."""
    return EntitlementService(db=get_dynamodb_service(), settings=get_settings())


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler sharing the entitlement service."""
    return WebhookHandler(
        db=get_dynamodb_service(),
        settings=get_settings(),
        entitlements=get_entitlement_service(),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets settings, the SSM client and the DynamoDB singleton.
    """
    from bugid_shared.services.dynamodb import reset_dynamodb_service
    from bugid_shared.services.ssm_service import SSMService, get_ssm_service

    get_webhook_authenticator.cache_clear()
    get_internal_authenticator.cache_clear()
    get_entitlement_service.cache_clear()
    get_webhook_handler.cache_clear()
    get_settings.cache_clear()
    SSMService._cache.clear()
    get_ssm_service.cache_clear()

    reset_dynamodb_service()
