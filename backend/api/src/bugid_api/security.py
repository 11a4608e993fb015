"""Bearer-token security dependencies.

Declare these before any service dependency on a route: FastAPI resolves
dependencies in order, so a rejected request never builds store clients.

Usage:
    @router.post("/webhooks/revenuecat")
    async def handle(
        _: None = Depends(require_webhook_auth),
        handler: WebhookHandler = Depends(get_webhook_handler),
    ): ...
"""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bugid_api.dependencies import get_internal_authenticator, get_webhook_authenticator
from bugid_shared.services.webhook_auth import BearerAuthenticator

# Documents the scheme in OpenAPI; validation is done by BearerAuthenticator
bearer_scheme = HTTPBearer(auto_error=False)


async def require_webhook_auth(
    request: Request,
    authenticator: BearerAuthenticator = Depends(get_webhook_authenticator),
    _credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Authenticate a billing provider webhook delivery."""
    authenticator.authenticate(request.headers.get("Authorization"))


async def require_internal_auth(
    request: Request,
    authenticator: BearerAuthenticator = Depends(get_internal_authenticator),
    _credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Authenticate a call to the internal entitlements API."""
    authenticator.authenticate(request.headers.get("Authorization"))
