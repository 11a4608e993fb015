"""API routes package.

- webhooks: billing provider subscription events
- entitlements: internal entitlement reads and account bootstrap

The webhook router is mounted at the root (the provider is configured with
/webhooks/revenuecat); internal routers are mounted under /api.
"""

from bugid_api.routes.entitlements import router as entitlements_router
from bugid_api.routes.webhooks import router as webhooks_router

__all__ = [
    "entitlements_router",
    "webhooks_router",
]
