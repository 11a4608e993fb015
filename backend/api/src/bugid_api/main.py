"""FastAPI application for the Bug ID entitlements backend.

This package provides REST endpoints for:
- Billing provider webhooks (subscription events → entitlement records)
- Internal entitlement reads and account bootstrap
- Health checks
"""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from mangum import Mangum

from bugid_api.exceptions import register_exception_handlers
from bugid_api.middleware.correlation import CorrelationIdMiddleware
from bugid_api.routes.entitlements import router as entitlements_router
from bugid_api.routes.webhooks import router as webhooks_router
from bugid_shared.utils.logging import configure_logging

logger = logging.getLogger(__name__)
configure_logging(logging.INFO)

app = FastAPI(
    title="Bug ID Entitlements API",
    description="Billing webhooks and entitlement records for the Bug ID app",
    version="0.1.0",
)

app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.include_router(webhooks_router)
app.include_router(entitlements_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "bugid-entitlements",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "bugid_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["api/src", "shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
