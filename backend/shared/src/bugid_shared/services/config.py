"""Runtime configuration for the entitlements webhook.

Non-secret settings come from environment variables. Bearer tokens are
injected directly through the environment (REVENUECAT_BEARER_TOKEN,
INTERNAL_API_TOKEN) or, when absent, read from SSM Parameter Store.
"""

import json
import logging
import os
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ssm_service import get_ssm_service

logger = logging.getLogger(__name__)

# Tokens granted per purchase or renewal of each product
DEFAULT_PRODUCT_TOKEN_GRANTS: dict[str, int] = {
    "bugid_weekly_299": 200,
    "bugid_yearly_6999": 4000,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


class WebhookSettings(BaseModel):
    """Settings shared by the webhook pipeline and the internal API."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    product_token_grants: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_PRODUCT_TOKEN_GRANTS)
    )
    entitle_unknown_products: bool = Field(
        default=True,
        description="Mark INITIAL_PURCHASE of an unknown product as entitled (0 tokens)",
    )
    processed_event_retention_days: int = Field(
        default=90,
        ge=0,
        description="Marker TTL in days; 0 keeps markers forever",
    )
    event_claim_lease_seconds: int = Field(
        default=300,
        gt=0,
        description="Age after which an unfinished claim may be taken over",
    )
    starter_tokens: int = Field(default=1, ge=0)

    @field_validator("product_token_grants")
    @classmethod
    def _non_negative_grants(cls, value: dict[str, int]) -> dict[str, int]:
        negative = [product for product, tokens in value.items() if tokens < 0]
        if negative:
            raise ValueError(f"Negative token grant for: {', '.join(sorted(negative))}")
        return value

    @property
    def webhook_token_parameter(self) -> str:
        return f"/bugid/{self.environment}/revenuecat/webhook_token"

    @property
    def internal_token_parameter(self) -> str:
        return f"/bugid/{self.environment}/internal/api_token"

    @classmethod
    def from_env(cls) -> "WebhookSettings":
        """Build settings from environment variables.

        Returns:
            WebhookSettings with defaults for anything unset.
        """
        values: dict[str, Any] = {
            "environment": os.environ.get("ENVIRONMENT", "dev"),
        }

        grants = os.environ.get("PRODUCT_TOKEN_GRANTS")
        if grants:
            values["product_token_grants"] = json.loads(grants)

        flag = os.environ.get("ENTITLE_UNKNOWN_PRODUCTS")
        if flag is not None:
            values["entitle_unknown_products"] = flag.strip().lower() in _TRUE_VALUES

        for env_name, field in (
            ("PROCESSED_EVENT_RETENTION_DAYS", "processed_event_retention_days"),
            ("EVENT_CLAIM_LEASE_SECONDS", "event_claim_lease_seconds"),
            ("STARTER_TOKENS", "starter_tokens"),
        ):
            raw = os.environ.get(env_name)
            if raw:
                values[field] = int(raw)

        return cls(**values)


def _resolve_secret(env_name: str, parameter_name: str) -> str | None:
    value = os.environ.get(env_name)
    if value:
        return value
    return get_ssm_service().get_optional_parameter(parameter_name)


def load_webhook_secret(settings: WebhookSettings) -> str | None:
    """Return the provider bearer token, or None if not configured."""
    return _resolve_secret("REVENUECAT_BEARER_TOKEN", settings.webhook_token_parameter)


def load_internal_api_secret(settings: WebhookSettings) -> str | None:
    """Return the internal API bearer token, or None if not configured."""
    return _resolve_secret("INTERNAL_API_TOKEN", settings.internal_token_parameter)


@lru_cache(maxsize=1)
def get_settings() -> WebhookSettings:
    """Get process-wide settings, read once from the environment."""
    settings = WebhookSettings.from_env()
    logger.info(
        "Webhook settings loaded for environment %s (%d products)",
        settings.environment,
        len(settings.product_token_grants),
    )
    return settings
