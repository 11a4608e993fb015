"""Unit tests for webhook settings and secret loading."""

import boto3
import pytest
from moto import mock_aws
from pydantic import ValidationError

from bugid_shared.services.config import (
    DEFAULT_PRODUCT_TOKEN_GRANTS,
    WebhookSettings,
    load_internal_api_secret,
    load_webhook_secret,
)


class TestWebhookSettings:
    """Tests for WebhookSettings defaults and environment parsing."""

    def test_defaults(self) -> None:
        settings = WebhookSettings()

        assert settings.product_token_grants == DEFAULT_PRODUCT_TOKEN_GRANTS
        assert settings.product_token_grants["bugid_weekly_299"] == 200
        assert settings.product_token_grants["bugid_yearly_6999"] == 4000
        assert settings.entitle_unknown_products is True
        assert settings.processed_event_retention_days == 90
        assert settings.event_claim_lease_seconds == 300
        assert settings.starter_tokens == 1

    def test_parameter_names_follow_environment(self) -> None:
        settings = WebhookSettings(environment="prod")

        assert settings.webhook_token_parameter == "/bugid/prod/revenuecat/webhook_token"
        assert settings.internal_token_parameter == "/bugid/prod/internal/api_token"

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "prod")
        monkeypatch.setenv("PRODUCT_TOKEN_GRANTS", '{"bugid_monthly_999": 800}')
        monkeypatch.setenv("ENTITLE_UNKNOWN_PRODUCTS", "false")
        monkeypatch.setenv("PROCESSED_EVENT_RETENTION_DAYS", "0")
        monkeypatch.setenv("EVENT_CLAIM_LEASE_SECONDS", "60")
        monkeypatch.setenv("STARTER_TOKENS", "5")

        settings = WebhookSettings.from_env()

        assert settings.environment == "prod"
        assert settings.product_token_grants == {"bugid_monthly_999": 800}
        assert settings.entitle_unknown_products is False
        assert settings.processed_event_retention_days == 0
        assert settings.event_claim_lease_seconds == 60
        assert settings.starter_tokens == 5

    def test_from_env_without_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in (
            "ENVIRONMENT",
            "PRODUCT_TOKEN_GRANTS",
            "ENTITLE_UNKNOWN_PRODUCTS",
            "PROCESSED_EVENT_RETENTION_DAYS",
            "EVENT_CLAIM_LEASE_SECONDS",
            "STARTER_TOKENS",
        ):
            monkeypatch.delenv(name, raising=False)

        assert WebhookSettings.from_env() == WebhookSettings()

    def test_negative_grant_rejected(self) -> None:
        with pytest.raises(ValidationError, match="bugid_weekly_299"):
            WebhookSettings(product_token_grants={"bugid_weekly_299": -1})

    def test_zero_lease_rejected(self) -> None:
        with pytest.raises(ValidationError):
            WebhookSettings(event_claim_lease_seconds=0)

    def test_settings_are_frozen(self) -> None:
        settings = WebhookSettings()

        with pytest.raises(ValidationError):
            settings.starter_tokens = 10  # type: ignore[misc]


@pytest.mark.usefixtures("aws_credentials")
class TestSecretLoading:
    """Secrets come from the environment first, then SSM."""

    def test_environment_variable_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REVENUECAT_BEARER_TOKEN", "from-env")

        assert load_webhook_secret(WebhookSettings()) == "from-env"

    def test_falls_back_to_ssm(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REVENUECAT_BEARER_TOKEN", raising=False)
        monkeypatch.delenv("INTERNAL_API_TOKEN", raising=False)

        with mock_aws():
            ssm = boto3.client("ssm", region_name="eu-west-1")
            ssm.put_parameter(
                Name="/bugid/dev/revenuecat/webhook_token",
                Value="from-ssm",
                Type="SecureString",
            )
            ssm.put_parameter(
                Name="/bugid/dev/internal/api_token",
                Value="internal-from-ssm",
                Type="SecureString",
            )

            settings = WebhookSettings(environment="dev")
            assert load_webhook_secret(settings) == "from-ssm"
            assert load_internal_api_secret(settings) == "internal-from-ssm"

    def test_missing_everywhere_returns_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REVENUECAT_BEARER_TOKEN", raising=False)

        with mock_aws():
            assert load_webhook_secret(WebhookSettings(environment="dev")) is None
