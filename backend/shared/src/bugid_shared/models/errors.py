"""Standard error codes for the entitlements webhook.

Every failure the webhook pipeline can surface maps to one ErrorCode.
The API layer converts WebhookError exceptions into ErrorResponse bodies.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes returned in webhook and internal API responses."""

    # Webhook pipeline (ERR_WEBHOOK_001-ERR_WEBHOOK_005)
    WEBHOOK_NOT_CONFIGURED = "ERR_WEBHOOK_001"
    UNAUTHENTICATED = "ERR_WEBHOOK_002"
    MALFORMED_PAYLOAD = "ERR_WEBHOOK_003"
    PERSISTENCE_FAILED = "ERR_WEBHOOK_004"
    EVENT_IN_PROGRESS = "ERR_WEBHOOK_005"

    # Entitlement API (ERR_ENT_001)
    ENTITLEMENT_NOT_FOUND = "ERR_ENT_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.WEBHOOK_NOT_CONFIGURED: "Webhook authentication not configured properly",
    ErrorCode.UNAUTHENTICATED: "Unauthorized",
    ErrorCode.MALFORMED_PAYLOAD: "Malformed webhook payload",
    ErrorCode.PERSISTENCE_FAILED: "Internal server error while processing payload",
    ErrorCode.EVENT_IN_PROGRESS: "Event is being processed by another delivery",
    ErrorCode.ENTITLEMENT_NOT_FOUND: "Entitlement record not found",
}

# Recovery hints for the caller
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.WEBHOOK_NOT_CONFIGURED: "Verify the webhook secret is deployed",
    ErrorCode.UNAUTHENTICATED: "Send Authorization: Bearer <token> with the configured token",
    ErrorCode.MALFORMED_PAYLOAD: "Include event id and app_user_id in the payload",
    ErrorCode.PERSISTENCE_FAILED: "Retry delivery later",
    ErrorCode.EVENT_IN_PROGRESS: "Retry delivery after the current attempt finishes",
    ErrorCode.ENTITLEMENT_NOT_FOUND: "Verify the app user id",
}


class ErrorResponse(BaseModel):
    """Error body returned for every rejected request."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class WebhookError(Exception):
    """Base exception for the webhook pipeline.

    Subclasses fix the error code; callers only add details.
    """

    code: ErrorCode = ErrorCode.PERSISTENCE_FAILED

    def __init__(
        self,
        details: Optional[dict[str, str]] = None,
        *,
        code: Optional[ErrorCode] = None,
    ):
        if code is not None:
            self.code = code
        self.message = ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details)


class ConfigurationError(WebhookError):
    """Server-side secret is missing. Fails the request, not the process."""

    code = ErrorCode.WEBHOOK_NOT_CONFIGURED


class Unauthenticated(WebhookError):
    """Bearer credential missing, malformed or wrong."""

    code = ErrorCode.UNAUTHENTICATED


class MalformedPayload(WebhookError):
    """Payload lacks the fields required to apply the event."""

    code = ErrorCode.MALFORMED_PAYLOAD


class PersistenceError(WebhookError):
    """Store read or write failed. The provider is expected to retry."""

    code = ErrorCode.PERSISTENCE_FAILED


class EntitlementNotFound(WebhookError):
    """No entitlement record exists for the requested user."""

    code = ErrorCode.ENTITLEMENT_NOT_FOUND


class EventInProgress(WebhookError):
    """Another delivery holds an unexpired claim on the event.

    Reported as retryable so the provider redelivers after the claim
    either commits or goes stale.
    """

    code = ErrorCode.EVENT_IN_PROGRESS
