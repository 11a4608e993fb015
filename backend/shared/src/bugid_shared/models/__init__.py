"""Pydantic models for billing events and entitlement records."""

from .billing_event import (
    BillingEvent,
    FlatEventPayload,
    ProviderEventObject,
    WrappedEventPayload,
    parse_billing_event,
)
from .entitlement import Entitlement, ProcessedEventMarker
from .enums import (
    GRANT_EVENT_TYPES,
    REVOKE_EVENT_TYPES,
    BillingEventType,
    EntitlementState,
    EntitlementTransition,
    MarkerStatus,
    ProcessingResult,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ConfigurationError,
    EntitlementNotFound,
    ErrorCode,
    EventInProgress,
    ErrorResponse,
    MalformedPayload,
    PersistenceError,
    Unauthenticated,
    WebhookError,
)
