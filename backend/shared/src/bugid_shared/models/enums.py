"""Enumeration types for billing events and entitlement records."""

from enum import Enum


class BillingEventType(str, Enum):
    """Subscription lifecycle events sent by the billing provider.

    Only the members listed here are recognised. Anything else is kept
    as a raw string on the event and acknowledged without a state change.
    """

    INITIAL_PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    CANCELLATION = "CANCELLATION"
    EXPIRATION = "EXPIRATION"
    TEST = "TEST"
    TRANSFER = "TRANSFER"


class EntitlementState(str, Enum):
    """Derived subscription state of an entitlement record."""

    UNENTITLED = "unentitled"
    ENTITLED = "entitled"


class EntitlementTransition(str, Enum):
    """Mutation direction applied for an event type."""

    GRANT = "grant"
    REVOKE = "revoke"
    NONE = "none"


class MarkerStatus(str, Enum):
    """Lifecycle of a processed-event marker."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class ProcessingResult(str, Enum):
    """Outcome reported back to the provider for a delivered event."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


GRANT_EVENT_TYPES = frozenset(
    {BillingEventType.INITIAL_PURCHASE, BillingEventType.RENEWAL}
)
REVOKE_EVENT_TYPES = frozenset(
    {BillingEventType.CANCELLATION, BillingEventType.EXPIRATION}
)
