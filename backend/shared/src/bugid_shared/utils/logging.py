"""Logging for webhook deliveries.

Every line of one delivery carries the same correlation id, and lines
about an event carry its id, user and result, so a single delivery can be
followed across the auth, claim and transaction steps.

Usage:
    from bugid_shared.utils.logging import correlation_scope, get_logger

    # In middleware:
    with correlation_scope(request.headers.get("X-Correlation-ID")) as cid:
        ...

    # In service code:
    logger = get_logger(__name__)
    logger.info("Granting tokens", extra={"app_user_id": "uid-123"})

Credentials and raw payloads must never be passed to these helpers.
"""

import logging
import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

NO_CORRELATION_ID = "-"

# Caller-supplied ids end up in log lines; anything else is replaced
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

# Record attributes appended as key=value when a log call supplied them
CONTEXT_FIELDS = ("event_id", "app_user_id", "result")

# log_webhook_event results that indicate a delivery the provider must retry
# or that was refused; acknowledged outcomes log at INFO
WARNING_RESULTS = frozenset({"rejected", "in_progress"})


def current_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(incoming: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of a request.

    Args:
        incoming: Value of the caller's X-Correlation-ID header. Reused when
            it is a plausible id, otherwise a fresh UUID is generated.

    Yields:
        The correlation id in effect inside the block
    """
    if incoming and _CORRELATION_ID_PATTERN.match(incoming):
        cid = incoming
    else:
        cid = str(uuid.uuid4())

    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the correlation id of the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = current_correlation_id() or NO_CORRELATION_ID
        return True


class WebhookLogFormatter(logging.Formatter):
    """``[cid] <standard line> | event_id=... app_user_id=... result=...``"""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or current_correlation_id()
        line = f"[{cid or NO_CORRELATION_ID}] {super().format(record)}"

        context = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        if context:
            line = f"{line} | {' '.join(context)}"
        return line


def configure_logging(level: int = logging.INFO) -> None:
    """Install the webhook formatter on the root logger.

    Safe to call more than once; existing handlers only get their
    formatter replaced.
    """
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        handler.setFormatter(WebhookLogFormatter(LOG_FORMAT))
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger that stamps the request correlation id."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def log_webhook_event(
    logger: logging.Logger,
    event_type: str | None,
    event_id: str | None,
    *,
    app_user_id: str | None = None,
    product_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook event with structured context.

    Severity follows the result: ``error`` logs at ERROR, ``rejected`` and
    ``in_progress`` at WARNING. Acknowledged outcomes (``success``,
    ``duplicate``, ``skipped``) log at INFO.

    Args:
        logger: Logger instance
        event_type: Provider event type (e.g., "INITIAL_PURCHASE")
        event_id: Provider event ID
        app_user_id: Target user if known
        product_id: Product if known
        result: Processing result (success, duplicate, skipped, rejected,
            in_progress, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "event_id": event_id,
    }

    if app_user_id:
        context["app_user_id"] = app_user_id
    if product_id:
        context["product_id"] = product_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    # event_id, app_user_id and result are appended by WebhookLogFormatter
    msg_parts = [f"Webhook event {event_type}: {result or 'received'}"]
    if product_id:
        msg_parts.append(f"product={product_id}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message, extra=context)
    elif result in WARNING_RESULTS:
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_entitlement_change(
    logger: logging.Logger,
    operation: str,
    app_user_id: str,
    *,
    event_type: str | None = None,
    product_id: str | None = None,
    tokens: int | None = None,
    subscription_active: bool | None = None,
    error: str | None = None,
) -> None:
    """Log a grant or revoke applied to an entitlement record.

    Args:
        logger: Logger instance
        operation: "grant", "revoke" or "bootstrap"
        app_user_id: User whose record changed
        event_type: Event that caused the change
        product_id: Product id for grants
        tokens: Tokens added (grant) or the new balance (revoke)
        subscription_active: Resulting subscription flag
        error: Error message if the write failed
    """
    context: dict[str, Any] = {"operation": operation, "app_user_id": app_user_id}
    if event_type:
        context["event_type"] = event_type
    if product_id:
        context["product_id"] = product_id
    if tokens is not None:
        context["tokens"] = tokens
    if subscription_active is not None:
        context["subscription_active"] = subscription_active
    if error:
        context["error"] = error

    msg_parts = [f"Entitlement {operation}: user={app_user_id}"]
    for key, value in context.items():
        if key not in ("operation", "app_user_id"):
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)
