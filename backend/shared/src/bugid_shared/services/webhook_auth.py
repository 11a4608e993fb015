"""Bearer token authentication for inbound webhook requests.

The billing provider sends ``Authorization: Bearer <token>`` with a token
configured in its dashboard. The same check protects the internal API
with a separate token.
"""

import hmac
import logging
from collections.abc import Callable

from bugid_shared.models.errors import ConfigurationError, Unauthenticated

logger = logging.getLogger(__name__)

BEARER_SCHEME = "Bearer"


class BearerAuthenticator:
    """Validates a bearer credential against a server-held secret.

    One instance serves every request. A secret that could not be loaded
    is looked up again on the next request through ``loader``, so a
    transient SSM failure only fails the requests that hit it.
    """

    def __init__(
        self,
        secret: str | None,
        realm: str = "webhook",
        loader: Callable[[], str | None] | None = None,
    ) -> None:
        """Initialize authenticator.

        Args:
            secret: Expected token, or None when it could not be loaded
            realm: Label used in log lines
            loader: Re-resolves the secret while it is missing
        """
        self._secret = secret
        self.realm = realm
        self._loader = loader

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def authenticate(self, authorization_header: str | None) -> None:
        """Check an Authorization header value.

        Args:
            authorization_header: Raw header value, or None if absent

        Raises:
            ConfigurationError: If no secret is configured on the server
            Unauthenticated: If the header is missing, malformed or wrong
        """
        if not self._secret and self._loader is not None:
            self._secret = self._loader()

        if not self._secret:
            logger.error(
                "CRITICAL: %s bearer token missing or not loaded (env vars/SSM)",
                self.realm,
            )
            raise ConfigurationError()

        if not authorization_header:
            logger.warning("%s request rejected: missing Authorization header", self.realm)
            raise Unauthenticated({"reason": "Missing Authorization header"})

        parts = authorization_header.split(" ")
        if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1]:
            logger.warning(
                "%s request rejected: invalid Authorization header format", self.realm
            )
            raise Unauthenticated({"reason": "Invalid Authorization header format"})

        if not hmac.compare_digest(parts[1].encode(), self._secret.encode()):
            logger.warning("%s request rejected: invalid bearer token", self.realm)
            raise Unauthenticated({"reason": "Invalid token"})
