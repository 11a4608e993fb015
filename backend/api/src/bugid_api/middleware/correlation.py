"""Correlation ID middleware.

Each request runs inside a correlation scope: the caller's X-Correlation-ID
is reused when it looks like an id, otherwise one is generated. The id is
returned on every response, error responses included, so a provider
delivery can be matched to its log lines.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from bugid_shared.utils.logging import correlation_scope

CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response
