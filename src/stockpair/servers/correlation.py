"""Correlation ID middleware for request tracing.

Generates a unique correlation ID per incoming HTTP request (or reuses the
caller's ``X-Correlation-ID``), sets it in ``request.state.correlation_id`` for
handlers, and propagates it to the response headers.

Secrets MUST NOT be logged. The correlation ID is a random UUID4 hex string.
"""

from __future__ import annotations

import logging
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_HEADER_NAME = "X-Correlation-ID"
# Caller-supplied ids end up in logs; keep them short and boring.
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_logger = logging.getLogger("stockpair.correlation")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app: ASGIApp, header_name: str = _HEADER_NAME) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        supplied = request.headers.get(self.header_name)
        correlation_id = supplied if supplied and _SAFE_ID_RE.match(supplied) else uuid.uuid4().hex
        # Expose in request.state for handlers / services
        request.state.correlation_id = correlation_id
        _logger.debug(
            "%s %s", request.method, request.url.path, extra={"correlation_id": correlation_id}
        )
        response = await call_next(request)
        response.headers[self.header_name] = correlation_id
        return response
