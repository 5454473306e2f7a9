"""Request correlation middleware.

Puts the request id and caller identity into the logging context so every
log line emitted while serving a request carries them.
"""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from engageiq.api.middleware.caching import request_user_id
from engageiq.observability.logging import request_id_var, user_id_var


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Propagate ``x-request-id`` to logs, request state and the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(request_user_id(request) or "")
        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            request_id_var.reset(request_token)
            user_id_var.reset(user_token)
