"""
Request context middleware.

Every request gets a request_id: the caller's X-Request-ID when it looks
like an opaque token, otherwise a fresh UUID. The id is stored on
request.state, bound into the structlog context for the lifetime of the
request and echoed back in the X-Request-ID response header.

Usage in endpoints:
    request.state.request_id
    request.state.ip_address
    request.state.user_agent
"""

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.observability.logging import bind_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def resolve_request_id(incoming: str | None) -> str:
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

        request.state.request_id = request_id
        request.state.ip_address = request.client.host if request.client else None
        request.state.user_agent = request.headers.get("user-agent")

        bind_request_context(
            request_id=request_id, method=request.method, path=request.url.path
        )
        logger.debug(
            "Request started",
            ip_address=request.state.ip_address,
            user_agent=request.state.user_agent,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
