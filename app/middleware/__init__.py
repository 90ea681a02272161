"""
Middleware components for request processing.

This package contains:
- Request context (request ID, IP address, user agent)
- Exception handlers producing the JSON error body
"""

from app.middleware.error_handlers import ApiError, register_exception_handlers
from app.middleware.request_context import RequestContextMiddleware

__all__ = [
    "ApiError",
    "RequestContextMiddleware",
    "register_exception_handlers",
]
