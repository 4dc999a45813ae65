# backend/loginguard/core/request_context.py
"""
Request context middleware for security event correlation.

Attaches per-request context (request_id, origin IP, user_agent, country)
that the event recorder and the login orchestrator read.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from loginguard.core.rate_limit import get_country_code, get_real_client_ip

USER_AGENT_MAX_LENGTH = 512


@dataclass
class RequestContext:
    """Context attached to each request."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    ip_address: str = "unknown"
    user_agent: str | None = None
    country_code: str | None = None
    request_method: str | None = None
    request_path: str | None = None


_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


def get_request_context() -> RequestContext | None:
    """Get the current request context."""
    return _request_context.get()


def truncate_user_agent(user_agent: str | None) -> str | None:
    if not user_agent:
        return None
    if len(user_agent) > USER_AGENT_MAX_LENGTH:
        return user_agent[: USER_AGENT_MAX_LENGTH - 3] + "..."
    return user_agent


def build_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_real_client_ip(request),
        user_agent=truncate_user_agent(request.headers.get("User-Agent")),
        country_code=get_country_code(request),
        request_method=request.method,
        request_path=request.url.path[:255],
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that creates and attaches request context.

    Must be added early in the middleware stack.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = build_request_context(request)
        token = _request_context.set(ctx)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = ctx.request_id
            return response
        finally:
            _request_context.reset(token)
