"""Rate limiting middleware"""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import logging

from app.core.config import settings
from app.core.monitoring import rate_limit_rejections
from app.core.rate_limit import FALLBACK_IDENTIFIER, RateLimiterRegistry, RateLimitResult
from app.core.security import SecurityUtils, extract_bearer_token
from app.services.fraud_detection import get_client_ip

logger = logging.getLogger(__name__)

def get_rate_limit_identifier(request: Request) -> str:
    """
    Identify the caller: token subject, then proxy IP, then socket peer

    An invalid token is not an error here; the caller is then keyed by IP.
    """
    user_id = SecurityUtils.get_subject_or_none(
        extract_bearer_token(request.headers.get("authorization"))
    )
    if user_id:
        return f"user:{user_id}"

    ip = get_client_ip(request.headers)
    if not ip and request.client:
        ip = request.client.host

    return f"ip:{ip}" if ip else FALLBACK_IDENTIFIER

def rate_limit_exceeded_response(result: RateLimitResult, now: int) -> JSONResponse:
    """429 response for a rejected request"""
    retry_after = result.retry_after(now)
    headers = result.headers()
    headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too Many Requests",
            "retryAfter": retry_after,
        },
        headers=headers
    )

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per route class sliding-window limiting for API routes"""

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or not path.startswith(settings.API_PREFIX):
            return await call_next(request)

        registry: RateLimiterRegistry = request.app.state.rate_limiters
        identifier = get_rate_limit_identifier(request)
        route_class, result = await registry.check(path, identifier)

        if not result.success:
            rate_limit_rejections.labels(route_class=route_class.value).inc()
            logger.warning(
                f"Rate limit exceeded for {identifier} on {path} ({route_class.value})"
            )
            return rate_limit_exceeded_response(result, registry.clock())

        response = await call_next(request)
        for header, value in result.headers().items():
            response.headers[header] = value
        return response
