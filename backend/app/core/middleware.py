"""Middleware for the function routes: CORS allow-list, rate limiting and access logging"""
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from app.core.metrics import rate_limited_requests_counter
from app.core.security import (
    get_cors_headers, is_allowed_origin, get_rate_limit_identifier, log_api_access
)
from app.db.redis import check_rate_limit

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

FUNCTIONS_PREFIX = "/functions/v1/"
WEBHOOK_PATHS = ("/functions/v1/stripe-webhook",)


async def security_middleware(request: Request, call_next):
    """Middleware for CORS, rate limiting and API access logging on /functions/v1/*"""
    path = request.url.path
    if not path.startswith(FUNCTIONS_PREFIX):
        return await call_next(request)

    origin = request.headers.get("Origin")
    cors_headers = get_cors_headers(origin)
    status_code = 500
    error = None

    try:
        # Preflight
        if request.method == "OPTIONS":
            status_code = 204
            return Response(status_code=204, headers=cors_headers)

        # Browsers from other sites are refused outright; server-to-server calls carry no Origin
        if origin and not is_allowed_origin(origin):
            status_code = 403
            error = "Origin not allowed"
            security_logger.warning(f"Origin validation failed - Origin: {origin}, Path: {path}")
            return JSONResponse(status_code=403, content={"error": "forbidden"}, headers=cors_headers)

        tier = "webhook" if path in WEBHOOK_PATHS else "strict"
        allowed, retry_after = check_rate_limit(get_rate_limit_identifier(request), tier=tier)
        if not allowed:
            status_code = 429
            error = "Rate limit exceeded"
            rate_limited_requests_counter.labels(tier=tier).inc()
            security_logger.warning(f"Rate limit exceeded - Tier: {tier}, Path: {path}")
            headers = dict(cors_headers)
            if retry_after:
                headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests. Please try again later."},
                headers=headers
            )

        response = await call_next(request)
        status_code = response.status_code
        response.headers.update(cors_headers)
        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, status_code, error)
