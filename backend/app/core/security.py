"""Security helpers: client identity, peppered hashing, CORS and auth dependencies"""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from fastapi import HTTPException, Request

from app.core.config import settings
from app.services.identity_service import AuthUser, get_user_from_access_token

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

CORS_ALLOW_METHODS = "POST, OPTIONS"
CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client IP: Cloudflare header, then first X-Forwarded-For hop, then socket peer"""
    cf_ip = request.headers.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip

    forwarded = request.headers.get("x-forwarded-for", "").strip()
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return request.client.host if request.client else None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_identifier(value: str, pepper: str) -> str:
    """Keyed SHA-256 hex digest of an identifier (value concatenated with a server-side pepper)"""
    return hashlib.sha256(f"{value}{pepper}".encode("utf-8")).hexdigest()


def is_allowed_origin(origin: Optional[str], allowed_origins: Optional[List[str]] = None) -> bool:
    if not origin:
        return False
    allowed = allowed_origins if allowed_origins is not None else settings.ALLOWED_ORIGINS
    return origin.rstrip("/") in [o.rstrip("/") for o in allowed]


def get_cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """CORS headers for function routes; allow-origin is only echoed for allow-listed origins"""
    headers = {
        "access-control-allow-headers": CORS_ALLOW_HEADERS,
        "access-control-allow-methods": CORS_ALLOW_METHODS,
    }
    if is_allowed_origin(origin):
        headers["access-control-allow-origin"] = origin
        headers["access-control-allow-credentials"] = "true"
    return headers


def resolve_base_url(request: Request) -> str:
    """Base URL for redirects: allowed Origin, then allowed Referer origin, then the public site URL"""
    origin = request.headers.get("Origin")
    if is_allowed_origin(origin):
        return origin.rstrip("/")

    referer = request.headers.get("Referer")
    if referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            referer_origin = f"{parsed.scheme}://{parsed.netloc}"
            if is_allowed_origin(referer_origin):
                return referer_origin

    return settings.PUBLIC_SITE_URL.rstrip("/")


def require_supabase_user(request: Request) -> AuthUser:
    """Dependency: Require a valid Supabase access token, return the user"""
    authorization = request.headers.get("Authorization", "")
    if not authorization:
        raise HTTPException(401, "Unauthorized")

    user = get_user_from_access_token(authorization)
    if not user:
        security_logger.warning(f"Rejected access token - Path: {request.url.path}")
        raise HTTPException(401, "Unauthorized")

    return user


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log API access information (no client IP, the contact pipeline only keeps hashes)"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")


def get_rate_limit_identifier(request: Request) -> str:
    """Rate-limit key: client IP, else a hash of User-Agent + Accept-Language (never a shared bucket)"""
    client_ip = get_client_ip(request)
    if client_ip:
        return f"ip:{client_ip}"

    fingerprint = f"{request.headers.get('user-agent', '')}:{request.headers.get('accept-language', '')}"
    return f"ua:{hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:16]}"
