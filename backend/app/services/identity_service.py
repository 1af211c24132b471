"""Identity service - Supabase Auth lookups over its REST API"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)

AUTH_TIMEOUT_SECONDS = 10.0


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None


def _auth_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/auth/v1{path}"


def get_user_from_access_token(authorization: str) -> Optional[AuthUser]:
    """Resolve the user behind a browser session's bearer token.

    Args:
        authorization: Raw Authorization header value ("Bearer <jwt>")

    Returns:
        AuthUser, or None when the token is missing, invalid or Auth is unreachable
    """
    if not settings.SUPABASE_URL or not authorization:
        return None

    try:
        response = httpx.get(
            _auth_url(settings.SUPABASE_URL, "/user"),
            headers={
                "apikey": settings.SUPABASE_ANON_KEY,
                "Authorization": authorization,
            },
            timeout=AUTH_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error(f"Supabase Auth user lookup failed: {e}")
        return None

    if response.status_code != 200:
        return None

    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    user_id = data.get("id")
    if not user_id:
        return None
    return AuthUser(id=user_id, email=data.get("email"))


def get_auth_user_email(auth_user_id: str, settings: Settings) -> Optional[str]:
    """Admin lookup of a user's email address (service role key).

    The address never leaves the server; it is only used as a delivery target.
    Any unreadable answer from Auth is treated as "no email on file".
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        logger.error("Supabase admin credentials not configured")
        return None

    try:
        response = httpx.get(
            _auth_url(settings.SUPABASE_URL, f"/admin/users/{auth_user_id}"),
            headers={
                "apikey": settings.SUPABASE_SERVICE_ROLE_KEY,
                "Authorization": f"Bearer {settings.SUPABASE_SERVICE_ROLE_KEY}",
            },
            timeout=AUTH_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error(f"Supabase admin user lookup failed for {auth_user_id}: {e}")
        return None

    if response.status_code != 200:
        logger.warning(f"Supabase admin user lookup returned {response.status_code} for {auth_user_id}")
        return None

    try:
        data = response.json()
    except ValueError:
        logger.warning(f"Supabase admin user lookup returned a non-JSON body for {auth_user_id}")
        return None

    # Older Auth versions wrap the record in {"user": {...}}
    user = data.get("user", data) if isinstance(data, dict) else None
    if not isinstance(user, dict):
        logger.warning(f"Supabase admin user lookup returned no user record for {auth_user_id}")
        return None

    email = user.get("email")
    return email if isinstance(email, str) and email else None
