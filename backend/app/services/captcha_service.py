"""CAPTCHA verification against Cloudflare Turnstile"""
import logging
from typing import Optional, Tuple

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)


def verify_turnstile(token: str, remote_ip: Optional[str], settings: Settings) -> Tuple[bool, Optional[str]]:
    """
    Verify a Turnstile token.

    Args:
        token: Token produced by the browser widget
        remote_ip: Client IP forwarded to Cloudflare when known
        settings: Application settings

    Returns:
        tuple: (ok, error_code) where error_code is 'turnstile_http_error' or 'turnstile_failed'
    """
    form = {
        "secret": settings.TURNSTILE_SECRET_KEY,
        "response": token,
    }
    if remote_ip:
        form["remoteip"] = remote_ip

    try:
        response = httpx.post(settings.TURNSTILE_VERIFY_URL, data=form)
    except httpx.HTTPError as e:
        logger.warning(f"Turnstile verification request failed: {e}")
        return False, "turnstile_http_error"

    if response.status_code < 200 or response.status_code >= 300:
        logger.warning(f"Turnstile verification returned HTTP {response.status_code}")
        return False, "turnstile_http_error"

    try:
        data = response.json()
    except ValueError:
        return False, "turnstile_failed"

    if isinstance(data, dict) and data.get("success") is True:
        return True, None

    error_codes = data.get("error-codes") if isinstance(data, dict) else None
    logger.info(f"Turnstile rejected token: {error_codes}")
    return False, "turnstile_failed"
