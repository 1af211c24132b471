"""Best-effort cache revalidation of public artist pages"""
import logging

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.artist import Artist

logger = logging.getLogger("billing")


def revalidate_artist_cache(auth_user_id: str, db: Session) -> bool:
    """
    Ask the site to drop its cached page for the artist owned by auth_user_id.

    Never raises; a failed revalidation only means the page refreshes on its own schedule.

    Returns:
        bool: True if the site acknowledged the revalidation
    """
    if not settings.PUBLIC_SITE_URL:
        logger.warning("PUBLIC_SITE_URL not configured, skipping revalidation")
        return False

    if not settings.REVALIDATE_SECRET:
        logger.warning("REVALIDATE_SECRET not configured, skipping revalidation")
        return False

    artist = db.query(Artist).filter(Artist.auth_user_id == auth_user_id).first()
    if not artist:
        logger.info(f"No artist handle found for user {auth_user_id}, skipping revalidation")
        return False

    url = f"{settings.PUBLIC_SITE_URL.rstrip('/')}/api/revalidate"
    try:
        response = httpx.post(
            url,
            json={"tags": [f"artist:{artist.handle}"], "handle": artist.handle},
            headers={"x-revalidate-secret": settings.REVALIDATE_SECRET},
            timeout=settings.REVALIDATE_TIMEOUT_SECONDS
        )
    except httpx.TimeoutException:
        logger.error(f"Revalidation request timed out for handle {artist.handle} (non-fatal)")
        return False
    except httpx.HTTPError as e:
        logger.error(f"Failed to revalidate artist cache for {artist.handle} (non-fatal): {e}")
        return False

    if response.status_code < 200 or response.status_code >= 300:
        logger.error(f"Revalidation failed for {artist.handle}: {response.status_code} {response.text[:200]}")
        return False

    logger.info(f"Revalidated artist cache for handle: {artist.handle}")
    return True
