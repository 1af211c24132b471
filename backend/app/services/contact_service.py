"""Contact service - validation, anti-abuse gate and delivery for artist contact messages

Every request that passes CAPTCHA and artist lookup leaves exactly one audit row in
contact_messages. Blocked and throttled senders get the same 200 {ok: true} as a
successful send, and delivery failures are recorded but never surfaced to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.metrics import contact_submissions_counter
from app.core.security import hash_identifier, normalize_email
from app.models.artist import Artist
from app.models.contact_blocklist import ContactBlocklistEntry
from app.models.contact_message import (
    ContactMessage, QUOTA_STATUSES,
    STATUS_ACCEPTED, STATUS_SENT, STATUS_FAILED, STATUS_REJECTED, STATUS_THROTTLED
)
from app.schemas.contact import ContactRequest, CONTACT_ERROR_CODES
from app.services.captcha_service import verify_turnstile
from app.services.email_service import send_contact_email
from app.services.entitlement_service import get_effective_limits
from app.services.identity_service import get_auth_user_email

logger = logging.getLogger("contact")

RATE_LIMIT_WINDOW = timedelta(hours=24)

CONTACT_UNAVAILABLE = "contact_unavailable"


class ContactRequestError(Exception):
    """A request the caller may be told about: 400 validation codes and the generic 404"""

    def __init__(self, status_code: int, error_code: str):
        super().__init__(error_code)
        self.status_code = status_code
        self.error_code = error_code


@dataclass
class SenderContext:
    """Request metadata that is not part of the JSON body"""
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class _Submission:
    request: ContactRequest
    artist: Artist
    from_email: str
    from_email_hash: str
    ip_hash: Optional[str]
    user_agent: Optional[str]


def parse_contact_payload(payload: Any) -> ContactRequest:
    """Validate a decoded JSON body; the first failing field decides the error code"""
    if not isinstance(payload, dict):
        payload = {}

    try:
        return ContactRequest.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = first["loc"][0] if first.get("loc") else "artist_handle"
        raise ContactRequestError(400, CONTACT_ERROR_CODES.get(field, "invalid_artist"))


def _record(submission: _Submission, status: str, db: Session, error_code: Optional[str] = None) -> ContactMessage:
    """Insert an audit row for the submission"""
    req = submission.request
    row = ContactMessage(
        artist_id=submission.artist.id,
        artist_auth_user_id=submission.artist.auth_user_id,
        from_name=req.from_name,
        from_email=submission.from_email,
        from_email_hash=submission.from_email_hash,
        subject=req.subject,
        message=req.message,
        ip_hash=submission.ip_hash,
        user_agent=submission.user_agent,
        turnstile_ok=True,
        status=status,
        error_code=error_code,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    contact_submissions_counter.labels(status=status).inc()
    return row


def _finish(row: ContactMessage, status: str, db: Session, error_code: Optional[str] = None,
            resend_id: Optional[str] = None) -> None:
    """Move an accepted row to its terminal delivery status"""
    row.status = status
    row.error_code = error_code
    row.resend_id = resend_id
    db.commit()
    contact_submissions_counter.labels(status=status).inc()


def is_blocklisted(artist_id: str, db: Session, from_email_hash: Optional[str] = None,
                   ip_hash: Optional[str] = None) -> bool:
    """True if a blocklist row for this hash is global or scoped to the artist"""
    query = db.query(ContactBlocklistEntry.id).filter(
        or_(ContactBlocklistEntry.artist_id.is_(None), ContactBlocklistEntry.artist_id == artist_id)
    )
    if from_email_hash is not None:
        query = query.filter(ContactBlocklistEntry.from_email_hash == from_email_hash)
    elif ip_hash is not None:
        query = query.filter(ContactBlocklistEntry.ip_hash == ip_hash)
    else:
        return False
    return query.first() is not None


def count_recent_messages(db: Session, since: datetime, from_email_hash: Optional[str] = None,
                          ip_hash: Optional[str] = None, artist_id: Optional[str] = None) -> int:
    """Count quota-consuming rows (accepted, sent, failed) since a point in time.

    Rejected and throttled rows never count, so a blocked sender cannot push
    their own counters up by retrying.
    """
    query = db.query(ContactMessage.id).filter(
        ContactMessage.status.in_(QUOTA_STATUSES),
        ContactMessage.created_at >= since,
    )
    if from_email_hash is not None:
        query = query.filter(ContactMessage.from_email_hash == from_email_hash)
    if ip_hash is not None:
        query = query.filter(ContactMessage.ip_hash == ip_hash)
    if artist_id is not None:
        query = query.filter(ContactMessage.artist_id == artist_id)
    return query.count()


def is_throttled(submission: _Submission, db: Session, settings: Settings) -> bool:
    """Compare the four 24h identity counters against their configured thresholds"""
    since = datetime.now(timezone.utc) - RATE_LIMIT_WINDOW
    artist_id = submission.artist.id

    email_count = count_recent_messages(db, since, from_email_hash=submission.from_email_hash)
    if email_count >= settings.CONTACT_MAX_PER_EMAIL_24H:
        return True

    email_artist_count = count_recent_messages(
        db, since, from_email_hash=submission.from_email_hash, artist_id=artist_id
    )
    if email_artist_count >= settings.CONTACT_MAX_PER_EMAIL_ARTIST_24H:
        return True

    if submission.ip_hash:
        ip_count = count_recent_messages(db, since, ip_hash=submission.ip_hash)
        if ip_count >= settings.CONTACT_MAX_PER_IP_24H:
            return True

        ip_artist_count = count_recent_messages(db, since, ip_hash=submission.ip_hash, artist_id=artist_id)
        if ip_artist_count >= settings.CONTACT_MAX_PER_IP_ARTIST_24H:
            return True

    return False


def submit_contact_message(
    payload: Any,
    sender: SenderContext,
    db: Session,
    settings: Settings
) -> Dict[str, Any]:
    """
    Run a contact-form submission through the full pipeline.

    Args:
        payload: Decoded JSON body
        sender: Client IP and user agent
        db: Database session
        settings: Application settings (pepper, thresholds, provider keys)

    Returns:
        The response body for a 200 reply ({"ok": True})

    Raises:
        ContactRequestError: 400 validation/CAPTCHA failures and the generic 404
    """
    request = parse_contact_payload(payload)

    captcha_ok, captcha_error = verify_turnstile(request.turnstile_token, sender.ip, settings)
    if not captcha_ok:
        logger.info(f"Contact rejected by CAPTCHA ({captcha_error})")
        raise ContactRequestError(400, "captcha_failed")

    artist = db.query(Artist).filter(Artist.handle == request.artist_handle).first()
    if not artist:
        raise ContactRequestError(404, CONTACT_UNAVAILABLE)

    from_email = normalize_email(request.from_email)
    pepper = settings.CONTACT_IDENTIFIER_PEPPER
    submission = _Submission(
        request=request,
        artist=artist,
        from_email=from_email,
        from_email_hash=hash_identifier(from_email, pepper),
        ip_hash=hash_identifier(sender.ip, pepper) if sender.ip else None,
        user_agent=sender.user_agent,
    )

    if is_blocklisted(artist.id, db, from_email_hash=submission.from_email_hash) or (
        submission.ip_hash and is_blocklisted(artist.id, db, ip_hash=submission.ip_hash)
    ):
        _record(submission, STATUS_REJECTED, db, error_code="blocked")
        logger.info(f"Blocklisted sender {submission.from_email_hash[:12]} for artist {artist.id}")
        return {"ok": True}

    limits = get_effective_limits(artist.auth_user_id, db)
    if not limits.can_receive_contact:
        _record(submission, STATUS_REJECTED, db, error_code=CONTACT_UNAVAILABLE)
        logger.info(f"Artist {artist.id} on plan '{limits.plan_key}' cannot receive contact")
        raise ContactRequestError(404, CONTACT_UNAVAILABLE)

    if is_throttled(submission, db, settings):
        _record(submission, STATUS_THROTTLED, db, error_code="rate_limited")
        logger.info(f"Throttled sender {submission.from_email_hash[:12]} for artist {artist.id}")
        return {"ok": True}

    row = _record(submission, STATUS_ACCEPTED, db)

    try:
        return _deliver(row, submission, db, settings)
    except Exception as e:
        db.rollback()
        _finish(row, STATUS_FAILED, db, error_code="delivery_error")
        logger.error(f"Delivery of contact message {row.id} aborted: {e}", exc_info=True)
        return {"ok": True}


def _deliver(row: ContactMessage, submission: _Submission, db: Session, settings: Settings) -> Dict[str, Any]:
    """Look up the recipient and send; moves the accepted row to sent or failed"""
    artist = submission.artist
    request = submission.request
    artist_email = get_auth_user_email(artist.auth_user_id, settings)
    if not artist_email:
        _finish(row, STATUS_FAILED, db, error_code="artist_email_missing")
        logger.error(f"No email on file for artist {artist.id}; message {row.id} not delivered")
        return {"ok": True}

    resend_id = send_contact_email(
        artist_email=artist_email,
        artist_handle=artist.handle,
        from_name=request.from_name,
        from_email=submission.from_email,
        subject=request.subject,
        message=request.message,
        settings=settings,
    )

    if not resend_id:
        _finish(row, STATUS_FAILED, db, error_code="resend_failed")
        logger.warning(f"Delivery failed for contact message {row.id}")
        return {"ok": True}

    _finish(row, STATUS_SENT, db, resend_id=resend_id)
    logger.info(f"Contact message {row.id} delivered to artist {artist.id} (resend id: {resend_id})")
    return {"ok": True}
