"""Email service - transactional email through Resend"""
import logging
from typing import Optional, List, Union

import resend

from app.core.config import Settings
from app.utils.templates import build_contact_subject, render_contact_html, render_contact_text

logger = logging.getLogger(__name__)


def validate_email_config(settings: Settings) -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.RESEND_API_KEY:
        return False, "RESEND_API_KEY is not set in environment variables"

    if not settings.CONTACT_FROM_EMAIL:
        return False, "CONTACT_FROM_EMAIL is not set in environment variables"

    return True, ""

def _send_email(
    to: Union[str, List[str]],
    subject: str,
    html: str,
    text: str,
    reply_to: Optional[str],
    settings: Settings
) -> Optional[str]:
    """
    Internal helper function to send email via Resend API.

    Returns:
        The Resend message id on success, None on failure
    """
    is_valid, error = validate_email_config(settings)
    if not is_valid:
        logger.warning(f"{error}; skipping email")
        return None

    params = {
        "from": f"Sun Road <{settings.CONTACT_FROM_EMAIL}>",
        "to": to if isinstance(to, list) else [to],
        "subject": subject,
        "html": html,
        "text": text,
    }
    if reply_to:
        params["reply_to"] = reply_to

    try:
        resend.api_key = settings.RESEND_API_KEY
        response = resend.Emails.send(params)
    except Exception as exc:
        logger.error(f"Failed to send email via Resend: {exc}", exc_info=True)
        return None

    # Resend returns dict with 'id' field on success; handle both dict and object responses
    email_id = None
    if isinstance(response, dict):
        email_id = response.get('id')
    elif hasattr(response, 'id'):
        email_id = response.id

    if not email_id:
        logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
        return None

    logger.info(f"Email sent successfully (id: {email_id})")
    return email_id

def send_contact_email(
    artist_email: str,
    artist_handle: str,
    from_name: str,
    from_email: str,
    subject: str,
    message: str,
    settings: Settings
) -> Optional[str]:
    """
    Deliver a contact-form message to an artist.

    The recipient can answer the sender directly through reply_to; the sender never
    learns the recipient's address.

    Args:
        artist_email: Recipient address from the admin identity lookup
        artist_handle: Used to build the profile link
        from_name: Sender name (newlines already stripped)
        from_email: Normalized sender address
        subject: Sender subject (newlines already stripped)
        message: Message body as submitted
        settings: Application settings

    Returns:
        Resend message id on success, None on failure
    """
    site_url = settings.PUBLIC_SITE_URL.rstrip("/")
    profile_url = f"{site_url}/artists/{artist_handle}"

    html = render_contact_html(
        from_name=from_name,
        from_email=from_email,
        subject=subject,
        message=message,
        profile_url=profile_url,
        logo_url=f"{site_url}/assets/img/sunroad-logo.png",
    )
    text = render_contact_text(
        from_name=from_name,
        from_email=from_email,
        subject=subject,
        message=message,
        profile_url=profile_url,
    )

    return _send_email(
        to=artist_email,
        subject=build_contact_subject(from_name, from_email),
        html=html,
        text=text,
        reply_to=from_email,
        settings=settings,
    )
