"""Template utilities for contact notification emails"""
import re

SUBJECT_NAME_MAX_LENGTH = 40

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)


def escape_html(text: str) -> str:
    """Escape & < > " ' for safe interpolation into HTML (ampersand first)"""
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


def strip_newlines(text: str) -> str:
    """Remove CR and LF characters so the value cannot break a header line"""
    return text.replace("\r\n", "").replace("\n", "").replace("\r", "")


def make_text_safe_for_subject(text: str) -> str:
    """Replace < > & with spaces and collapse whitespace (subject lines are not HTML)"""
    cleaned = re.sub(r"[<>&]", " ", text)
    return re.sub(r"\s+", " ", cleaned).strip()


def build_contact_subject(from_name: str, from_email: str) -> str:
    """Email subject naming the sender; falls back to their address when the name sanitizes away"""
    safe_name = make_text_safe_for_subject(from_name)
    if len(safe_name) > SUBJECT_NAME_MAX_LENGTH:
        safe_name = safe_name[:SUBJECT_NAME_MAX_LENGTH].strip()
    return f"Sun Road: New message from {safe_name or from_email}"


def render_contact_text(
    from_name: str,
    from_email: str,
    subject: str,
    message: str,
    profile_url: str
) -> str:
    """Plain-text alternative. Not escaped; NUL characters are dropped from the message."""
    body = message.strip().replace("\0", "")
    return f"""New message via Sun Road

From: {from_name} <{from_email}>
Subject: {subject}
Profile: {profile_url}

{body}

---
Reply to this email to respond directly.
"""


def render_contact_html(
    from_name: str,
    from_email: str,
    subject: str,
    message: str,
    profile_url: str,
    logo_url: str
) -> str:
    """HTML body; every user-supplied value is escaped before interpolation"""
    safe_name = escape_html(from_name)
    safe_email = escape_html(from_email)
    safe_subject = escape_html(subject)
    safe_message = escape_html(message.strip())
    safe_profile_url = escape_html(profile_url)

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>
    .preheader {{ display: none !important; visibility: hidden; opacity: 0; color: transparent; height: 0; width: 0; }}
  </style>
</head>
<body style="margin: 0; padding: 0; background-color: #f5f5f5; font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif;">
  <div class="preheader">New message from {safe_name} via Sun Road.</div>
  <table role="presentation" style="width: 100%; border-collapse: collapse;">
    <tr>
      <td style="padding: 40px 20px;">
        <table role="presentation" style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border-collapse: collapse; border-radius: 8px; overflow: hidden;">
          <tr>
            <td style="padding: 40px 40px 30px; text-align: center;">
              <img src="{logo_url}" alt="Sun Road" width="120" style="display: block; margin: 0 auto; max-width: 120px; height: auto;">
            </td>
          </tr>
          <tr>
            <td style="padding: 0 40px 30px;">
              <h1 style="margin: 0 0 8px; font-size: 24px; font-weight: 600; color: #111827; line-height: 1.3;">New message from {safe_name}</h1>
              <p style="margin: 0 0 24px; font-size: 14px; color: #6b7280;">Sent via Sun Road</p>
              <p style="margin: 0 0 8px; font-size: 14px; color: #374151;"><strong style="color: #111827;">From:</strong> {safe_name} &lt;{safe_email}&gt;</p>
              <p style="margin: 0 0 8px; font-size: 14px; color: #374151;"><strong style="color: #111827;">Subject:</strong> {safe_subject}</p>
              <p style="margin: 0 0 24px; font-size: 14px; color: #374151;"><strong style="color: #111827;">Profile:</strong> <a href="{safe_profile_url}" style="color: #d97706; text-decoration: none;">{safe_profile_url}</a></p>
              <pre style="margin: 0; white-space: pre-wrap; border: 1px solid #e5e7eb; padding: 16px; border-radius: 6px; background-color: #f9fafb; font-size: 14px; line-height: 1.6; color: #111827; font-family: inherit;">{safe_message}</pre>
              <p style="margin: 24px 0 0; font-size: 13px; color: #6b7280;">Reply to this email to respond directly.</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""
