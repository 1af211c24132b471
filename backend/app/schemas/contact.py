"""Pydantic schemas for the contact-artist function"""
import re

from pydantic import BaseModel, ConfigDict, field_validator

from app.utils.templates import strip_newlines

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def js_length(value: str) -> int:
    """Length in UTF-16 code units, the unit browser form limits count in"""
    return len(value.encode("utf-16-le", "surrogatepass")) // 2


# Field -> error code returned to the client, in validation order
CONTACT_ERROR_CODES = {
    "artist_handle": "invalid_artist",
    "from_name": "invalid_name",
    "from_email": "invalid_email",
    "subject": "invalid_subject",
    "message": "invalid_message",
    "turnstile_token": "missing_captcha",
}


class ContactRequest(BaseModel):
    """Contact form submission. Every field is coerced to a trimmed string."""
    # Missing keys must still fail their field validator
    model_config = ConfigDict(validate_default=True)

    artist_handle: str = ""
    from_name: str = ""
    from_email: str = ""
    subject: str = ""
    message: str = ""
    turnstile_token: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_trimmed_string(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("artist_handle")
    @classmethod
    def validate_artist_handle(cls, v):
        if not v or js_length(v) > 64:
            raise ValueError("artist handle must be 1-64 characters")
        return v

    @field_validator("from_name")
    @classmethod
    def validate_from_name(cls, v):
        # Newlines are removed, not rejected: the name ends up in a header
        v = strip_newlines(v)
        if not v or js_length(v) > 120:
            raise ValueError("name must be 1-120 characters")
        return v

    @field_validator("from_email")
    @classmethod
    def validate_from_email(cls, v):
        if not v or js_length(v) > 320 or not EMAIL_PATTERN.match(v):
            raise ValueError("invalid email address")
        return v

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v):
        v = strip_newlines(v)
        if not v or js_length(v) > 160:
            raise ValueError("subject must be 1-160 characters")
        return v

    @field_validator("message")
    @classmethod
    def validate_message(cls, v):
        if js_length(v) < 10:
            raise ValueError("message must be at least 10 characters")
        if js_length(v) > 4000:
            raise ValueError("message must be no more than 4000 characters")
        return v

    @field_validator("turnstile_token")
    @classmethod
    def validate_turnstile_token(cls, v):
        if not v:
            raise ValueError("captcha token is required")
        return v


class ContactResponse(BaseModel):
    ok: bool = True


class ContactErrorResponse(BaseModel):
    error: str
