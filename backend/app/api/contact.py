"""Contact-artist function route"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.security import get_client_ip
from app.db.session import get_db
from app.schemas.contact import ContactErrorResponse, ContactResponse
from app.services.contact_service import ContactRequestError, SenderContext, submit_contact_message

router = APIRouter(prefix="/functions/v1", tags=["contact"])
logger = logging.getLogger("contact")


@router.post(
    "/contact-artist",
    response_model=ContactResponse,
    responses={400: {"model": ContactErrorResponse}, 404: {"model": ContactErrorResponse}}
)
async def contact_artist(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """Send a message to an artist through the contact form.

    Blocked and throttled senders receive the same 200 {ok: true} as a delivered message.
    """
    try:
        payload = json.loads(await request.body())
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "invalid_json"})

    sender = SenderContext(
        ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent")
    )

    try:
        result = await run_in_threadpool(submit_contact_message, payload, sender, db, settings)
    except ContactRequestError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.error_code})
    except Exception as e:
        logger.error(f"Unexpected error handling contact submission: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    return result
