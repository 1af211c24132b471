"""Billing function routes: Stripe checkout, customer portal and webhook"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from app.core.security import require_supabase_user, resolve_base_url
from app.db.session import get_db
from app.schemas.billing import CheckoutRequest, SessionUrlResponse
from app.services.identity_service import AuthUser
from app.services.stripe_service import (
    create_checkout_session, create_portal_session,
    InvalidPriceError, NoCustomerError, ProfileIncompleteError
)
from app.services.subscription_service import process_stripe_webhook

router = APIRouter(prefix="/functions/v1", tags=["billing"])
logger = logging.getLogger("billing")


@router.post("/stripe-checkout", response_model=SessionUrlResponse)
async def stripe_checkout(
    request: Request,
    user: AuthUser = Depends(require_supabase_user),
    db: Session = Depends(get_db)
):
    """Create a Stripe Checkout session for a subscription upgrade"""
    try:
        body = json.loads(await request.body() or b"{}")
    except ValueError:
        body = {}
    checkout_request = CheckoutRequest.model_validate(body if isinstance(body, dict) else {})

    if not checkout_request.price_id:
        raise HTTPException(400, "Missing price_id")

    try:
        url = await run_in_threadpool(
            create_checkout_session, user, checkout_request.price_id, resolve_base_url(request), db
        )
    except InvalidPriceError:
        raise HTTPException(400, "Invalid price")
    except ProfileIncompleteError as e:
        return JSONResponse(
            status_code=400,
            content={"code": "PROFILE_INCOMPLETE", "missing": e.missing}
        )

    return {"url": url}


@router.post("/stripe-portal", response_model=SessionUrlResponse)
def stripe_portal(
    request: Request,
    user: AuthUser = Depends(require_supabase_user),
    db: Session = Depends(get_db)
):
    """Get Stripe customer portal URL"""
    try:
        url = create_portal_session(user.id, resolve_base_url(request), db)
    except NoCustomerError:
        raise HTTPException(400, "No customer")

    return {"url": url}


@router.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes; signature verification fails on re-serialized JSON.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    status_code, message = await run_in_threadpool(process_stripe_webhook, payload, sig_header, db)
    return PlainTextResponse(message, status_code=status_code)
