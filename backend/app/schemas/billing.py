"""Pydantic schemas for billing"""
from pydantic import BaseModel
from typing import Optional


class CheckoutRequest(BaseModel):
    price_id: Optional[str] = None


class SessionUrlResponse(BaseModel):
    url: str
