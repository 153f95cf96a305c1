"""Pydantic schemas for requests, responses and gateway events."""

from redetour.schemas.checkout import (
    CheckoutItem,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    SubscriptionCheckoutRequest,
)
from redetour.schemas.events import decode_event

__all__ = [
    "CheckoutItem",
    "CheckoutSessionRequest",
    "CheckoutSessionResponse",
    "SubscriptionCheckoutRequest",
    "decode_event",
]
