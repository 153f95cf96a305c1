"""Checkout session schemas."""

from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from redetour.services.rates import ProductType


class CheckoutItem(BaseModel):
    """One line of a one-off checkout."""

    name: str = Field(..., max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    price: Decimal = Field(..., gt=0, description="Unit price in major units")
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    product_id: Optional[str] = None
    product_type: Optional[ProductType] = None


class CheckoutSessionRequest(BaseModel):
    """Create a one-off checkout session."""

    items: List[CheckoutItem] = Field(..., min_length=1)
    customer_email: Optional[str] = None
    affiliate_id: Optional[str] = None
    sale_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class SubscriptionCheckoutRequest(BaseModel):
    """Create a subscription checkout session."""

    plan_id: str
    interval: Literal["month", "year"]
    customer_email: Optional[str] = None
    affiliate_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str
