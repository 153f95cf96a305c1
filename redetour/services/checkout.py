"""
Checkout session builder.

Writes the metadata the webhook dispatcher later reads back (userId,
afiliadoId, productId, productType, vendaId, planoId, interval). The same
metadata is copied onto the payment intent or the subscription, so every
event of the payment carries it.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from redetour.auth.dependencies import CurrentUser
from redetour.config import settings
from redetour.errors import PlanNotFoundError, PlanPriceNotConfiguredError
from redetour.models import BillingInterval, SubscriptionPlan
from redetour.schemas.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    SubscriptionCheckoutRequest,
)
from redetour.services.gateway import StripeGateway

logger = logging.getLogger(__name__)

PLATFORM = "redetour"
PAYMENT_METHODS = ["card", "boleto"]


def to_minor_units(price: Decimal) -> int:
    return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_metadata(values: dict[str, Optional[str]]) -> dict[str, str]:
    """Stripe metadata values are strings; absent values are dropped."""
    return {key: str(value) for key, value in values.items() if value not in (None, "")}


class CheckoutService:
    """Creates Stripe Checkout Sessions on behalf of the current user."""

    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    async def create_checkout_session(
        self,
        user: CurrentUser,
        request: CheckoutSessionRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """One-off payment for one or more catalog items."""
        line_items = []
        for item in request.items:
            product_data = {
                "name": item.name,
                "metadata": clean_metadata({
                    "productId": item.product_id,
                    "productType": item.product_type.value if item.product_type else None,
                    "userId": user.id,
                }),
            }
            if item.description:
                product_data["description"] = item.description
            if item.image:
                product_data["images"] = [item.image]

            line_items.append({
                "price_data": {
                    "currency": settings.currency.lower(),
                    "product_data": product_data,
                    "unit_amount": to_minor_units(item.price),
                },
                "quantity": item.quantity,
            })

        # The sale is attributed to the first item carrying a product type
        primary = next((i for i in request.items if i.product_type), request.items[0])
        metadata = clean_metadata({
            **request.metadata,
            "userId": user.id,
            "afiliadoId": request.affiliate_id,
            "productId": primary.product_id,
            "productType": primary.product_type.value if primary.product_type else None,
            "vendaId": request.sale_id,
            "type": "payment",
        })

        session = await self.gateway.create_checkout_session(
            idempotency_key=idempotency_key,
            mode="payment",
            payment_method_types=PAYMENT_METHODS,
            line_items=line_items,
            success_url=request.success_url or settings.success_url,
            cancel_url=request.cancel_url or settings.cancel_url,
            customer_email=request.customer_email or user.email,
            metadata={**metadata, "platform": PLATFORM},
            payment_intent_data={"metadata": metadata},
            locale=settings.locale,
        )
        return CheckoutSessionResponse(session_id=session["id"], url=session["url"])

    async def create_subscription_checkout_session(
        self,
        user: CurrentUser,
        request: SubscriptionCheckoutRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """
        Subscription to a plan at the requested interval.

        Raises:
            PlanNotFoundError: unknown or inactive plan
            PlanPriceNotConfiguredError: plan has no price for the interval
        """
        plan = await self.db.get(SubscriptionPlan, request.plan_id)
        if plan is None or not plan.ativo:
            raise PlanNotFoundError(request.plan_id)

        interval = BillingInterval.from_gateway(request.interval)
        price_id = plan.price_id_for(interval)
        if not price_id:
            raise PlanPriceNotConfiguredError(
                f"Plan {plan.id} has no Stripe price for interval {interval.value}"
            )

        metadata = clean_metadata({
            "userId": user.id,
            "planoId": plan.id,
            "interval": interval.gateway_value,
            "afiliadoId": request.affiliate_id,
            "type": "subscription",
        })

        session = await self.gateway.create_checkout_session(
            idempotency_key=idempotency_key,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=request.success_url or settings.success_url,
            cancel_url=request.cancel_url or settings.cancel_url,
            customer_email=request.customer_email or user.email,
            metadata={**metadata, "platform": PLATFORM},
            subscription_data={"metadata": metadata},
            locale=settings.locale,
        )
        logger.info(f"Subscription checkout for plan {plan.id} ({interval.value}) by {user.id}")
        return CheckoutSessionResponse(session_id=session["id"], url=session["url"])
