"""Checkout session endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.auth.dependencies import CurrentUser, get_current_user
from redetour.db import get_db
from redetour.errors import GatewayError, PlanNotFoundError, PlanPriceNotConfiguredError
from redetour.schemas.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    SubscriptionCheckoutRequest,
)
from redetour.services.checkout import CheckoutService
from redetour.services.gateway import StripeGateway, get_gateway

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    data: CheckoutSessionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    current_user: CurrentUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """Create a one-off checkout session for the current user."""
    service = CheckoutService(db, gateway)
    try:
        return await service.create_checkout_session(current_user, data, idempotency_key)
    except GatewayError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Erro ao criar sessão de checkout",
        )


@router.post("/subscription", response_model=CheckoutSessionResponse)
async def create_subscription_checkout_session(
    data: SubscriptionCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    current_user: CurrentUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """Create a subscription checkout session for a plan."""
    service = CheckoutService(db, gateway)
    try:
        return await service.create_subscription_checkout_session(
            current_user, data, idempotency_key
        )
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PlanPriceNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except GatewayError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Erro ao criar sessão de assinatura",
        )
