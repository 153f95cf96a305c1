"""Stripe webhook endpoint."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.db import get_db
from redetour.services.commission import CommissionCalculator
from redetour.services.gateway import StripeGateway, get_gateway
from redetour.services.rates import RateTable, get_rate_table
from redetour.services.webhook import WebhookDispatcher

router = APIRouter(prefix="/stripe", tags=["Webhooks"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    rates: RateTable = Depends(get_rate_table),
):
    """
    Receive a Stripe event.

    The raw body is verified against the Stripe-Signature header before
    anything is parsed. A 2xx is only returned once the event is booked
    (or deliberately acknowledged); Stripe redelivers on 5xx.
    """
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    dispatcher = WebhookDispatcher(db, gateway, CommissionCalculator(rates))
    result = await dispatcher.handle(payload, signature)
    return JSONResponse(status_code=result.status_code, content=result.body)
