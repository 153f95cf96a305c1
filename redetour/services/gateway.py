"""
Stripe gateway adapter.

The stripe SDK is blocking, so API calls run in a worker thread.
Webhook signatures are checked with the SDK's own verifier.
"""

import asyncio
import logging
from typing import Any, Optional

import stripe

from redetour.config import settings
from redetour.errors import GatewayError, SignatureVerificationError

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Thin async wrapper over the stripe SDK.

    StripeObjects are converted to plain dicts before they leave the adapter.
    """

    name = "stripe"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        api_version: Optional[str] = None,
        tolerance: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.tolerance = tolerance

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> None:
        """
        Check the Stripe-Signature header against the raw body.

        Raises:
            SignatureVerificationError: header missing, malformed, stale or wrong
        """
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret is not configured")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(str(e)) from e
        except UnicodeDecodeError as e:
            raise SignatureVerificationError("Payload is not valid UTF-8") from e

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch the full subscription object (period, price, customer)."""
        subscription = await asyncio.to_thread(
            stripe.Subscription.retrieve,
            subscription_id,
            api_key=self.api_key,
            stripe_version=self.api_version,
        )
        return subscription.to_dict()

    async def retrieve_invoice(self, invoice_id: str) -> dict[str, Any]:
        """Fetch an invoice, to find the subscription a payment intent belongs to."""
        invoice = await asyncio.to_thread(
            stripe.Invoice.retrieve,
            invoice_id,
            api_key=self.api_key,
            stripe_version=self.api_version,
        )
        return invoice.to_dict()

    async def create_checkout_session(
        self,
        idempotency_key: Optional[str] = None,
        **params: Any,
    ) -> dict[str, Any]:
        """Create a Checkout Session."""
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                stripe_version=self.api_version,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise GatewayError(str(e)) from e
        logger.info(f"Checkout session {session.id} created (mode={session.mode})")
        return session.to_dict()


def get_gateway() -> StripeGateway:
    """FastAPI dependency; override it in tests with a fake gateway."""
    return StripeGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        api_version=settings.stripe_api_version,
        tolerance=settings.stripe_webhook_tolerance,
    )
