"""
Stripe webhook dispatcher.

One delivery at a time:
received -> verified -> classified -> dispatched -> acknowledged

- Bad signature: 400, nothing processed (Stripe stops retrying)
- Unknown event type: 200, no action
- Missing metadata / invalid amount / invalid period: 200, flagged in ledger_issues
  (redelivery cannot fix upstream data)
- Subscription not found / store failure / anything unexpected: 500,
  Stripe redelivers and the idempotency key absorbs the retry

The response is only produced after the ledger write has finished.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.config import settings
from redetour.errors import (
    InvalidAmountError,
    InvalidPeriodError,
    LedgerWriteError,
    MissingMetadataError,
    SignatureVerificationError,
    SubscriptionNotFoundError,
    UnknownEventTypeError,
)
from redetour.models import BillingInterval, IssueKind, SubscriptionStatus
from redetour.schemas.events import (
    ChargeRefunded,
    CheckoutSessionCompleted,
    GatewayEvent,
    GatewayObject,
    InvoiceObject,
    InvoicePaid,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionObject,
    SubscriptionUpdated,
    decode_event,
)
from redetour.services.commission import CommissionCalculator, amount_from_minor_units
from redetour.services.gateway import StripeGateway
from redetour.services.ledger import LedgerWriter
from redetour.utils.issues import flag_issue

logger = logging.getLogger(__name__)

# Metadata keys written by the checkout builder
META_USER_ID = "userId"
META_AFFILIATE_ID = "afiliadoId"
META_PRODUCT_ID = "productId"
META_PRODUCT_TYPE = "productType"
META_SALE_ID = "vendaId"
META_PLAN_ID = "planoId"
META_INTERVAL = "interval"

# Stripe subscription status -> local status
SUBSCRIPTION_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.SUSPENDED,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "paused": SubscriptionStatus.SUSPENDED,
    "incomplete": SubscriptionStatus.SUSPENDED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "canceled": SubscriptionStatus.CANCELLED,
}


@dataclass
class WebhookResult:
    """HTTP answer for one delivery."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def acknowledged(cls, handled: bool = True) -> "WebhookResult":
        return cls(200, {"received": True, "handled": handled})

    @classmethod
    def bad_request(cls, error: str) -> "WebhookResult":
        return cls(400, {"error": error})

    @classmethod
    def retry(cls, error: str) -> "WebhookResult":
        return cls(500, {"error": error})


def require_metadata(event_type: str, source: GatewayObject, *keys: str) -> list[str]:
    """Values of required metadata keys, in order."""
    missing = [key for key in keys if source.meta(key) is None]
    if missing:
        raise MissingMetadataError(event_type, missing)
    return [source.meta(key) for key in keys]


class WebhookDispatcher:
    """Verifies, classifies and books one gateway event."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        calculator: CommissionCalculator,
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = LedgerWriter(db, calculator)
        self.handlers = {
            CheckoutSessionCompleted: self.on_checkout_completed,
            PaymentIntentSucceeded: self.on_payment_succeeded,
            PaymentIntentFailed: self.on_payment_failed,
            SubscriptionCreated: self.on_subscription_created,
            SubscriptionUpdated: self.on_subscription_updated,
            SubscriptionDeleted: self.on_subscription_deleted,
            InvoicePaid: self.on_invoice_paid,
            ChargeRefunded: self.on_charge_refunded,
        }

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process one raw delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header value

        Returns:
            WebhookResult with the status code and JSON body to answer with
        """
        try:
            self.gateway.verify_signature(payload, signature)
        except SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            return WebhookResult.bad_request(f"Signature verification failed: {e}")

        try:
            envelope = json.loads(payload)
        except ValueError:
            logger.warning("Webhook payload is not valid JSON")
            return WebhookResult.bad_request("Invalid JSON payload")
        if not isinstance(envelope, dict):
            return WebhookResult.bad_request("Invalid event envelope")

        event_id = envelope.get("id")
        event_type = envelope.get("type")
        logger.info(f"Webhook event received: {event_type} ({event_id})")

        try:
            event = decode_event(envelope)
            await self.dispatch(event)
        except UnknownEventTypeError:
            logger.info(f"Webhook event not handled: {event_type} ({event_id})")
            return WebhookResult.acknowledged(handled=False)
        except ValidationError as e:
            logger.error(f"Malformed {event_type} event {event_id}: {e}")
            await self._flag(IssueKind.MISSING_METADATA, event_id, event_type, str(e))
            return WebhookResult.acknowledged(handled=False)
        except MissingMetadataError as e:
            logger.error(f"{e} (event {event_id}); acknowledged for manual reconciliation")
            await self._flag(
                IssueKind.MISSING_METADATA, event_id, event_type, str(e),
                details={"missing": e.missing},
            )
            return WebhookResult.acknowledged(handled=False)
        except InvalidAmountError as e:
            logger.error(f"Invalid amount in {event_type} event {event_id}: {e}")
            await self._flag(
                IssueKind.INVALID_AMOUNT, event_id, event_type, str(e),
                details={"amount": str(e.amount)},
            )
            return WebhookResult.acknowledged(handled=False)
        except InvalidPeriodError as e:
            logger.error(f"Invalid billing period in {event_type} event {event_id}: {e}")
            await self._flag(
                IssueKind.INVALID_PERIOD, event_id, event_type, str(e),
                details={"start": str(e.period_start), "end": str(e.period_end)},
            )
            return WebhookResult.acknowledged(handled=False)
        except SubscriptionNotFoundError as e:
            logger.warning(f"{e} while processing {event_type} ({event_id}); asking for redelivery")
            return WebhookResult.retry(str(e))
        except LedgerWriteError as e:
            logger.error(f"Ledger write failed for {event_type} ({event_id}): {e}")
            return WebhookResult.retry("Ledger write failed")
        except Exception:
            logger.exception(f"Error processing webhook {event_type} ({event_id})")
            return WebhookResult.retry("Error processing event")

        logger.info(f"Webhook event processed: {event_type} ({event_id})")
        return WebhookResult.acknowledged()

    async def dispatch(self, event: GatewayEvent) -> None:
        handler = self.handlers.get(type(event))
        if handler is None:
            raise UnknownEventTypeError(event.type)
        await handler(event)

    # ── Payments ──────────────────────────────────────────

    async def on_checkout_completed(self, event: CheckoutSessionCompleted) -> None:
        session = event.session
        (user_id,) = require_metadata(event.type, session, META_USER_ID)

        if session.mode == "subscription" and session.subscription:
            subscription = SubscriptionObject.model_validate(
                await self.gateway.retrieve_subscription(session.subscription)
            )
            await self._create_subscription(event, subscription, session)
            return

        if session.payment_status == "unpaid":
            # Delayed methods (boleto) are booked on payment_intent.succeeded
            logger.info(f"Checkout session {session.id} awaiting payment, nothing to book yet")
            return

        if not session.payment_intent:
            logger.info(f"Checkout session {session.id} has no payment to book")
            return

        await self.ledger.record_sale_payment(
            user_id=user_id,
            gross=amount_from_minor_units(session.amount_total),
            currency=session.currency or settings.currency,
            gateway=self.gateway.name,
            gateway_event_id=session.payment_intent,
            description="Pagamento via checkout",
            affiliate_id=session.meta(META_AFFILIATE_ID),
            sale_id=session.meta(META_SALE_ID),
            product_type=session.meta(META_PRODUCT_TYPE),
            stripe_transaction_id=session.payment_intent,
        )

    async def on_payment_succeeded(self, event: PaymentIntentSucceeded) -> None:
        intent = event.payment_intent
        if intent.invoice:
            # Subscription charges are booked from invoice.payment_succeeded
            logger.info(f"Payment intent {intent.id} belongs to invoice {intent.invoice}")
            return

        (user_id,) = require_metadata(event.type, intent, META_USER_ID)

        await self.ledger.record_sale_payment(
            user_id=user_id,
            gross=amount_from_minor_units(intent.amount),
            currency=intent.currency,
            gateway=self.gateway.name,
            gateway_event_id=intent.id,
            description=f"Pagamento via {intent.payment_method}",
            affiliate_id=intent.meta(META_AFFILIATE_ID),
            sale_id=intent.meta(META_SALE_ID),
            product_type=intent.meta(META_PRODUCT_TYPE),
            stripe_transaction_id=intent.id,
        )

    async def on_payment_failed(self, event: PaymentIntentFailed) -> None:
        intent = event.payment_intent
        if intent.invoice:
            await self._invoice_payment_failed(event)
            return

        (user_id,) = require_metadata(event.type, intent, META_USER_ID)

        # Each failed attempt is its own event; keyed on the event id
        await self.ledger.record_payment_failure(
            user_id=user_id,
            gross=amount_from_minor_units(intent.amount),
            currency=intent.currency,
            gateway=self.gateway.name,
            gateway_event_id=event.id,
            reason=intent.failure_reason,
            stripe_transaction_id=intent.id,
        )

    async def _invoice_payment_failed(self, event: PaymentIntentFailed) -> None:
        """Failed subscription charge, attributed through the invoice's subscription."""
        intent = event.payment_intent
        invoice = InvoiceObject.model_validate(
            await self.gateway.retrieve_invoice(intent.invoice)
        )
        subscription = None
        if invoice.subscription_id:
            subscription = await self.ledger.find_subscription(invoice.subscription_id)
        if subscription is None:
            logger.warning(
                f"Failed payment {intent.id} of invoice {invoice.id} has no known "
                f"subscription ({invoice.subscription_id}), nothing to book"
            )
            return

        await self.ledger.record_payment_failure(
            user_id=subscription.user_id,
            gross=amount_from_minor_units(intent.amount),
            currency=intent.currency,
            gateway=self.gateway.name,
            gateway_event_id=event.id,
            reason=intent.failure_reason,
            stripe_transaction_id=intent.id,
            subscription_id=subscription.id,
        )

    async def on_charge_refunded(self, event: ChargeRefunded) -> None:
        charge = event.charge
        if not charge.payment_intent:
            logger.info(f"Refunded charge {charge.id} has no payment intent, nothing to book")
            return
        if event.refunded_now <= 0:
            logger.info(f"Charge {charge.id} refund event carries no new amount")
            return

        await self.ledger.record_refund(
            gateway=self.gateway.name,
            gateway_event_id=event.id,
            stripe_transaction_id=charge.payment_intent,
            amount=amount_from_minor_units(event.refunded_now),
            currency=charge.currency,
            reason="Reembolso de pagamento",
        )

    # ── Subscriptions ─────────────────────────────────────

    async def on_subscription_created(self, event: SubscriptionCreated) -> None:
        await self._create_subscription(event, event.subscription, event.subscription)

    async def on_subscription_updated(self, event: SubscriptionUpdated) -> None:
        subscription = event.subscription
        status = SUBSCRIPTION_STATUS_MAP.get(subscription.status)
        if status is None:
            logger.info(
                f"Subscription {subscription.id} has unmapped status "
                f"{subscription.status!r}, left unchanged"
            )
            return
        await self.ledger.record_subscription_status(
            subscription.id, status, subscription.cancel_at_period_end
        )

    async def on_subscription_deleted(self, event: SubscriptionDeleted) -> None:
        await self.ledger.record_subscription_status(
            event.subscription.id, SubscriptionStatus.CANCELLED
        )

    async def on_invoice_paid(self, event: InvoicePaid) -> None:
        invoice = event.invoice
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info(f"Invoice {invoice.id} is not a subscription invoice")
            return
        if invoice.billing_reason == "subscription_create":
            # First invoice; already booked when the subscription was created
            logger.info(f"Invoice {invoice.id} is the first invoice of {subscription_id}")
            return

        period_start, period_end = invoice.period
        if period_start is None or period_end is None:
            raise MissingMetadataError(event.type, ["period_start", "period_end"])

        await self.ledger.record_subscription_renewal(
            gateway_subscription_id=subscription_id,
            period_start=period_start,
            period_end=period_end,
            amount_paid=amount_from_minor_units(invoice.amount_paid),
            gateway_invoice_id=invoice.id,
            currency=invoice.currency,
            gateway=self.gateway.name,
        )

    async def _create_subscription(
        self,
        event: GatewayEvent,
        subscription: SubscriptionObject,
        source: GatewayObject,
    ) -> None:
        """
        Book a new subscription.

        Args:
            event: Event being processed
            subscription: Full subscription object
            source: Object whose metadata identifies user, plan and affiliate
        """
        user_id, plan_id = require_metadata(event.type, source, META_USER_ID, META_PLAN_ID)

        interval = source.meta(META_INTERVAL) or subscription.interval
        try:
            interval = BillingInterval.from_gateway(interval or "")
        except ValueError:
            raise MissingMetadataError(event.type, [META_INTERVAL]) from None

        period_start, period_end = subscription.period
        if period_start is None or period_end is None:
            raise MissingMetadataError(event.type, ["current_period_start", "current_period_end"])

        await self.ledger.record_subscription_created(
            user_id=user_id,
            plan_id=plan_id,
            interval=interval,
            gateway_subscription_id=subscription.id,
            gateway_customer_id=subscription.customer,
            period_start=period_start,
            period_end=period_end,
            amount=amount_from_minor_units(subscription.amount),
            affiliate_id=source.meta(META_AFFILIATE_ID),
            currency=subscription.currency or settings.currency,
            gateway=self.gateway.name,
        )

    # ── Issues ────────────────────────────────────────────

    async def _flag(
        self,
        kind: IssueKind,
        event_id: Optional[str],
        event_type: Optional[str],
        error: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Register an acknowledged-but-unbooked event for operators."""
        await self.db.rollback()
        await flag_issue(
            self.db,
            kind,
            gateway=self.gateway.name,
            gateway_event_id=event_id,
            event_type=event_type,
            details=details,
            error_message=error,
        )
        await self.db.commit()
