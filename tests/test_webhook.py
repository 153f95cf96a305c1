"""
Tests for the Stripe webhook endpoint.

Covers:
- Signature verification and malformed payloads
- Payment booking and duplicate deliveries
- Subscription creation, renewal and status events
- Acknowledged-but-flagged events (missing metadata, invalid amount, invalid period)
- Payment intents raised by subscription invoices
- Redelivery requests (subscription not yet created)
"""

import logging
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from factories import (
    NEXT_PERIOD_END,
    PERIOD_START,
    WEBHOOK_SECRET,
    charge,
    checkout_session,
    encode,
    envelope,
    invoice,
    payment_intent,
    sign,
    subscription,
)
from redetour.models import (
    Commission,
    IssueKind,
    LedgerIssue,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)

WEBHOOK_URL = "/api/stripe/webhook"


async def post_event(client, event, secret=WEBHOOK_SECRET):
    payload = encode(event)
    return await client.post(
        WEBHOOK_URL,
        content=payload,
        headers={"Stripe-Signature": sign(payload, secret), "Content-Type": "application/json"},
    )


async def count(db, model):
    return await db.scalar(select(func.count()).select_from(model))


# ── Verification ──────────────────────────────────────────


class TestVerification:
    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client, db_session):
        event = envelope("evt_1", "payment_intent.succeeded", payment_intent())
        response = await post_event(client, event, secret="whsec_wrong")

        assert response.status_code == 400
        assert "error" in response.json()
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, client):
        payload = encode(envelope("evt_1", "payment_intent.succeeded", payment_intent()))
        response = await client.post(WEBHOOK_URL, content=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_tampered_payload_rejected(self, client, db_session):
        payload = encode(envelope("evt_1", "payment_intent.succeeded", payment_intent()))
        header = sign(payload, WEBHOOK_SECRET)
        tampered = payload.replace(b"10000", b"1")
        response = await client.post(WEBHOOK_URL, content=tampered, headers={"Stripe-Signature": header})

        assert response.status_code == 400
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_stale_signature_rejected(self, client):
        payload = encode(envelope("evt_1", "payment_intent.succeeded", payment_intent()))
        header = sign(payload, WEBHOOK_SECRET, timestamp=1000000000)
        response = await client.post(WEBHOOK_URL, content=payload, headers={"Stripe-Signature": header})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self, client):
        payload = b"{not json"
        response = await client.post(
            WEBHOOK_URL, content=payload, headers={"Stripe-Signature": sign(payload, WEBHOOK_SECRET)}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_event_acknowledged(self, client, db_session):
        response = await post_event(client, envelope("evt_1", "customer.created", {"id": "cus_1"}))

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": False}
        assert await count(db_session, Transaction) == 0


# ── Payments ──────────────────────────────────────────────


class TestPayments:
    @pytest.mark.asyncio
    async def test_payment_succeeded_books_sale(self, client, db_session):
        response = await post_event(client, envelope("evt_1", "payment_intent.succeeded", payment_intent()))

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": True}

        tx = await db_session.scalar(select(Transaction))
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.valor == Decimal("100.00")
        assert tx.taxa_gateway == Decimal("2.90")
        assert tx.valor_liquido == Decimal("97.10")
        assert tx.gateway_event_id == "pi_1"
        assert tx.descricao == "Pagamento via card"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_books_once(self, client, db_session):
        event = envelope("evt_1", "payment_intent.succeeded", payment_intent())
        first = await post_event(client, event)
        second = await post_event(client, event)

        assert first.status_code == second.status_code == 200
        assert await count(db_session, Transaction) == 1

    @pytest.mark.asyncio
    async def test_checkout_and_intent_book_one_sale(self, client, db_session):
        metadata = {"userId": "user-1", "afiliadoId": "aff-1", "productType": "passeio", "vendaId": "venda-1"}
        await post_event(client, envelope(
            "evt_1", "checkout.session.completed", checkout_session(metadata=metadata)
        ))
        await post_event(client, envelope(
            "evt_2", "payment_intent.succeeded", payment_intent(metadata=metadata)
        ))

        assert await count(db_session, Transaction) == 1
        commission = await db_session.scalar(select(Commission))
        assert commission.valor_comissao == Decimal("15.00")
        assert commission.afiliado_id == "aff-1"
        assert commission.venda_id == "venda-1"

    @pytest.mark.asyncio
    async def test_unpaid_checkout_waits_for_intent(self, client, db_session):
        response = await post_event(client, envelope(
            "evt_1", "checkout.session.completed", checkout_session(payment_status="unpaid")
        ))
        assert response.status_code == 200
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_payment_failed(self, client, db_session):
        obj = payment_intent(last_payment_error={"message": "Your card was declined."})
        response = await post_event(client, envelope("evt_f1", "payment_intent.payment_failed", obj))

        assert response.status_code == 200
        tx = await db_session.scalar(select(Transaction))
        assert tx.status == TransactionStatus.FAILED
        assert tx.taxa_gateway == Decimal("0")
        assert tx.valor_liquido == Decimal("0")
        assert tx.descricao == "Pagamento falhou: Your card was declined."
        assert await count(db_session, Commission) == 0

    @pytest.mark.asyncio
    async def test_charge_refunded(self, client, db_session):
        await post_event(client, envelope("evt_1", "payment_intent.succeeded", payment_intent()))
        response = await post_event(client, envelope("evt_r1", "charge.refunded", charge()))

        assert response.status_code == 200
        refund = await db_session.scalar(
            select(Transaction).where(Transaction.tipo_transacao == TransactionType.REFUND)
        )
        assert refund.valor == Decimal("100.00")
        assert refund.gateway_event_id == "evt_r1"


# ── Flagged events ────────────────────────────────────────


class TestFlaggedEvents:
    @pytest.mark.asyncio
    async def test_missing_user_id_acknowledged_and_flagged(self, client, db_session, caplog):
        event = envelope("evt_1", "payment_intent.succeeded", payment_intent(metadata={}))
        with caplog.at_level(logging.ERROR, logger="redetour.services.webhook"):
            response = await post_event(client, event)

        assert response.status_code == 200
        assert response.json()["handled"] is False
        assert await count(db_session, Transaction) == 0

        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.MISSING_METADATA
        assert issue.gateway_event_id == "evt_1"
        assert issue.event_type == "payment_intent.succeeded"
        assert issue.details == {"missing": ["userId"]}
        assert any("missing metadata" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_repeated_flag_bumps_attempts(self, client, db_session):
        event = envelope("evt_1", "payment_intent.succeeded", payment_intent(metadata={}))
        await post_event(client, event)
        await post_event(client, event)

        issues = (await db_session.execute(select(LedgerIssue))).scalars().all()
        assert len(issues) == 1
        assert issues[0].attempts == 2

    @pytest.mark.asyncio
    async def test_negative_amount_flagged(self, client, db_session):
        event = envelope("evt_1", "payment_intent.succeeded", payment_intent(amount=-500))
        response = await post_event(client, event)

        assert response.status_code == 200
        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.INVALID_AMOUNT
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_malformed_object_flagged(self, client, db_session):
        obj = payment_intent()
        del obj["amount"]
        response = await post_event(client, envelope("evt_1", "payment_intent.succeeded", obj))

        assert response.status_code == 200
        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.MISSING_METADATA


# ── Subscriptions ─────────────────────────────────────────


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    async def test_subscription_checkout_and_created_event_book_once(self, client, db_session, gateway):
        gateway.subscriptions["sub_1"] = subscription(metadata={})
        metadata = {"userId": "user-1", "planoId": "plan-1", "interval": "month", "afiliadoId": "aff-1"}

        first = await post_event(client, envelope(
            "evt_1", "checkout.session.completed",
            checkout_session(mode="subscription", metadata=metadata),
        ))
        assert first.json() == {"received": True, "handled": True}
        assert await count(db_session, Subscription) == 1
        assert await count(db_session, Transaction) == 1

        second = await post_event(client, envelope(
            "evt_2", "customer.subscription.created", subscription(metadata=metadata),
        ))

        assert first.status_code == second.status_code == 200
        assert await count(db_session, Subscription) == 1
        assert await count(db_session, Transaction) == 1

        commission = await db_session.scalar(select(Commission))
        assert commission.valor_comissao == Decimal("30.00")
        assert commission.percentual_comissao == Decimal("30")

    @pytest.mark.asyncio
    async def test_subscription_without_plan_flagged(self, client, db_session):
        response = await post_event(client, envelope(
            "evt_1", "customer.subscription.created", subscription(metadata={"userId": "user-1"}),
        ))

        assert response.status_code == 200
        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.MISSING_METADATA
        assert await count(db_session, Subscription) == 0

    @pytest.mark.asyncio
    async def test_first_invoice_not_booked_again(self, client, db_session):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        response = await post_event(client, envelope(
            "evt_2", "invoice.payment_succeeded", invoice(in_id="in_1", billing_reason="subscription_create"),
        ))

        assert response.status_code == 200
        assert await count(db_session, Transaction) == 1

    @pytest.mark.asyncio
    async def test_renewal_books_payment(self, client, db_session):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        response = await post_event(client, envelope("evt_2", "invoice.payment_succeeded", invoice()))

        assert response.status_code == 200
        renewal = await db_session.scalar(
            select(Transaction).where(Transaction.gateway_event_id == "in_2")
        )
        assert renewal.tipo_transacao == TransactionType.SUBSCRIPTION
        assert renewal.descricao == "Renovação de assinatura"

    @pytest.mark.asyncio
    async def test_renewal_before_creation_asks_for_redelivery(self, client, db_session):
        response = await post_event(client, envelope("evt_1", "invoice.payment_succeeded", invoice()))

        assert response.status_code == 500
        assert await count(db_session, Transaction) == 0
        assert await count(db_session, LedgerIssue) == 0

    @pytest.mark.asyncio
    async def test_invoice_without_subscription_acknowledged(self, client, db_session):
        response = await post_event(client, envelope(
            "evt_1", "invoice.payment_succeeded", invoice(sub_id=None),
        ))
        assert response.status_code == 200
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_subscription_deleted(self, client, db_session):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        response = await post_event(client, envelope(
            "evt_2", "customer.subscription.deleted", subscription(status="canceled"),
        ))

        assert response.status_code == 200
        sub = await db_session.scalar(select(Subscription))
        assert sub.status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_subscription_past_due_suspends(self, client, db_session):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        await post_event(client, envelope(
            "evt_2", "customer.subscription.updated",
            subscription(status="past_due", cancel_at_period_end=True),
        ))

        sub = await db_session.scalar(select(Subscription))
        assert sub.status == SubscriptionStatus.SUSPENDED
        assert sub.cancelar_no_fim_do_periodo is True

    @pytest.mark.asyncio
    async def test_subscription_with_empty_period_flagged(self, client, db_session):
        response = await post_event(client, envelope(
            "evt_1", "customer.subscription.created",
            subscription(current_period_end=PERIOD_START),
        ))

        assert response.status_code == 200
        assert response.json()["handled"] is False
        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.INVALID_PERIOD
        assert issue.gateway_event_id == "evt_1"
        assert await count(db_session, Subscription) == 0
        assert await count(db_session, Transaction) == 0

    @pytest.mark.asyncio
    async def test_renewal_with_empty_period_flagged(self, client, db_session):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        response = await post_event(client, envelope(
            "evt_2", "invoice.payment_succeeded", invoice(start=NEXT_PERIOD_END, end=NEXT_PERIOD_END),
        ))

        assert response.status_code == 200
        issue = await db_session.scalar(select(LedgerIssue))
        assert issue.kind == IssueKind.INVALID_PERIOD
        assert await count(db_session, Transaction) == 1


# ── Invoice-backed payment intents ────────────────────────


class TestInvoicePaymentIntents:
    @pytest.mark.asyncio
    async def test_succeeded_intent_of_invoice_not_booked(self, client, db_session):
        obj = payment_intent(pi_id="pi_inv", metadata={}, invoice="in_1")
        response = await post_event(client, envelope("evt_1", "payment_intent.succeeded", obj))

        assert response.status_code == 200
        assert response.json()["handled"] is True
        assert await count(db_session, Transaction) == 0
        assert await count(db_session, LedgerIssue) == 0

    @pytest.mark.asyncio
    async def test_failed_renewal_charge_booked_on_subscription(self, client, db_session, gateway):
        await post_event(client, envelope("evt_1", "customer.subscription.created", subscription()))
        gateway.invoices["in_3"] = invoice(in_id="in_3")

        obj = payment_intent(
            pi_id="pi_renewal",
            metadata={},
            invoice="in_3",
            last_payment_error={"message": "Your card has insufficient funds."},
        )
        response = await post_event(client, envelope("evt_2", "payment_intent.payment_failed", obj))

        assert response.status_code == 200
        assert await count(db_session, LedgerIssue) == 0
        sub = await db_session.scalar(select(Subscription))
        failure = await db_session.scalar(
            select(Transaction).where(Transaction.status == TransactionStatus.FAILED)
        )
        assert failure.user_id == "user-1"
        assert failure.assinatura_id == sub.id
        assert failure.tipo_transacao == TransactionType.SUBSCRIPTION
        assert failure.stripe_transaction_id == "pi_renewal"
        assert failure.gateway_event_id == "evt_2"
        assert failure.descricao == "Pagamento falhou: Your card has insufficient funds."

    @pytest.mark.asyncio
    async def test_failed_charge_of_unknown_subscription_acknowledged(self, client, db_session, gateway):
        gateway.invoices["in_3"] = invoice(in_id="in_3", sub_id="sub_unknown")

        obj = payment_intent(pi_id="pi_renewal", metadata={}, invoice="in_3")
        response = await post_event(client, envelope("evt_1", "payment_intent.payment_failed", obj))

        assert response.status_code == 200
        assert await count(db_session, Transaction) == 0
        assert await count(db_session, LedgerIssue) == 0
