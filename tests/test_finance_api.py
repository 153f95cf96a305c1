"""
Tests for the finance read and admin endpoints.

Covers:
- Own transactions, commissions and subscriptions
- Admin summary totals
- Commission payout transitions
- Ledger issue listing and on-demand reconciliation
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from redetour.auth.jwt import UserRole, create_access_token
from redetour.models import Commission, IssueKind
from redetour.utils.issues import flag_issue


def auth_headers(user_id, role=UserRole.CLIENT):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


ADMIN = auth_headers("admin-1", UserRole.ADMIN)


async def seed(db, ledger):
    """Two sales (one referred), one failure, one subscription."""
    referred = await ledger.record_sale_payment(
        user_id="user-1",
        gross=Decimal("100.00"),
        currency="brl",
        gateway="stripe",
        gateway_event_id="pi_1",
        description="Pagamento via card",
        affiliate_id="aff-1",
        product_type="passeio",
    )
    await ledger.record_sale_payment(
        user_id="user-1",
        gross=Decimal("200.00"),
        currency="brl",
        gateway="stripe",
        gateway_event_id="pi_2",
        description="Pagamento via card",
    )
    await ledger.record_payment_failure(
        user_id="user-1",
        gross=Decimal("50.00"),
        currency="brl",
        gateway="stripe",
        gateway_event_id="evt_failed",
        reason="Cartão recusado",
    )
    await ledger.record_subscription_created(
        user_id="user-1",
        plan_id="plan-1",
        interval="month",
        gateway_subscription_id="sub_1",
        gateway_customer_id="cus_1",
        period_start=datetime(2026, 1, 1, tzinfo=timezone.utc),
        period_end=datetime(2026, 2, 1, tzinfo=timezone.utc),
        amount=Decimal("100.00"),
    )
    commission = await db.scalar(select(Commission))
    return referred, commission


# ── Own records ───────────────────────────────────────────


class TestOwnRecords:
    @pytest.mark.asyncio
    async def test_transactions(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get("/api/finance/transactions", headers=auth_headers("user-1"))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 4
        assert body["pages"] == 1
        assert len(body["items"]) == 4

    @pytest.mark.asyncio
    async def test_transactions_paginated(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get(
            "/api/finance/transactions?page=2&per_page=3", headers=auth_headers("user-1")
        )

        body = response.json()
        assert body["total"] == 4
        assert body["pages"] == 2
        assert len(body["items"]) == 1

    @pytest.mark.asyncio
    async def test_other_users_see_nothing(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get("/api/finance/transactions", headers=auth_headers("user-2"))

        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_affiliate_commissions(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get("/api/finance/commissions", headers=auth_headers("aff-1"))

        body = response.json()
        assert body["total"] == 1
        assert Decimal(body["items"][0]["valor_comissao"]) == Decimal("15.00")
        assert body["items"][0]["status"] == "pendente"

    @pytest.mark.asyncio
    async def test_subscriptions(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get("/api/finance/subscriptions", headers=auth_headers("user-1"))

        body = response.json()
        assert len(body) == 1
        assert body[0]["status"] == "ativa"
        assert body[0]["intervalo"] == "mensal"

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.get("/api/finance/transactions")
        assert response.status_code == 401


# ── Admin ─────────────────────────────────────────────────


class TestSummary:
    @pytest.mark.asyncio
    async def test_totals(self, client, db_session, ledger):
        await seed(db_session, ledger)

        response = await client.get("/api/admin/finance/summary", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["receita_bruta"]) == Decimal("400.00")
        assert Decimal(body["taxas_gateway"]) == Decimal("11.60")
        assert Decimal(body["receita_liquida"]) == Decimal("388.40")
        assert Decimal(body["reembolsos"]) == Decimal("0")
        assert Decimal(body["comissoes_pendentes"]) == Decimal("15.00")
        assert Decimal(body["comissoes_pagas"]) == Decimal("0")
        assert body["transacoes_concluidas"] == 3
        assert body["transacoes_falhas"] == 1
        assert body["assinaturas_ativas"] == 1

    @pytest.mark.asyncio
    async def test_admin_only(self, client):
        response = await client.get("/api/admin/finance/summary", headers=auth_headers("user-1"))
        assert response.status_code == 403


class TestCommissionPayout:
    @pytest.mark.asyncio
    async def test_mark_paid(self, client, db_session, ledger):
        _, commission = await seed(db_session, ledger)

        response = await client.patch(
            f"/api/admin/commissions/{commission.id}",
            json={"status": "paga", "stripe_transfer_id": "tr_1"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "paga"
        assert body["stripe_transfer_id"] == "tr_1"
        assert body["data_pagamento"] is not None

    @pytest.mark.asyncio
    async def test_paid_commission_is_final(self, client, db_session, ledger):
        _, commission = await seed(db_session, ledger)
        url = f"/api/admin/commissions/{commission.id}"

        await client.patch(url, json={"status": "paga"}, headers=ADMIN)
        response = await client.patch(url, json={"status": "cancelada"}, headers=ADMIN)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_commission(self, client):
        response = await client.patch(
            "/api/admin/commissions/missing", json={"status": "paga"}, headers=ADMIN
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pending_is_not_a_target(self, client, db_session, ledger):
        _, commission = await seed(db_session, ledger)
        response = await client.patch(
            f"/api/admin/commissions/{commission.id}", json={"status": "pendente"}, headers=ADMIN
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_admin_only(self, client, db_session, ledger):
        _, commission = await seed(db_session, ledger)
        response = await client.patch(
            f"/api/admin/commissions/{commission.id}",
            json={"status": "paga"},
            headers=auth_headers("aff-1"),
        )
        assert response.status_code == 403


class TestLedgerIssues:
    @pytest.mark.asyncio
    async def test_list_and_filter(self, client, db_session):
        await flag_issue(
            db_session,
            IssueKind.MISSING_METADATA,
            gateway_event_id="evt_1",
            event_type="payment_intent.succeeded",
            details={"missing": ["userId"]},
        )
        await db_session.commit()

        response = await client.get("/api/admin/ledger-issues", headers=ADMIN)
        body = response.json()
        assert len(body) == 1
        assert body[0]["kind"] == "missing_metadata"
        assert body[0]["status"] == "open"

        response = await client.get(
            "/api/admin/ledger-issues?kind=invalid_amount", headers=ADMIN
        )
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_reconcile_now(self, client, db_session, ledger):
        referred, commission = await seed(db_session, ledger)
        await flag_issue(
            db_session,
            IssueKind.COMMISSION_WRITE_FAILED,
            gateway_event_id="pi_1",
            transacao_id=referred.id,
            details={"afiliado_id": "aff-1"},
        )
        await db_session.commit()

        response = await client.post("/api/admin/ledger-issues/reconcile", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {
            "checked": 1,
            "repaired": 0,
            "already_present": 1,
            "failed": 0,
        }
