"""Admin finance API endpoints."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.auth.dependencies import CurrentUser, require_admin
from redetour.db import get_db
from redetour.errors import CommissionNotFoundError, InvalidStatusTransitionError
from redetour.models import (
    Commission,
    CommissionStatus,
    IssueKind,
    IssueStatus,
    LedgerIssue,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from redetour.schemas.finance import (
    CommissionResponse,
    CommissionStatusUpdate,
    FinanceSummaryResponse,
    LedgerIssueResponse,
    ReconciliationResponse,
)
from redetour.schemas.sales import SalesPeriod
from redetour.services.reconciliation import reconcile_commission_issues
from redetour.services.sales import build_sales_report, period_start

logger = logging.getLogger(__name__)

router = APIRouter()

ZERO = Decimal("0")


async def update_commission_status(
    db: AsyncSession,
    commission_id: str,
    new_status: CommissionStatus,
    stripe_transfer_id: Optional[str] = None,
) -> Commission:
    """
    Mark a pending commission as paid or cancelled.

    Raises:
        CommissionNotFoundError: unknown id
        InvalidStatusTransitionError: commission is no longer pending
    """
    commission = await db.get(Commission, commission_id)
    if commission is None:
        raise CommissionNotFoundError(f"Commission {commission_id} not found")

    if commission.status != CommissionStatus.PENDING:
        raise InvalidStatusTransitionError(
            f"Commission {commission_id} is {commission.status.value}, "
            f"cannot become {new_status.value}"
        )

    commission.status = new_status
    if new_status == CommissionStatus.PAID:
        commission.data_pagamento = datetime.now(timezone.utc)
        commission.stripe_transfer_id = stripe_transfer_id

    await db.commit()
    await db.refresh(commission)
    logger.info(f"Commission {commission_id} marked {new_status.value}")
    return commission


@router.get("/finance/summary", response_model=FinanceSummaryResponse)
async def get_finance_summary(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
    period: Optional[SalesPeriod] = Query(None),
):
    """
    Revenue, fee, refund and commission totals.

    With a period, money totals cover the last month, quarter or year;
    the active subscription count is always current.
    """
    since = period_start(period) if period else None

    def in_period(column):
        return column >= since if since is not None else true()

    revenue = await db.execute(
        select(
            func.coalesce(func.sum(Transaction.valor), ZERO).label("gross"),
            func.coalesce(func.sum(Transaction.taxa_gateway), ZERO).label("fees"),
            func.coalesce(func.sum(Transaction.valor_liquido), ZERO).label("net"),
            func.count().label("count"),
        ).where(
            Transaction.status == TransactionStatus.COMPLETED,
            Transaction.tipo_transacao.in_([TransactionType.SALE, TransactionType.SUBSCRIPTION]),
            in_period(Transaction.created_at),
        )
    )
    revenue_row = revenue.one()

    refunds = await db.scalar(
        select(func.coalesce(func.sum(Transaction.valor), ZERO)).where(
            Transaction.status == TransactionStatus.COMPLETED,
            Transaction.tipo_transacao == TransactionType.REFUND,
            in_period(Transaction.created_at),
        )
    )
    failed = await db.scalar(
        select(func.count()).select_from(Transaction).where(
            Transaction.status == TransactionStatus.FAILED,
            in_period(Transaction.created_at),
        )
    )
    pending_commissions = await db.scalar(
        select(func.coalesce(func.sum(Commission.valor_comissao), ZERO)).where(
            Commission.status == CommissionStatus.PENDING,
            in_period(Commission.created_at),
        )
    )
    paid_commissions = await db.scalar(
        select(func.coalesce(func.sum(Commission.valor_comissao), ZERO)).where(
            Commission.status == CommissionStatus.PAID,
            in_period(Commission.created_at),
        )
    )
    active_subscriptions = await db.scalar(
        select(func.count()).select_from(Subscription).where(
            Subscription.status == SubscriptionStatus.ACTIVE
        )
    )
    sales = await build_sales_report(db, period)

    return FinanceSummaryResponse(
        periodo=period,
        receita_bruta=Decimal(str(revenue_row.gross)),
        taxas_gateway=Decimal(str(revenue_row.fees)),
        receita_liquida=Decimal(str(revenue_row.net)),
        reembolsos=Decimal(str(refunds)),
        comissoes_pendentes=Decimal(str(pending_commissions)),
        comissoes_pagas=Decimal(str(paid_commissions)),
        transacoes_concluidas=revenue_row.count,
        transacoes_falhas=failed or 0,
        assinaturas_ativas=active_subscriptions or 0,
        vendas_por_tipo=sales.vendas_por_tipo,
        vendas_por_mes=sales.vendas_por_mes,
    )


@router.patch("/commissions/{commission_id}", response_model=CommissionResponse)
async def patch_commission(
    commission_id: str,
    data: CommissionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Record a commission payout or cancel it."""
    try:
        commission = await update_commission_status(
            db,
            commission_id,
            CommissionStatus(data.status),
            data.stripe_transfer_id,
        )
    except CommissionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return CommissionResponse.model_validate(commission)


@router.get("/ledger-issues", response_model=list[LedgerIssueResponse])
async def list_ledger_issues(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
    kind: Optional[IssueKind] = Query(None),
    include_resolved: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
):
    """Events that could not be fully booked, oldest first."""
    query = select(LedgerIssue)
    if kind:
        query = query.where(LedgerIssue.kind == kind)
    if not include_resolved:
        query = query.where(LedgerIssue.status == IssueStatus.OPEN)

    result = await db.execute(query.order_by(LedgerIssue.created_at).limit(limit))
    return [LedgerIssueResponse.model_validate(i) for i in result.scalars().all()]


@router.post("/ledger-issues/reconcile", response_model=ReconciliationResponse)
async def reconcile_ledger_issues(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Run commission reconciliation now."""
    report = await reconcile_commission_issues(db)
    return ReconciliationResponse(
        checked=report.checked,
        repaired=report.repaired,
        already_present=report.already_present,
        failed=report.failed,
    )
