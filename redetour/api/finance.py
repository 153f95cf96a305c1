"""Finance read endpoints for the current user."""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.auth.dependencies import CurrentUser, get_current_user
from redetour.db import get_db
from redetour.errors import InvalidAmountError, LedgerWriteError
from redetour.models import Commission, Subscription, Transaction
from redetour.schemas.finance import (
    CommissionListResponse,
    CommissionResponse,
    SubscriptionResponse,
    TransactionListResponse,
    TransactionResponse,
)
from redetour.schemas.sales import ManualSaleRequest, SalesPeriod, SalesReportResponse
from redetour.services.commission import CommissionCalculator
from redetour.services.ledger import LedgerWriter
from redetour.services.rates import RateTable, get_rate_table
from redetour.services.sales import build_sales_report, record_manual_sale

router = APIRouter(prefix="/finance", tags=["Finance"])


def page_count(total: int, per_page: int) -> int:
    return (total + per_page - 1) // per_page if total else 0


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List own transactions, newest first."""
    query = select(Transaction).where(Transaction.user_id == current_user.id)

    count_query = select(func.count()).select_from(query.subquery())
    total = await db.scalar(count_query) or 0

    query = query.order_by(Transaction.created_at.desc())
    query = query.offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(query)

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
        pages=page_count(total, per_page),
    )


@router.get("/commissions", response_model=CommissionListResponse)
async def list_commissions(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List commissions earned by the current user as affiliate."""
    query = select(Commission).where(Commission.afiliado_id == current_user.id)

    count_query = select(func.count()).select_from(query.subquery())
    total = await db.scalar(count_query) or 0

    query = query.order_by(Commission.created_at.desc())
    query = query.offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(query)

    return CommissionListResponse(
        items=[CommissionResponse.model_validate(c) for c in result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
        pages=page_count(total, per_page),
    )


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List own subscriptions."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == current_user.id)
        .order_by(Subscription.created_at.desc())
    )
    return [SubscriptionResponse.model_validate(s) for s in result.scalars().all()]


@router.post(
    "/sales",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_sale(
    data: ManualSaleRequest,
    db: AsyncSession = Depends(get_db),
    rates: RateTable = Depends(get_rate_table),
    current_user: CurrentUser = Depends(get_current_user),
    idempotency_key: str = Header(..., alias="Idempotency-Key", min_length=1, max_length=200),
):
    """
    Register a sale paid outside the checkout.

    Repeating a request with the same Idempotency-Key returns the sale
    booked the first time.
    """
    ledger = LedgerWriter(db, CommissionCalculator(rates))
    try:
        transaction = await record_manual_sale(ledger, current_user, data, idempotency_key)
    except InvalidAmountError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except LedgerWriteError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Erro ao registrar venda",
        )
    await db.refresh(transaction)
    return TransactionResponse.model_validate(transaction)


@router.get("/sales/report", response_model=SalesReportResponse)
async def get_sales_report(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    period: SalesPeriod = Query("mes"),
):
    """Own sales of the last month, quarter or year."""
    return await build_sales_report(db, period, user_id=current_user.id)
