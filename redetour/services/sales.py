"""
Manual sales and sales reporting.

Manual sales go through the same ledger writer as gateway payments, under
the "manual" gateway and a client idempotency key scoped to the user.
"""

import calendar
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.auth.dependencies import CurrentUser
from redetour.models import Transaction, TransactionStatus, TransactionType
from redetour.schemas.sales import (
    ManualSaleRequest,
    MonthlySales,
    SalesPeriod,
    SalesReportResponse,
)
from redetour.services.ledger import LedgerWriter

logger = logging.getLogger(__name__)

MANUAL_GATEWAY = "manual"
UNTYPED = "outro"
PERIOD_MONTHS = {"mes": 1, "trimestre": 3, "ano": 12}

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def months_before(moment: datetime, months: int) -> datetime:
    """Same day and time `months` earlier, clamped to the end of shorter months."""
    index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period: SalesPeriod, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return months_before(now, PERIOD_MONTHS[period])


async def record_manual_sale(
    ledger: LedgerWriter,
    user: CurrentUser,
    request: ManualSaleRequest,
    idempotency_key: str,
) -> Transaction:
    """
    Book a sale registered by the current user.

    The total is the sum of the line subtotals net of discounts; the
    affiliate is credited at the tier of the first item's product type.

    Raises:
        InvalidAmountError: discounts exceed the sale total
    """
    total = sum((item.subtotal for item in request.items), Decimal("0"))
    primary = request.items[0]

    transaction = await ledger.record_sale_payment(
        user_id=user.id,
        gross=total,
        currency=request.currency,
        gateway=MANUAL_GATEWAY,
        gateway_event_id=f"{user.id}:{idempotency_key}",
        description=f"Venda de {primary.product_name}",
        affiliate_id=request.affiliate_id,
        sale_id=request.sale_id,
        product_type=primary.product_type.value,
    )
    logger.info(f"Manual sale {transaction.id} by {user.id}: {transaction.valor}")
    return transaction


async def build_sales_report(
    db: AsyncSession,
    period: Optional[SalesPeriod] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SalesReportResponse:
    """
    Sales of the period (all time when no period is given).

    Totals, ticket and the type/month breakdowns cover completed sales;
    the status breakdown covers every sale attempt.
    """
    query = select(
        Transaction.status,
        Transaction.tipo_produto,
        Transaction.valor_liquido,
        Transaction.comissao_afiliado,
        Transaction.created_at,
    ).where(Transaction.tipo_transacao == TransactionType.SALE)
    if user_id:
        query = query.where(Transaction.user_id == user_id)

    since = None
    if period:
        since = period_start(period, now)
        query = query.where(Transaction.created_at >= since)

    result = await db.execute(query)

    count = 0
    revenue = ZERO
    commissions = ZERO
    by_type: dict[str, int] = defaultdict(int)
    by_status: dict[str, int] = defaultdict(int)
    by_month: dict[str, MonthlySales] = {}

    for status, product_type, net, commission, created_at in result.all():
        by_status[status.value] += 1
        if status != TransactionStatus.COMPLETED:
            continue

        net = Decimal(str(net))
        commission = Decimal(str(commission))
        count += 1
        revenue += net
        commissions += commission
        by_type[product_type or UNTYPED] += 1

        month = created_at.strftime("%Y-%m")
        bucket = by_month.setdefault(
            month, MonthlySales(mes=month, vendas=0, receita=ZERO, comissoes=ZERO)
        )
        bucket.vendas += 1
        bucket.receita += net
        bucket.comissoes += commission

    ticket = (revenue / count).quantize(CENT, rounding=ROUND_HALF_UP) if count else ZERO

    return SalesReportResponse(
        periodo=period,
        data_inicio=since,
        total_vendas=count,
        total_receita=revenue,
        total_comissoes=commissions,
        ticket_medio=ticket,
        vendas_por_tipo=dict(by_type),
        vendas_por_status=dict(by_status),
        vendas_por_mes=[by_month[m] for m in sorted(by_month)],
    )
