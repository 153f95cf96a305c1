"""
Commission reconciliation.

Repairs open commission_write_failed issues: the Transaction was booked
but its Commission was not. Each issue is its own unit of work, so one
bad payload does not block the rest.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.models import (
    Commission,
    CommissionStatus,
    CommissionType,
    IssueKind,
    IssueStatus,
    LedgerIssue,
    Transaction,
)
from redetour.services.ledger import refunded_total

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    checked: int = 0
    repaired: int = 0
    already_present: int = 0
    failed: int = 0


async def is_fully_refunded(db: AsyncSession, transaction: Transaction) -> bool:
    return await refunded_total(db, transaction) >= transaction.valor


async def repair_commission(db: AsyncSession, issue: LedgerIssue) -> bool:
    """
    Write the missing Commission of an issue and resolve it.

    Returns:
        True if a Commission was written, False if one already existed
    """
    existing = await db.scalar(
        select(Commission).where(Commission.transacao_id == issue.transacao_id)
    )
    repaired = False
    if existing is None:
        transaction = await db.get(Transaction, issue.transacao_id)
        if transaction is None:
            raise ValueError(f"Transaction {issue.transacao_id} not found")

        payload = issue.details or {}
        status = CommissionStatus.PENDING
        if await is_fully_refunded(db, transaction):
            status = CommissionStatus.CANCELLED

        db.add(Commission(
            afiliado_id=payload["afiliado_id"],
            venda_id=payload.get("venda_id"),
            assinatura_id=payload.get("assinatura_id"),
            transacao_id=transaction.id,
            tipo_comissao=CommissionType(payload["tipo_comissao"]),
            valor_comissao=Decimal(payload["valor_comissao"]),
            percentual_comissao=Decimal(payload["percentual_comissao"]),
            status=status,
            descricao=payload.get("descricao") or "",
        ))
        repaired = True

    issue.status = IssueStatus.RESOLVED
    issue.resolved_at = datetime.now(timezone.utc)
    return repaired


async def reconcile_commission_issues(
    db: AsyncSession,
    limit: int = 100,
) -> ReconciliationReport:
    """
    Repair open commission_write_failed issues, oldest first.

    Args:
        db: Database session
        limit: Maximum number of issues handled in one run

    Returns:
        ReconciliationReport with per-outcome counts
    """
    report = ReconciliationReport()
    result = await db.execute(
        select(LedgerIssue.id)
        .where(
            LedgerIssue.kind == IssueKind.COMMISSION_WRITE_FAILED,
            LedgerIssue.status == IssueStatus.OPEN,
        )
        .order_by(LedgerIssue.created_at)
        .limit(limit)
    )
    issue_ids = list(result.scalars().all())

    for issue_id in issue_ids:
        report.checked += 1
        issue = await db.get(LedgerIssue, issue_id)
        try:
            if await repair_commission(db, issue):
                report.repaired += 1
                logger.info(f"Commission for transaction {issue.transacao_id} rebuilt")
            else:
                report.already_present += 1
            await db.commit()
        except (SQLAlchemyError, KeyError, ValueError, InvalidOperation) as e:
            await db.rollback()
            report.failed += 1
            logger.error(f"Reconciliation of issue {issue_id} failed: {e!r}")

            issue = await db.get(LedgerIssue, issue_id)
            issue.attempts += 1
            issue.error_message = repr(e)
            await db.commit()

    if report.checked:
        logger.info(
            f"Commission reconciliation: checked={report.checked} "
            f"repaired={report.repaired} already_present={report.already_present} "
            f"failed={report.failed}"
        )
    return report
