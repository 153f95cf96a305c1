"""
Ledger issue utilities.

Every event that could not be fully booked is registered here so
operators can find and repair it.
"""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.models.issue import IssueKind, IssueStatus, LedgerIssue


def jsonable(values: dict[str, Any]) -> dict[str, Any]:
    """Make a payload JSON-safe (Decimals and enums become strings)."""
    result = {}
    for key, value in values.items():
        if isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "value"):
            value = value.value
        result[key] = value
    return result


async def flag_issue(
    db: AsyncSession,
    kind: IssueKind,
    gateway: str = "stripe",
    gateway_event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    transacao_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> LedgerIssue:
    """
    Register an issue, or bump the attempt count of the open one.

    Args:
        db: Database session
        kind: What went wrong
        gateway: Gateway the event came from
        gateway_event_id: Gateway event id
        event_type: Gateway event type
        transacao_id: Transaction the issue belongs to, if one was booked
        details: Payload needed to repair the issue
        error_message: Error text

    Returns:
        The LedgerIssue row
    """
    if gateway_event_id is not None:
        result = await db.execute(
            select(LedgerIssue).where(
                LedgerIssue.kind == kind,
                LedgerIssue.gateway == gateway,
                LedgerIssue.gateway_event_id == gateway_event_id,
                LedgerIssue.status == IssueStatus.OPEN,
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            existing.attempts += 1
            existing.error_message = error_message
            return existing

    issue = LedgerIssue(
        kind=kind,
        status=IssueStatus.OPEN,
        gateway=gateway,
        gateway_event_id=gateway_event_id,
        event_type=event_type,
        transacao_id=transacao_id,
        details=jsonable(details) if details else None,
        error_message=error_message,
        attempts=1,
    )
    db.add(issue)
    # Note: commit should happen in the calling context
    return issue
