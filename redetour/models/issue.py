"""
LedgerIssue model for events that could not be fully booked.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from redetour.models.base import BaseModel


class IssueKind(str, Enum):
    """What went wrong while booking an event."""
    COMMISSION_WRITE_FAILED = "commission_write_failed"  # Transaction booked, payable missing
    MISSING_METADATA = "missing_metadata"                # Event lacks user/plan identifiers
    INVALID_AMOUNT = "invalid_amount"                    # Gross amount rejected by the calculator
    INVALID_PERIOD = "invalid_period"                    # Billing period ends before it starts


class IssueStatus(str, Enum):
    """Resolution state of an issue."""
    OPEN = "open"
    RESOLVED = "resolved"


class LedgerIssue(BaseModel):
    """
    Operator-facing register of partially booked or rejected events.

    A commission_write_failed row is the partial-success marker: its
    details hold everything needed to rebuild the missing Commission.
    """

    __tablename__ = "ledger_issues"

    kind: Mapped[IssueKind] = mapped_column(
        SQLAlchemyEnum(
            IssueKind,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    status: Mapped[IssueStatus] = mapped_column(
        SQLAlchemyEnum(
            IssueStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=IssueStatus.OPEN,
        nullable=False,
        index=True,
    )
    gateway: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="stripe",
    )
    gateway_event_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    event_type: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    transacao_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("transacoes.id"),
        nullable=True,
    )
    details: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Payload needed to repair the issue",
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<LedgerIssue(id={self.id}, kind={self.kind}, status={self.status})>"
