"""
Database models for the payments ledger.

All models are exported here for convenient imports:
    from redetour.models import Transaction, Commission, Subscription, etc.
"""

from redetour.models.base import Base, BaseModel, TimestampMixin
from redetour.models.commission import Commission, CommissionStatus, CommissionType
from redetour.models.issue import IssueKind, IssueStatus, LedgerIssue
from redetour.models.subscription import (
    BillingInterval,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from redetour.models.transaction import Transaction, TransactionStatus, TransactionType

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "TimestampMixin",
    # Transaction
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    # Commission
    "Commission",
    "CommissionStatus",
    "CommissionType",
    # Subscription
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "BillingInterval",
    # Issues
    "LedgerIssue",
    "IssueKind",
    "IssueStatus",
]
