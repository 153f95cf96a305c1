"""Business logic services."""

from redetour.services.commission import CommissionCalculator
from redetour.services.ledger import LedgerWriter
from redetour.services.rates import RateTable, get_rate_table
from redetour.services.webhook import WebhookDispatcher

__all__ = [
    "CommissionCalculator",
    "LedgerWriter",
    "RateTable",
    "get_rate_table",
    "WebhookDispatcher",
]
