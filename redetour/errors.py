"""
Domain errors of the payments ledger.

The webhook dispatcher maps each of these to an acknowledgement or a
redelivery request; see WebhookDispatcher.handle.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger errors."""


class SignatureVerificationError(LedgerError):
    """Event authenticity cannot be confirmed. Rejected with a client error."""


class UnknownEventTypeError(LedgerError):
    """Event type has no handler. Acknowledged without action."""

    def __init__(self, event_type: str):
        super().__init__(f"Unhandled event type: {event_type}")
        self.event_type = event_type


class MissingMetadataError(LedgerError):
    """Required identifier absent from the event. Acknowledged and flagged."""

    def __init__(self, event_type: str, missing: list[str]):
        super().__init__(
            f"Event {event_type} is missing metadata: {', '.join(missing)}"
        )
        self.event_type = event_type
        self.missing = missing


class SubscriptionNotFoundError(LedgerError):
    """Referenced subscription is not persisted yet. Gateway should redeliver."""

    def __init__(self, gateway_subscription_id: str):
        super().__init__(f"Subscription {gateway_subscription_id} not found")
        self.gateway_subscription_id = gateway_subscription_id


class InvalidAmountError(LedgerError, ValueError):
    """Gross amount is negative or not a finite number."""

    def __init__(self, amount: object, reason: Optional[str] = None):
        super().__init__(reason or f"Invalid amount: {amount!r}")
        self.amount = amount


class LedgerWriteError(LedgerError):
    """The store rejected a write. Gateway should redeliver."""


class CommissionNotFoundError(LedgerError):
    """Commission id does not exist."""


class InvalidStatusTransitionError(LedgerError):
    """Requested status change is not allowed from the current status."""


class PlanNotFoundError(LedgerError):
    """Subscription plan id does not exist or is inactive."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} not found")
        self.plan_id = plan_id


class PlanPriceNotConfiguredError(LedgerError):
    """Plan has no Stripe price for the requested interval."""


class GatewayError(LedgerError):
    """The payment gateway API call failed."""


class InvalidPeriodError(LedgerError):
    """Billing period ends before it starts. Acknowledged and flagged."""

    def __init__(self, reference: str, period_start: object, period_end: object):
        super().__init__(
            f"{reference} period ends before it starts "
            f"({period_start} -> {period_end})"
        )
        self.reference = reference
        self.period_start = period_start
        self.period_end = period_end
