"""
Stripe webhook event schemas.

Raw event envelopes ({id, type, data: {object}}) are decoded once, at the
webhook boundary, into one model per handled event type. Anything else
becomes an UnknownEvent.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a Unix timestamp to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class GatewayObject(BaseModel):
    """Fields shared by every Stripe object we read."""

    model_config = ConfigDict(extra="ignore")

    id: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or {}

    def meta(self, key: str) -> Optional[str]:
        """Metadata value, with empty strings treated as absent."""
        value = self.metadata.get(key)
        if value is None or str(value).strip() == "":
            return None
        return str(value)


def expandable_id(v):
    """Stripe fields may hold an id or the expanded object."""
    if isinstance(v, dict):
        return v.get("id")
    return v


# ── Objects ───────────────────────────────────────────────


class CheckoutSessionObject(GatewayObject):
    mode: str = "payment"
    payment_intent: Optional[str] = None
    subscription: Optional[str] = None
    customer: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    payment_status: Optional[str] = None

    @field_validator("payment_intent", "subscription", "customer", mode="before")
    @classmethod
    def collapse_expanded(cls, v):
        return expandable_id(v)


class PaymentIntentObject(GatewayObject):
    amount: int
    currency: str
    customer: Optional[str] = None
    invoice: Optional[str] = None
    description: Optional[str] = None
    payment_method_types: list[str] = Field(default_factory=list)
    last_payment_error: Optional[dict[str, Any]] = None

    @field_validator("customer", "invoice", mode="before")
    @classmethod
    def collapse_expanded(cls, v):
        return expandable_id(v)

    @property
    def failure_reason(self) -> str:
        if self.last_payment_error and self.last_payment_error.get("message"):
            return f"Pagamento falhou: {self.last_payment_error['message']}"
        return "Pagamento falhou"

    @property
    def payment_method(self) -> str:
        return self.payment_method_types[0] if self.payment_method_types else "card"


class Recurring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    interval: str


class Price(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    unit_amount: Optional[int] = None
    currency: Optional[str] = None
    recurring: Optional[Recurring] = None


class SubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: Price
    quantity: int = 1
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class SubscriptionItemList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(GatewayObject):
    customer: Optional[str] = None
    status: str = "active"
    currency: Optional[str] = None
    cancel_at_period_end: bool = False
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)

    @field_validator("customer", mode="before")
    @classmethod
    def collapse_expanded(cls, v):
        return expandable_id(v)

    @property
    def first_item(self) -> Optional[SubscriptionItem]:
        return self.items.data[0] if self.items.data else None

    @property
    def period(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """Current period; newer API versions only carry it on the items."""
        start, end = self.current_period_start, self.current_period_end
        item = self.first_item
        if (start is None or end is None) and item is not None:
            start, end = item.current_period_start, item.current_period_end
        return from_timestamp(start), from_timestamp(end)

    @property
    def amount(self) -> Optional[int]:
        """Recurring amount in minor units (unit price x quantity)."""
        item = self.first_item
        if item is None or item.price.unit_amount is None:
            return None
        return item.price.unit_amount * item.quantity

    @property
    def interval(self) -> Optional[str]:
        item = self.first_item
        if item is None or item.price.recurring is None:
            return None
        return item.price.recurring.interval


class LinePeriod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: int
    end: int


class InvoiceLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    period: Optional[LinePeriod] = None


class InvoiceLineList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[InvoiceLine] = Field(default_factory=list)


class InvoiceObject(GatewayObject):
    subscription: Optional[str] = None
    customer: Optional[str] = None
    amount_paid: int
    currency: str
    billing_reason: Optional[str] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None
    lines: InvoiceLineList = Field(default_factory=InvoiceLineList)
    parent: Optional[dict[str, Any]] = None

    @field_validator("subscription", "customer", mode="before")
    @classmethod
    def collapse_expanded(cls, v):
        return expandable_id(v)

    @property
    def subscription_id(self) -> Optional[str]:
        """Subscription id; newer API versions nest it under parent."""
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return expandable_id(details.get("subscription"))

    @property
    def period(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """
        Billing period paid by this invoice.

        The invoice-level period of a renewal covers the previous cycle,
        so the subscription line period is preferred.
        """
        for line in self.lines.data:
            if line.period is not None:
                return from_timestamp(line.period.start), from_timestamp(line.period.end)
        return from_timestamp(self.period_start), from_timestamp(self.period_end)


class ChargeObject(GatewayObject):
    payment_intent: Optional[str] = None
    amount: int
    amount_refunded: int = 0
    currency: str
    refunded: bool = False

    @field_validator("payment_intent", mode="before")
    @classmethod
    def collapse_expanded(cls, v):
        return expandable_id(v)


# ── Events ────────────────────────────────────────────────


class GatewayEvent(BaseModel):
    """Envelope fields shared by every event."""

    model_config = ConfigDict(extra="ignore")

    event_type: ClassVar[Optional[str]] = None

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False


class CheckoutSessionCompleted(GatewayEvent):
    event_type: ClassVar[str] = "checkout.session.completed"

    session: CheckoutSessionObject


class PaymentIntentSucceeded(GatewayEvent):
    event_type: ClassVar[str] = "payment_intent.succeeded"

    payment_intent: PaymentIntentObject


class PaymentIntentFailed(GatewayEvent):
    event_type: ClassVar[str] = "payment_intent.payment_failed"

    payment_intent: PaymentIntentObject


class SubscriptionCreated(GatewayEvent):
    event_type: ClassVar[str] = "customer.subscription.created"

    subscription: SubscriptionObject


class SubscriptionUpdated(GatewayEvent):
    event_type: ClassVar[str] = "customer.subscription.updated"

    subscription: SubscriptionObject


class SubscriptionDeleted(GatewayEvent):
    event_type: ClassVar[str] = "customer.subscription.deleted"

    subscription: SubscriptionObject


class InvoicePaid(GatewayEvent):
    event_type: ClassVar[str] = "invoice.payment_succeeded"

    invoice: InvoiceObject


class ChargeRefunded(GatewayEvent):
    event_type: ClassVar[str] = "charge.refunded"

    charge: ChargeObject
    previous_attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def refunded_now(self) -> int:
        """Amount refunded by this event alone, in minor units."""
        previous = self.previous_attributes.get("amount_refunded") or 0
        return self.charge.amount_refunded - previous


class UnknownEvent(GatewayEvent):
    """Any event type without a handler."""


# Event model and the field its data.object is decoded into
EVENT_MODELS: dict[str, tuple[type[GatewayEvent], str]] = {
    CheckoutSessionCompleted.event_type: (CheckoutSessionCompleted, "session"),
    PaymentIntentSucceeded.event_type: (PaymentIntentSucceeded, "payment_intent"),
    PaymentIntentFailed.event_type: (PaymentIntentFailed, "payment_intent"),
    SubscriptionCreated.event_type: (SubscriptionCreated, "subscription"),
    SubscriptionUpdated.event_type: (SubscriptionUpdated, "subscription"),
    SubscriptionDeleted.event_type: (SubscriptionDeleted, "subscription"),
    InvoicePaid.event_type: (InvoicePaid, "invoice"),
    ChargeRefunded.event_type: (ChargeRefunded, "charge"),
}


def decode_event(envelope: dict[str, Any]) -> GatewayEvent:
    """
    Decode a raw event envelope.

    Raises:
        pydantic.ValidationError: a handled event type with a malformed object
    """
    event_type = envelope.get("type") or ""
    base = {
        "id": envelope.get("id") or "",
        "type": event_type,
        "created": envelope.get("created"),
        "livemode": bool(envelope.get("livemode", False)),
    }

    if event_type not in EVENT_MODELS:
        return UnknownEvent.model_validate(base)

    model, field = EVENT_MODELS[event_type]
    data = envelope.get("data") or {}
    values = {**base, field: data.get("object")}
    if model is ChargeRefunded:
        values["previous_attributes"] = data.get("previous_attributes") or {}
    return model.model_validate(values)
