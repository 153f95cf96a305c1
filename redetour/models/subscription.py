"""
Subscription and subscription plan models.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from redetour.models.base import BaseModel


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a subscription."""
    ACTIVE = "ativa"
    CANCELLED = "cancelada"
    EXPIRED = "expirada"
    SUSPENDED = "suspensa"


class BillingInterval(str, Enum):
    """Billing period of a subscription."""
    MONTHLY = "mensal"
    YEARLY = "anual"

    @classmethod
    def from_gateway(cls, interval: str) -> "BillingInterval":
        """Map a Stripe recurring interval ('month' / 'year')."""
        if interval in ("year", "yearly", cls.YEARLY.value):
            return cls.YEARLY
        if interval in ("month", "monthly", cls.MONTHLY.value):
            return cls.MONTHLY
        raise ValueError(f"Unsupported billing interval: {interval!r}")

    @property
    def gateway_value(self) -> str:
        return "year" if self is BillingInterval.YEARLY else "month"


class Subscription(BaseModel):
    """
    Recurring-billing agreement tied to a plan.

    Created on the first successful checkout of a plan; the period is
    moved forward by every renewal invoice.
    """

    __tablename__ = "assinaturas"
    __table_args__ = (
        CheckConstraint("data_fim > data_inicio", name="ck_assinaturas_periodo"),
    )

    user_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    plano_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLAlchemyEnum(
            SubscriptionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    data_inicio: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    data_fim: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    intervalo: Mapped[BillingInterval] = mapped_column(
        SQLAlchemyEnum(
            BillingInterval,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    stripe_subscription_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    cancelar_no_fim_do_periodo: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    valor_pago: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    afiliado_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, stripe_id={self.stripe_subscription_id}, "
            f"status={self.status})>"
        )


class SubscriptionPlan(BaseModel):
    """Plan offered for subscription. Maintained by the catalog, read here."""

    __tablename__ = "planos_assinatura"

    nome: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    descricao: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    preco_mensal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    preco_anual: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    stripe_price_id_mensal: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    stripe_price_id_anual: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    ativo: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def price_id_for(self, interval: BillingInterval) -> Optional[str]:
        if interval is BillingInterval.YEARLY:
            return self.stripe_price_id_anual
        return self.stripe_price_id_mensal

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(id={self.id}, nome={self.nome})>"
