"""
Transaction model: immutable record of a financial movement.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from redetour.models.base import BaseModel

if TYPE_CHECKING:
    from redetour.models.subscription import Subscription


class TransactionType(str, Enum):
    """Kind of financial movement."""
    SALE = "venda"
    REFUND = "reembolso"
    COMMISSION = "comissao"
    SUBSCRIPTION = "assinatura"
    FEE = "taxa"


class TransactionStatus(str, Enum):
    """Settlement status of a transaction."""
    PENDING = "pendente"
    COMPLETED = "concluida"
    FAILED = "falhou"
    CANCELLED = "cancelada"


class Transaction(BaseModel):
    """
    A financial movement booked from a gateway event.

    Rows are written once by the ledger writer and never edited afterwards;
    corrections are new compensating rows (e.g. a refund).

    Invariant: valor_liquido = valor - taxa_gateway.
    """

    __tablename__ = "transacoes"
    __table_args__ = (
        UniqueConstraint("gateway", "gateway_event_id", name="uq_transacoes_gateway_event"),
    )

    user_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    tipo_transacao: Mapped[TransactionType] = mapped_column(
        SQLAlchemyEnum(
            TransactionType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    valor: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Gross amount charged to the customer",
    )
    moeda: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="BRL",
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SQLAlchemyEnum(
            TransactionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True,
    )
    descricao: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    tipo_produto: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Product type of a sale, for reporting",
    )

    # Links
    venda_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )
    assinatura_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("assinaturas.id"),
        nullable=True,
        index=True,
    )

    # Gateway
    stripe_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Payment intent, subscription, invoice or charge id",
    )
    gateway: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="stripe",
    )
    gateway_event_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Idempotency key, unique per gateway",
    )
    taxa_gateway: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )
    valor_liquido: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    # Affiliate
    afiliado_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )
    comissao_afiliado: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    # Relationships
    assinatura: Mapped[Optional["Subscription"]] = relationship("Subscription")

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, tipo={self.tipo_transacao}, "
            f"valor={self.valor}, status={self.status})>"
        )
