"""
Commission model: payable owed to an affiliate.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from redetour.models.base import BaseModel


class CommissionType(str, Enum):
    """What the commission was earned on."""
    SALE = "venda"
    SUBSCRIPTION = "assinatura"


class CommissionStatus(str, Enum):
    """Payout status of a commission."""
    PENDING = "pendente"
    PAID = "paga"
    CANCELLED = "cancelada"


class Commission(BaseModel):
    """
    Affiliate payable for one sale or subscription event.

    valor_comissao is computed on the gross amount of the originating
    transaction. Rows are never deleted, only cancelled.
    """

    __tablename__ = "comissoes"

    afiliado_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    venda_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
    )
    assinatura_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("assinaturas.id"),
        nullable=True,
        index=True,
    )
    transacao_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("transacoes.id"),
        nullable=True,
        unique=True,
        comment="Transaction that originated the payable",
    )
    tipo_comissao: Mapped[CommissionType] = mapped_column(
        SQLAlchemyEnum(
            CommissionType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    valor_comissao: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    percentual_comissao: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Rate applied, in percent (30 = 30%)",
    )
    status: Mapped[CommissionStatus] = mapped_column(
        SQLAlchemyEnum(
            CommissionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CommissionStatus.PENDING,
        nullable=False,
        index=True,
    )
    data_pagamento: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    stripe_transfer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    descricao: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    def __repr__(self) -> str:
        return (
            f"<Commission(id={self.id}, afiliado_id={self.afiliado_id}, "
            f"valor={self.valor_comissao}, status={self.status})>"
        )
