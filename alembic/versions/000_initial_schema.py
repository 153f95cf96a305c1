"""Initial payments ledger schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create the ledger tables."""

    # Subscription plans (managed by the catalog, read by checkout)
    op.create_table(
        "planos_assinatura",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("nome", sa.String(100), nullable=False),
        sa.Column("descricao", sa.Text(), nullable=True),
        sa.Column("preco_mensal", sa.Numeric(12, 2), nullable=False),
        sa.Column("preco_anual", sa.Numeric(12, 2), nullable=False),
        sa.Column("stripe_price_id_mensal", sa.String(255), nullable=True),
        sa.Column("stripe_price_id_anual", sa.String(255), nullable=True),
        sa.Column("ativo", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # Subscriptions
    op.create_table(
        "assinaturas",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("plano_id", sa.String(36), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ativa", "cancelada", "expirada", "suspensa", name="subscriptionstatus"),
            nullable=False,
        ),
        sa.Column("data_inicio", sa.DateTime(timezone=True), nullable=False),
        sa.Column("data_fim", sa.DateTime(timezone=True), nullable=False),
        sa.Column("intervalo", sa.Enum("mensal", "anual", name="billinginterval"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("cancelar_no_fim_do_periodo", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("valor_pago", sa.Numeric(12, 2), nullable=False),
        sa.Column("afiliado_id", sa.String(36), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("data_fim > data_inicio", name="ck_assinaturas_periodo"),
        sa.UniqueConstraint("stripe_subscription_id"),
    )
    op.create_index("ix_assinaturas_user_id", "assinaturas", ["user_id"])
    op.create_index("ix_assinaturas_status", "assinaturas", ["status"])
    op.create_index("ix_assinaturas_afiliado_id", "assinaturas", ["afiliado_id"])

    # Transactions
    op.create_table(
        "transacoes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "tipo_transacao",
            sa.Enum("venda", "reembolso", "comissao", "assinatura", "taxa", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("valor", sa.Numeric(12, 2), nullable=False),
        sa.Column("moeda", sa.String(3), nullable=False, server_default="BRL"),
        sa.Column(
            "status",
            sa.Enum("pendente", "concluida", "falhou", "cancelada", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("descricao", sa.Text(), nullable=False, server_default=""),
        sa.Column("venda_id", sa.String(36), nullable=True),
        sa.Column("assinatura_id", sa.String(36), sa.ForeignKey("assinaturas.id"), nullable=True),
        sa.Column("stripe_transaction_id", sa.String(255), nullable=True),
        sa.Column("gateway", sa.String(50), nullable=False, server_default="stripe"),
        sa.Column("gateway_event_id", sa.String(255), nullable=False, comment="Idempotency key, unique per gateway"),
        sa.Column("taxa_gateway", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("valor_liquido", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("afiliado_id", sa.String(36), nullable=True),
        sa.Column("comissao_afiliado", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("gateway", "gateway_event_id", name="uq_transacoes_gateway_event"),
    )
    op.create_index("ix_transacoes_user_id", "transacoes", ["user_id"])
    op.create_index("ix_transacoes_status", "transacoes", ["status"])
    op.create_index("ix_transacoes_venda_id", "transacoes", ["venda_id"])
    op.create_index("ix_transacoes_assinatura_id", "transacoes", ["assinatura_id"])
    op.create_index("ix_transacoes_stripe_transaction_id", "transacoes", ["stripe_transaction_id"])
    op.create_index("ix_transacoes_afiliado_id", "transacoes", ["afiliado_id"])

    # Commissions
    op.create_table(
        "comissoes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("afiliado_id", sa.String(36), nullable=False),
        sa.Column("venda_id", sa.String(36), nullable=True),
        sa.Column("assinatura_id", sa.String(36), sa.ForeignKey("assinaturas.id"), nullable=True),
        sa.Column("transacao_id", sa.String(36), sa.ForeignKey("transacoes.id"), nullable=True),
        sa.Column("tipo_comissao", sa.Enum("venda", "assinatura", name="commissiontype"), nullable=False),
        sa.Column("valor_comissao", sa.Numeric(12, 2), nullable=False),
        sa.Column("percentual_comissao", sa.Numeric(5, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pendente", "paga", "cancelada", name="commissionstatus"),
            nullable=False,
        ),
        sa.Column("data_pagamento", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_transfer_id", sa.String(255), nullable=True),
        sa.Column("descricao", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.UniqueConstraint("transacao_id"),
    )
    op.create_index("ix_comissoes_afiliado_id", "comissoes", ["afiliado_id"])
    op.create_index("ix_comissoes_assinatura_id", "comissoes", ["assinatura_id"])
    op.create_index("ix_comissoes_status", "comissoes", ["status"])

    # Ledger issues
    op.create_table(
        "ledger_issues",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "kind",
            sa.Enum("commission_write_failed", "missing_metadata", "invalid_amount", name="issuekind"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum("open", "resolved", name="issuestatus"), nullable=False),
        sa.Column("gateway", sa.String(50), nullable=False, server_default="stripe"),
        sa.Column("gateway_event_id", sa.String(255), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=True),
        sa.Column("transacao_id", sa.String(36), sa.ForeignKey("transacoes.id"), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True, comment="Payload needed to repair the issue"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_ledger_issues_kind", "ledger_issues", ["kind"])
    op.create_index("ix_ledger_issues_status", "ledger_issues", ["status"])
    op.create_index("ix_ledger_issues_gateway_event_id", "ledger_issues", ["gateway_event_id"])


def downgrade() -> None:
    """Drop the ledger tables."""
    op.drop_table("ledger_issues")
    op.drop_table("comissoes")
    op.drop_table("transacoes")
    op.drop_table("assinaturas")
    op.drop_table("planos_assinatura")

    for enum_name in (
        "issuestatus",
        "issuekind",
        "commissionstatus",
        "commissiontype",
        "transactionstatus",
        "transactiontype",
        "billinginterval",
        "subscriptionstatus",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
