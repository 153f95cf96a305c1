"""Add tipo_produto to transacoes and the invalid_period issue kind.

Revision ID: 001_add_sale_reporting
Revises: 000_initial_schema
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = "001_add_sale_reporting"
down_revision: Union[str, None] = "000_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _col_exists(table: str, column: str) -> bool:
    """Check if a column already exists (idempotency guard)."""
    bind = op.get_bind()
    insp = inspect(bind)
    return column in [c["name"] for c in insp.get_columns(table)]


def upgrade() -> None:
    op.execute("ALTER TYPE issuekind ADD VALUE IF NOT EXISTS 'invalid_period'")

    if not _col_exists("transacoes", "tipo_produto"):
        op.add_column(
            "transacoes",
            sa.Column("tipo_produto", sa.String(50), nullable=True),
        )
        op.create_index("ix_transacoes_tipo_produto", "transacoes", ["tipo_produto"])


def downgrade() -> None:
    if _col_exists("transacoes", "tipo_produto"):
        op.drop_index("ix_transacoes_tipo_produto", table_name="transacoes")
        op.drop_column("transacoes", "tipo_produto")
    # PostgreSQL does not support removing values from enums
