"""Finance read schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel

from redetour.models import (
    BillingInterval,
    CommissionStatus,
    CommissionType,
    IssueKind,
    IssueStatus,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
)
from redetour.schemas.sales import MonthlySales, SalesPeriod


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    tipo_transacao: TransactionType
    valor: Decimal
    moeda: str
    status: TransactionStatus
    descricao: Optional[str]
    tipo_produto: Optional[str] = None
    venda_id: Optional[str]
    assinatura_id: Optional[str]
    stripe_transaction_id: Optional[str]
    taxa_gateway: Decimal
    valor_liquido: Decimal
    afiliado_id: Optional[str]
    comissao_afiliado: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class CommissionResponse(BaseModel):
    id: str
    afiliado_id: str
    venda_id: Optional[str]
    assinatura_id: Optional[str]
    transacao_id: Optional[str]
    tipo_comissao: CommissionType
    valor_comissao: Decimal
    percentual_comissao: Decimal
    status: CommissionStatus
    data_pagamento: Optional[datetime]
    stripe_transfer_id: Optional[str]
    descricao: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    plano_id: str
    status: SubscriptionStatus
    data_inicio: datetime
    data_fim: datetime
    intervalo: BillingInterval
    cancelar_no_fim_do_periodo: bool
    valor_pago: Decimal
    afiliado_id: Optional[str]

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    """Paginated list of transactions."""

    items: List[TransactionResponse]
    total: int
    page: int
    per_page: int
    pages: int


class CommissionListResponse(BaseModel):
    """Paginated list of commissions."""

    items: List[CommissionResponse]
    total: int
    page: int
    per_page: int
    pages: int


class FinanceSummaryResponse(BaseModel):
    """Revenue, fee and commission totals, optionally for a period."""

    periodo: Optional[SalesPeriod] = None
    receita_bruta: Decimal
    taxas_gateway: Decimal
    receita_liquida: Decimal
    reembolsos: Decimal
    comissoes_pendentes: Decimal
    comissoes_pagas: Decimal
    transacoes_concluidas: int
    transacoes_falhas: int
    assinaturas_ativas: int
    vendas_por_tipo: Dict[str, int] = {}
    vendas_por_mes: List[MonthlySales] = []


class CommissionStatusUpdate(BaseModel):
    """Payout update for a commission."""

    status: Literal["paga", "cancelada"]
    stripe_transfer_id: Optional[str] = None


class LedgerIssueResponse(BaseModel):
    id: str
    kind: IssueKind
    status: IssueStatus
    gateway: str
    gateway_event_id: Optional[str]
    event_type: Optional[str]
    transacao_id: Optional[str]
    details: Optional[dict[str, Any]]
    error_message: Optional[str]
    attempts: int
    resolved_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class ReconciliationResponse(BaseModel):
    checked: int
    repaired: int
    already_present: int
    failed: int
