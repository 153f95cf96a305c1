"""Manual sale and sales report schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from redetour.services.rates import ProductType

SalesPeriod = Literal["mes", "trimestre", "ano"]


class ManualSaleItem(BaseModel):
    """One line of a sale registered by a partner."""

    product_name: str = Field(..., max_length=255)
    product_type: ProductType
    product_id: Optional[str] = None
    price: Decimal = Field(..., gt=0, description="Unit price in major units")
    quantity: int = Field(1, ge=1)
    discount: Decimal = Field(Decimal("0"), ge=0, description="Line discount in major units")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity - self.discount


class ManualSaleRequest(BaseModel):
    """Sale booked outside the checkout (e.g. paid at the counter)."""

    items: List[ManualSaleItem] = Field(..., min_length=1)
    affiliate_id: Optional[str] = None
    sale_id: Optional[str] = None
    currency: str = Field("BRL", min_length=3, max_length=3)


class MonthlySales(BaseModel):
    mes: str
    vendas: int
    receita: Decimal
    comissoes: Decimal


class SalesReportResponse(BaseModel):
    """Sales of a period, broken down by product type, status and month."""

    periodo: Optional[SalesPeriod] = None
    data_inicio: Optional[datetime] = None
    total_vendas: int
    total_receita: Decimal
    total_comissoes: Decimal
    ticket_medio: Decimal
    vendas_por_tipo: Dict[str, int]
    vendas_por_status: Dict[str, int]
    vendas_por_mes: List[MonthlySales]
