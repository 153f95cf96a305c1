"""
Fee, net and affiliate commission calculation.

Rules:
- Gateway fee: gross x platform fee rate
- Net: gross - fee (exact, so fee + net always equals gross)
- Commission: gross x tier rate for the product type and attribution,
  computed on the gross amount, not on the net

Every output is rounded once to the currency minor unit (ROUND_HALF_UP).
Nothing here touches the database.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import NamedTuple, Optional, Union

from redetour.errors import InvalidAmountError
from redetour.services.rates import Attribution, RateTable

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Amount = Union[Decimal, int, float, str]


class CommissionQuote(NamedTuple):
    """Commission amount and the fraction it was computed with."""

    amount: Decimal
    rate: Decimal

    @property
    def percent(self) -> Decimal:
        """Rate in percent units, as stored in percentual_comissao."""
        return (self.rate * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_amount(value: Amount) -> Decimal:
    """
    Validate and convert a gross amount to Decimal.

    Raises:
        InvalidAmountError: value is negative, NaN/Infinity or not a number
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(value) from None

    if not amount.is_finite():
        raise InvalidAmountError(value, f"Amount is not finite: {value!r}")
    if amount < 0:
        raise InvalidAmountError(value, f"Amount is negative: {value!r}")
    return amount


def amount_from_minor_units(minor_units: Optional[int]) -> Decimal:
    """Convert a Stripe integer amount (centavos) to currency units."""
    if minor_units is None:
        raise InvalidAmountError(minor_units, "Amount is missing")
    return to_amount(Decimal(minor_units) / HUNDRED)


class CommissionCalculator:
    """Pure calculator bound to one rate table."""

    def __init__(self, rates: RateTable):
        self.rates = rates

    def compute_fee(self, gross: Amount) -> Decimal:
        gross = to_amount(gross)
        return quantize_money(gross * self.rates.platform_fee_rate)

    def compute_net(self, gross: Amount, fee: Amount) -> Decimal:
        gross = to_amount(gross)
        fee = to_amount(fee)
        net = gross - fee
        if net < 0:
            raise InvalidAmountError(fee, f"Fee {fee} exceeds gross amount {gross}")
        return quantize_money(net)

    def compute_commission(
        self,
        gross: Amount,
        product_type: Optional[str],
        attribution: Attribution = Attribution.DIRECT,
    ) -> CommissionQuote:
        """
        Commission owed for a gross amount.

        Args:
            gross: Gross sale or subscription amount
            product_type: Product type used for the tier lookup
            attribution: Tier to apply (only DIRECT is used by the ledger today)

        Returns:
            CommissionQuote with the rounded amount and the rate applied
        """
        gross = to_amount(gross)
        rate = self.rates.lookup(product_type).rate_for(attribution)
        return CommissionQuote(amount=quantize_money(gross * rate), rate=rate)
