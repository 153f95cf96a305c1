"""
Ledger writer: books gateway events as Transaction, Commission and
Subscription rows.

Every public operation is one unit of work:
1. Idempotency lookup on (gateway, gateway_event_id); a hit is a no-op
2. Amounts computed up front, so a bad amount writes nothing
3. Subscription changes and the Transaction are flushed first
4. The Commission goes in a SAVEPOINT; if it fails the Transaction still
   commits and a commission_write_failed issue is flagged for reconciliation
5. Commit
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from redetour.errors import InvalidPeriodError, LedgerWriteError, SubscriptionNotFoundError
from redetour.models import (
    BillingInterval,
    Commission,
    CommissionStatus,
    CommissionType,
    IssueKind,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from redetour.services.commission import Amount, CommissionCalculator, to_amount
from redetour.services.rates import Attribution, ProductType
from redetour.utils.issues import flag_issue

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def commission_payload(commission: Commission) -> dict:
    """Fields needed to rebuild a Commission during reconciliation."""
    return {
        "afiliado_id": commission.afiliado_id,
        "venda_id": commission.venda_id,
        "assinatura_id": commission.assinatura_id,
        "transacao_id": commission.transacao_id,
        "tipo_comissao": commission.tipo_comissao,
        "valor_comissao": commission.valor_comissao,
        "percentual_comissao": commission.percentual_comissao,
        "descricao": commission.descricao,
    }


def interval_label(interval: BillingInterval) -> str:
    return "anual" if interval is BillingInterval.YEARLY else "mensal"


async def refunded_total(db: AsyncSession, sale: Transaction) -> Decimal:
    """Sum of the completed refunds booked against a sale."""
    total = await db.scalar(
        select(func.coalesce(func.sum(Transaction.valor), ZERO)).where(
            Transaction.gateway == sale.gateway,
            Transaction.stripe_transaction_id == sale.stripe_transaction_id,
            Transaction.tipo_transacao == TransactionType.REFUND,
            Transaction.status == TransactionStatus.COMPLETED,
        )
    )
    return Decimal(str(total))


class LedgerWriter:
    """Persists the financial records of verified gateway events."""

    def __init__(self, db: AsyncSession, calculator: CommissionCalculator):
        self.db = db
        self.calculator = calculator

    # ── Lookups ───────────────────────────────────────────

    async def find_transaction(
        self, gateway: str, gateway_event_id: str
    ) -> Optional[Transaction]:
        """Transaction booked under an idempotency key, if any."""
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.gateway == gateway,
                Transaction.gateway_event_id == gateway_event_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_subscription(
        self, gateway_subscription_id: str
    ) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == gateway_subscription_id
            )
        )
        return result.scalar_one_or_none()

    # ── Sales ─────────────────────────────────────────────

    async def record_sale_payment(
        self,
        user_id: str,
        gross: Amount,
        currency: str,
        gateway: str,
        gateway_event_id: str,
        description: str,
        affiliate_id: Optional[str] = None,
        sale_id: Optional[str] = None,
        product_type: Optional[str] = None,
        stripe_transaction_id: Optional[str] = None,
    ) -> Transaction:
        """
        Book a completed one-off payment.

        The affiliate, if any, is credited at the direct tier of the
        product type.

        Returns:
            The new Transaction, or the existing one for a repeated key
        """
        existing = await self.find_transaction(gateway, gateway_event_id)
        if existing:
            logger.info(f"Sale {gateway}:{gateway_event_id} already booked as {existing.id}")
            return existing

        gross = to_amount(gross)
        fee = self.calculator.compute_fee(gross)
        net = self.calculator.compute_net(gross, fee)

        commission = None
        if affiliate_id:
            quote = self.calculator.compute_commission(gross, product_type, Attribution.DIRECT)
            commission = Commission(
                afiliado_id=affiliate_id,
                venda_id=sale_id,
                tipo_comissao=CommissionType.SALE,
                valor_comissao=quote.amount,
                percentual_comissao=quote.percent,
                status=CommissionStatus.PENDING,
                descricao=f"Comissão por venda: {description}",
            )

        transaction = Transaction(
            user_id=user_id,
            tipo_transacao=TransactionType.SALE,
            valor=gross,
            moeda=currency.upper(),
            status=TransactionStatus.COMPLETED,
            descricao=description,
            tipo_produto=product_type[:50] if product_type else None,
            venda_id=sale_id,
            stripe_transaction_id=stripe_transaction_id or gateway_event_id,
            gateway=gateway,
            gateway_event_id=gateway_event_id,
            taxa_gateway=fee,
            valor_liquido=net,
            afiliado_id=affiliate_id,
            comissao_afiliado=commission.valor_comissao if commission else ZERO,
        )
        return await self._book(transaction, commission)

    async def record_payment_failure(
        self,
        user_id: str,
        gross: Amount,
        currency: str,
        gateway: str,
        gateway_event_id: str,
        reason: str,
        stripe_transaction_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Transaction:
        """
        Book a failed payment attempt: no fee, no net, no commission.

        A failed renewal charge carries the local subscription id.
        """
        existing = await self.find_transaction(gateway, gateway_event_id)
        if existing:
            logger.info(f"Failure {gateway}:{gateway_event_id} already booked as {existing.id}")
            return existing

        transaction = Transaction(
            user_id=user_id,
            tipo_transacao=(
                TransactionType.SUBSCRIPTION if subscription_id else TransactionType.SALE
            ),
            valor=to_amount(gross),
            moeda=currency.upper(),
            status=TransactionStatus.FAILED,
            descricao=reason,
            assinatura_id=subscription_id,
            stripe_transaction_id=stripe_transaction_id or gateway_event_id,
            gateway=gateway,
            gateway_event_id=gateway_event_id,
            taxa_gateway=ZERO,
            valor_liquido=ZERO,
            comissao_afiliado=ZERO,
        )
        return await self._book(transaction, None)

    async def record_refund(
        self,
        gateway: str,
        gateway_event_id: str,
        stripe_transaction_id: str,
        amount: Amount,
        currency: str,
        reason: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Book a compensating refund for a completed sale.

        Once the refunds of a sale add up to its amount, its pending
        commissions are cancelled.

        Returns:
            The refund Transaction, or None when the original sale is unknown
        """
        existing = await self.find_transaction(gateway, gateway_event_id)
        if existing:
            logger.info(f"Refund {gateway}:{gateway_event_id} already booked as {existing.id}")
            return existing

        result = await self.db.execute(
            select(Transaction).where(
                Transaction.gateway == gateway,
                Transaction.stripe_transaction_id == stripe_transaction_id,
                Transaction.tipo_transacao == TransactionType.SALE,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
        original = result.scalars().first()
        if original is None:
            logger.warning(f"Refund for unknown payment {stripe_transaction_id}, nothing booked")
            return None

        amount = to_amount(amount)
        if await refunded_total(self.db, original) + amount >= original.valor:
            result = await self.db.execute(
                select(Commission).where(
                    Commission.transacao_id == original.id,
                    Commission.status == CommissionStatus.PENDING,
                )
            )
            for commission in result.scalars().all():
                commission.status = CommissionStatus.CANCELLED
                logger.info(f"Commission {commission.id} cancelled by refund of {original.id}")

        refund = Transaction(
            user_id=original.user_id,
            tipo_transacao=TransactionType.REFUND,
            valor=amount,
            moeda=currency.upper(),
            status=TransactionStatus.COMPLETED,
            descricao=reason or "Reembolso",
            venda_id=original.venda_id,
            stripe_transaction_id=stripe_transaction_id,
            gateway=gateway,
            gateway_event_id=gateway_event_id,
            taxa_gateway=ZERO,
            valor_liquido=amount,
            afiliado_id=original.afiliado_id,
            comissao_afiliado=ZERO,
        )
        return await self._book(refund, None)

    # ── Subscriptions ─────────────────────────────────────

    async def record_subscription_created(
        self,
        user_id: str,
        plan_id: str,
        interval: Union[BillingInterval, str],
        gateway_subscription_id: str,
        gateway_customer_id: Optional[str],
        period_start: datetime,
        period_end: datetime,
        amount: Amount,
        affiliate_id: Optional[str] = None,
        currency: str = "BRL",
        gateway: str = "stripe",
    ) -> tuple[Subscription, Transaction]:
        """
        Create an active subscription and book its first payment.

        Keyed on the gateway subscription id, so the checkout completion
        and the subscription-created event book it once.
        """
        existing = await self.find_transaction(gateway, gateway_subscription_id)
        if existing:
            logger.info(f"Subscription {gateway_subscription_id} already booked as {existing.id}")
            subscription = await self.find_subscription(gateway_subscription_id)
            return subscription, existing

        if period_end <= period_start:
            raise InvalidPeriodError(
                f"Subscription {gateway_subscription_id}", period_start, period_end
            )

        if not isinstance(interval, BillingInterval):
            interval = BillingInterval.from_gateway(interval)

        gross = to_amount(amount)
        fee = self.calculator.compute_fee(gross)
        net = self.calculator.compute_net(gross, fee)

        subscription = await self.find_subscription(gateway_subscription_id)
        if subscription is None:
            subscription = Subscription(
                user_id=user_id,
                plano_id=plan_id,
                status=SubscriptionStatus.ACTIVE,
                data_inicio=period_start,
                data_fim=period_end,
                intervalo=interval,
                stripe_subscription_id=gateway_subscription_id,
                stripe_customer_id=gateway_customer_id,
                valor_pago=gross,
                afiliado_id=affiliate_id,
            )
            self.db.add(subscription)

        label = interval_label(interval)
        commission = None
        if affiliate_id:
            quote = self.calculator.compute_commission(
                gross, ProductType.SUBSCRIPTION.value, Attribution.DIRECT
            )
            commission = Commission(
                afiliado_id=affiliate_id,
                tipo_comissao=CommissionType.SUBSCRIPTION,
                valor_comissao=quote.amount,
                percentual_comissao=quote.percent,
                status=CommissionStatus.PENDING,
                descricao=f"Comissão por assinatura {label}",
            )

        transaction = Transaction(
            user_id=user_id,
            tipo_transacao=TransactionType.SUBSCRIPTION,
            valor=gross,
            moeda=currency.upper(),
            status=TransactionStatus.COMPLETED,
            descricao=f"Assinatura {label} criada",
            stripe_transaction_id=gateway_subscription_id,
            gateway=gateway,
            gateway_event_id=gateway_subscription_id,
            taxa_gateway=fee,
            valor_liquido=net,
            afiliado_id=affiliate_id,
            comissao_afiliado=commission.valor_comissao if commission else ZERO,
        )
        transaction.assinatura = subscription

        transaction = await self._book(transaction, commission)
        if transaction.assinatura_id != subscription.id:
            # Lost a race against a concurrent delivery of the same subscription
            subscription = await self.find_subscription(gateway_subscription_id)
        return subscription, transaction

    async def record_subscription_renewal(
        self,
        gateway_subscription_id: str,
        period_start: datetime,
        period_end: datetime,
        amount_paid: Amount,
        gateway_invoice_id: str,
        currency: str = "BRL",
        gateway: str = "stripe",
    ) -> Transaction:
        """
        Move a subscription to its new period and book the renewal payment.

        Raises:
            SubscriptionNotFoundError: the subscription has not been created
                yet; nothing is written
        """
        existing = await self.find_transaction(gateway, gateway_invoice_id)
        if existing:
            logger.info(f"Invoice {gateway_invoice_id} already booked as {existing.id}")
            return existing

        subscription = await self.find_subscription(gateway_subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(gateway_subscription_id)

        if period_end <= period_start:
            raise InvalidPeriodError(f"Invoice {gateway_invoice_id}", period_start, period_end)

        gross = to_amount(amount_paid)
        fee = self.calculator.compute_fee(gross)
        net = self.calculator.compute_net(gross, fee)

        commission = None
        if subscription.afiliado_id:
            quote = self.calculator.compute_commission(
                gross, ProductType.SUBSCRIPTION.value, Attribution.DIRECT
            )
            commission = Commission(
                afiliado_id=subscription.afiliado_id,
                assinatura_id=subscription.id,
                tipo_comissao=CommissionType.SUBSCRIPTION,
                valor_comissao=quote.amount,
                percentual_comissao=quote.percent,
                status=CommissionStatus.PENDING,
                descricao="Comissão por renovação de assinatura",
            )

        subscription.data_inicio = period_start
        subscription.data_fim = period_end
        subscription.valor_pago = gross
        if subscription.status == SubscriptionStatus.SUSPENDED:
            subscription.status = SubscriptionStatus.ACTIVE

        transaction = Transaction(
            user_id=subscription.user_id,
            tipo_transacao=TransactionType.SUBSCRIPTION,
            valor=gross,
            moeda=currency.upper(),
            status=TransactionStatus.COMPLETED,
            descricao="Renovação de assinatura",
            assinatura_id=subscription.id,
            stripe_transaction_id=gateway_invoice_id,
            gateway=gateway,
            gateway_event_id=gateway_invoice_id,
            taxa_gateway=fee,
            valor_liquido=net,
            afiliado_id=subscription.afiliado_id,
            comissao_afiliado=commission.valor_comissao if commission else ZERO,
        )
        return await self._book(transaction, commission)

    async def record_subscription_status(
        self,
        gateway_subscription_id: str,
        status: SubscriptionStatus,
        cancel_at_period_end: bool = False,
    ) -> Subscription:
        """Apply a status change reported by the gateway."""
        subscription = await self.find_subscription(gateway_subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(gateway_subscription_id)

        if subscription.status != status:
            logger.info(
                f"Subscription {gateway_subscription_id}: "
                f"{subscription.status.value} -> {status.value}"
            )
        subscription.status = status
        subscription.cancelar_no_fim_do_periodo = cancel_at_period_end

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise LedgerWriteError(str(e)) from e
        return subscription

    # ── Unit of work ──────────────────────────────────────

    async def _book(
        self, transaction: Transaction, commission: Optional[Commission]
    ) -> Transaction:
        """Write the Transaction (and pending changes), then the Commission, then commit."""
        self.db.add(transaction)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            winner = await self.find_transaction(transaction.gateway, transaction.gateway_event_id)
            if winner is None:
                raise LedgerWriteError(str(e)) from e
            logger.info(
                f"Concurrent delivery of {transaction.gateway}:{transaction.gateway_event_id} "
                f"already booked as {winner.id}"
            )
            return winner
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise LedgerWriteError(str(e)) from e

        if commission is not None:
            commission.transacao_id = transaction.id
            commission.assinatura_id = commission.assinatura_id or transaction.assinatura_id
            commission.venda_id = commission.venda_id or transaction.venda_id
            await self._write_commission(commission, transaction)

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise LedgerWriteError(str(e)) from e

        logger.info(
            f"Booked {transaction.tipo_transacao.value} {transaction.id} "
            f"({transaction.gateway}:{transaction.gateway_event_id}) "
            f"valor={transaction.valor} status={transaction.status.value}"
        )
        return transaction

    async def _write_commission(
        self, commission: Commission, transaction: Transaction
    ) -> Optional[Commission]:
        """Insert the commission in a savepoint; flag it for reconciliation on failure."""
        try:
            async with self.db.begin_nested():
                await self._insert_commission(commission)
        except SQLAlchemyError as e:
            logger.error(
                f"Commission for transaction {transaction.id} "
                f"(affiliate {commission.afiliado_id}) not written: {e}"
            )
            await flag_issue(
                self.db,
                IssueKind.COMMISSION_WRITE_FAILED,
                gateway=transaction.gateway,
                gateway_event_id=transaction.gateway_event_id,
                transacao_id=transaction.id,
                details=commission_payload(commission),
                error_message=str(e),
            )
            return None
        return commission

    async def _insert_commission(self, commission: Commission) -> None:
        self.db.add(commission)
        await self.db.flush()
