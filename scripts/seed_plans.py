"""
Seed subscription plans for local testing.

Usage:
    python scripts/seed_plans.py

Or with custom DATABASE_URL:
    DATABASE_URL="postgresql://..." python scripts/seed_plans.py

Plans are matched by name, so running it twice only updates prices.
The Stripe price ids must exist in the Stripe account used for testing.
"""

import asyncio
import os
import sys
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from redetour.db import get_db_context
from redetour.models import SubscriptionPlan


TEST_PLANS = [
    {
        "nome": "Parceiro Básico",
        "descricao": "Anúncio de até 5 experiências",
        "preco_mensal": Decimal("49.90"),
        "preco_anual": Decimal("499.00"),
        "stripe_price_id_mensal": os.environ.get("PRICE_BASIC_MONTH"),
        "stripe_price_id_anual": os.environ.get("PRICE_BASIC_YEAR"),
    },
    {
        "nome": "Parceiro Premium",
        "descricao": "Experiências ilimitadas e destaque na busca",
        "preco_mensal": Decimal("99.90"),
        "preco_anual": Decimal("999.00"),
        "stripe_price_id_mensal": os.environ.get("PRICE_PREMIUM_MONTH"),
        "stripe_price_id_anual": os.environ.get("PRICE_PREMIUM_YEAR"),
    },
]


async def seed():
    async with get_db_context() as db:
        for values in TEST_PLANS:
            result = await db.execute(
                select(SubscriptionPlan).where(SubscriptionPlan.nome == values["nome"])
            )
            plan = result.scalar_one_or_none()

            if plan is None:
                plan = SubscriptionPlan(**values)
                db.add(plan)
                await db.flush()
                print(f"  + {plan.nome} ({plan.id})")
            else:
                for key, value in values.items():
                    setattr(plan, key, value)
                print(f"  ~ {plan.nome} ({plan.id})")

            if not plan.stripe_price_id_mensal or not plan.stripe_price_id_anual:
                print(f"    warning: {plan.nome} is missing a Stripe price id")

    print("\nPlans seeded!")


if __name__ == "__main__":
    asyncio.run(seed())
