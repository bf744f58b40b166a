from __future__ import annotations

from dataclasses import dataclass

from app.config import Settings

BILLING_CYCLES = ("monthly", "annual")


@dataclass(frozen=True)
class PlanPricing:
    plan_id: str
    name: str
    billing_cycle: str
    amount_cents: int
    stripe_price_id: str
    currency: str = "usd"


# amounts per ad account; annual carries a 20% discount
PER_ACCOUNT_PLANS: dict[str, dict] = {
    "basic": {
        "name": "Basic",
        "amounts": {"monthly": 1000, "annual": 9600},
    },
    "pro": {
        "name": "Pro",
        "amounts": {"monthly": 2000, "annual": 19200},
    },
}


def _price_id(plan_id: str, billing_cycle: str, settings: Settings) -> str | None:
    return getattr(settings, f"stripe_{plan_id}_{billing_cycle}_price_id", None)


def get_per_account_plan(
    plan_id: str, billing_cycle: str, settings: Settings
) -> PlanPricing | None:
    """Resolve plan pricing; ``None`` for unknown plans or unset price IDs."""
    plan = PER_ACCOUNT_PLANS.get(plan_id)
    if plan is None or billing_cycle not in BILLING_CYCLES:
        return None
    price_id = _price_id(plan_id, billing_cycle, settings)
    if not price_id:
        return None
    return PlanPricing(
        plan_id=plan_id,
        name=plan["name"],
        billing_cycle=billing_cycle,
        amount_cents=plan["amounts"][billing_cycle],
        stripe_price_id=price_id,
    )


def plan_for_price(price_id: str, settings: Settings) -> PlanPricing | None:
    for plan_id in PER_ACCOUNT_PLANS:
        for cycle in BILLING_CYCLES:
            if _price_id(plan_id, cycle, settings) == price_id:
                return get_per_account_plan(plan_id, cycle, settings)
    return None


def calculate_per_account_total(account_count: int, price_per_account: float) -> float:
    return round(max(account_count, 0) * price_per_account, 2)
