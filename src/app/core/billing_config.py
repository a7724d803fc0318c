"""
Plan catalogue: prices and the entitlement each plan grants
"""
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from schemas.payments import BillingCycle, PlanId

FREE_PLAN = "free"
FREE_PLAN_TYPE = "per-article"

@dataclass(frozen=True)
class PlanFeatures:
    """Entitlement granted by one plan"""
    plan: str
    display_name: str
    # None means unlimited; per-article purchases are metered by credits instead
    articles_limit: Optional[int]
    metered_by_credits: bool
    # Prices in BRL minor units, keyed by billing cycle
    prices: Dict[BillingCycle, int] = field(default_factory=dict)

class PlanConfig:
    """Plan catalogue"""

    PLAN_CONFIGS: Dict[PlanId, PlanFeatures] = {
        PlanId.PER_ARTICLE: PlanFeatures(
            plan="per-article",
            display_name="Por Artigo",
            articles_limit=None,
            metered_by_credits=True,
            prices={BillingCycle.ONE_TIME: 1500},
        ),
        PlanId.PROFESSIONAL: PlanFeatures(
            plan="professional",
            display_name="Profissional",
            articles_limit=5,
            metered_by_credits=False,
            prices={BillingCycle.MONTHLY: 7900, BillingCycle.YEARLY: 79000},
        ),
        PlanId.INSTITUTIONAL: PlanFeatures(
            plan="institutional",
            display_name="Institucional",
            articles_limit=None,
            metered_by_credits=False,
            prices={BillingCycle.YEARLY: 199900},
        ),
    }

    @classmethod
    def get_features(cls, plan_id: PlanId) -> PlanFeatures:
        return cls.PLAN_CONFIGS[PlanId(plan_id)]

    @classmethod
    def supports_cycle(cls, plan_id: PlanId, billing_cycle: BillingCycle) -> bool:
        return BillingCycle(billing_cycle) in cls.get_features(plan_id).prices

    @classmethod
    def default_cycle(cls, plan_id: PlanId) -> BillingCycle:
        """First cycle listed for the plan"""
        return next(iter(cls.get_features(plan_id).prices))

    @classmethod
    def get_price(cls, plan_id: PlanId, billing_cycle: BillingCycle, quantity: int = 1) -> int:
        """Price in minor units; per-article purchases scale with the credit count"""
        features = cls.get_features(plan_id)
        cycle = BillingCycle(billing_cycle)
        if cycle not in features.prices:
            raise ValueError(
                f"Plan {PlanId(plan_id).value} is not sold with billing cycle {cycle.value}"
            )
        price = features.prices[cycle]
        if features.metered_by_credits:
            return price * max(1, quantity)
        return price

    @classmethod
    def get_plan_info(cls, plan_id: PlanId) -> Dict[str, Any]:
        features = cls.get_features(plan_id)
        return {
            "plan_id": PlanId(plan_id).value,
            "plan": features.plan,
            "display_name": features.display_name,
            "articles_limit": features.articles_limit,
            "metered_by_credits": features.metered_by_credits,
            "prices": {cycle.value: amount for cycle, amount in features.prices.items()},
        }
