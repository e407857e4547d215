"""
Plans and subscriptions
"""
import logging
from typing import List, Optional

from guestdrop.core.config import DEFAULT_PLANS, PLAN_FREE_TRIAL
from guestdrop.models.billing import Plan, Subscription
from guestdrop.services.quota import evaluate
from .errors import PlanNotFound, TrialAlreadyUsed

logger = logging.getLogger(__name__)


async def seed_default_plans(repo, plans: Optional[List[dict]] = None) -> List[Plan]:
    """Insert or update the built-in plans, keyed by name"""
    seeded = []
    for plan in plans or DEFAULT_PLANS:
        seeded.append(await repo.upsert_plan(dict(plan)))
    logger.info(f"Seeded {len(seeded)} subscription plans")
    return seeded


async def activate_trial(repo, user_id: str) -> Subscription:
    plan = await repo.get_plan_by_name(PLAN_FREE_TRIAL)
    if not plan:
        raise PlanNotFound()

    history = await repo.list_subscriptions(user_id)
    if any(sub.plan_id == plan.id for sub in history):
        raise TrialAlreadyUsed()

    subscription = await repo.create_subscription(user_id, plan.id)
    logger.info(f"Activated {plan.name} for user {user_id}")
    return subscription


async def subscription_status(repo, user_id: str) -> dict:
    snapshot = await repo.get_active_subscription(user_id)
    if not snapshot:
        return {"status": "none"}

    # Zero-sized check: reports usage and remaining numbers without a deny
    decision = evaluate(snapshot, 0, 0)
    return {
        "status": "active",
        "subscription_id": snapshot.subscription_id,
        "plan_id": snapshot.plan_id,
        "plan_name": snapshot.plan_name,
        "period_start": snapshot.period_start,
        "period_end": snapshot.period_end,
        **decision.to_dict(),
    }
