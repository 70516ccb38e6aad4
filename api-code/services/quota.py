from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Tuple

from domain import Environment, Plan
from models import DeployQuota, QuotaFeatures, QuotaUsage


@dataclass(frozen=True)
class PlanLimits:
    monthly_deploys: int
    environments: Tuple[Environment, ...]
    rollback: bool
    custom_domains: bool


PLAN_LIMITS: Dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(
        monthly_deploys=3,
        environments=(Environment.PREVIEW,),
        rollback=False,
        custom_domains=False,
    ),
    Plan.PRO: PlanLimits(
        monthly_deploys=50,
        environments=(Environment.PREVIEW, Environment.STAGING),
        rollback=True,
        custom_domains=False,
    ),
    Plan.TEAM: PlanLimits(
        monthly_deploys=200,
        environments=(Environment.PREVIEW, Environment.STAGING, Environment.PRODUCTION),
        rollback=True,
        custom_domains=True,
    ),
    Plan.ENTERPRISE: PlanLimits(
        monthly_deploys=1000,
        environments=(Environment.PREVIEW, Environment.STAGING, Environment.PRODUCTION),
        rollback=True,
        custom_domains=True,
    ),
}


def month_start(now: datetime | None = None) -> datetime:
    """First instant of the current calendar month in UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def resolve_quota(plan: Plan | str, used: int) -> DeployQuota:
    plan = Plan(plan)
    limits = PLAN_LIMITS[plan]
    return DeployQuota(
        plan=plan,
        monthly_deploys=QuotaUsage(
            limit=limits.monthly_deploys,
            used=used,
            remaining=max(0, limits.monthly_deploys - used),
        ),
        environments=list(limits.environments),
        features=QuotaFeatures(
            preview=True,
            staging=Environment.STAGING in limits.environments,
            production=Environment.PRODUCTION in limits.environments,
            rollback=limits.rollback,
            logs=True,
            custom_domains=limits.custom_domains,
        ),
    )
