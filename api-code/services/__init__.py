from .auth_service import AuthService
from .deploy_service import DeployService
from .git_inspector import GitInspector
from .plan_narrator import PlanNarrator
from .quota import PLAN_LIMITS, resolve_quota
from .resolution import ResolutionScheduler
from .risk_engine import generate_deployment_plan

__all__ = [
    "AuthService",
    "DeployService",
    "GitInspector",
    "PLAN_LIMITS",
    "PlanNarrator",
    "ResolutionScheduler",
    "generate_deployment_plan",
    "resolve_quota",
]
