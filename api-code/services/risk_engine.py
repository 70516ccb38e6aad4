"""Heuristic deployment planning over git state and the changed-file set."""

from __future__ import annotations

import posixpath
from typing import Iterable, List, Optional, Sequence

from domain import Environment, Provider
from models import (
    AIDeploymentPlan,
    CostEstimate,
    DeploymentSuggestion,
    GitStatus,
    RiskAssessment,
)


MIGRATION_MARKERS = ("migration", "schema", "prisma")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")
CONFIG_MARKERS = ("config", ".env")
DEPENDENCY_MANIFESTS = frozenset(
    {
        "package.json",
        "package-lock.json",
        "yarn.lock",
        "pnpm-lock.yaml",
        "bun.lockb",
        "requirements.txt",
        "pyproject.toml",
        "poetry.lock",
        "pipfile",
        "pipfile.lock",
        "go.mod",
        "go.sum",
        "cargo.toml",
        "cargo.lock",
        "gemfile",
        "gemfile.lock",
        "composer.json",
        "composer.lock",
    }
)

BASE_PLAN_COST = 0.05
COST_PER_FILE = 0.001
HOSTING_SHARE = 0.3
PLAN_COST_MULTIPLIERS = {
    Environment.PREVIEW: 1.0,
    Environment.STAGING: 1.5,
    Environment.PRODUCTION: 2.0,
}

BASE_PLAN_BUILD_SECONDS = 120
DEPENDENCY_BUILD_SECONDS = 60
LARGE_CHANGESET_BUILD_SECONDS = 30
LARGE_CHANGESET_BUILD_THRESHOLD = 20
LARGE_CHANGESET_SUGGESTION_THRESHOLD = 10

STAGE_FIRST_AHEAD_BY = 5
PRODUCTION_DOWNGRADE_AHEAD_BY = 3

RISK_ORDER = {"low": 0, "medium": 1, "high": 2}


def touches_migration(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in MIGRATION_MARKERS)


def is_image_asset(path: str) -> bool:
    return path.lower().endswith(IMAGE_EXTENSIONS)


def is_api_path(path: str) -> bool:
    lowered = path.lower()
    return lowered.startswith("api/") or "/api/" in lowered


def is_config_path(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in CONFIG_MARKERS)


def is_dependency_manifest(path: str) -> bool:
    name = posixpath.basename(path.replace("\\", "/")).lower()
    if name in DEPENDENCY_MANIFESTS:
        return True
    return name.startswith("requirements") and name.endswith(".txt")


def build_suggestions(
    git_status: GitStatus, changed_files: Sequence[str], environment: Environment
) -> List[DeploymentSuggestion]:
    suggestions: List[DeploymentSuggestion] = []
    ahead_by = git_status.ahead_by or 0

    if any(touches_migration(path) for path in changed_files):
        suggestions.append(
            DeploymentSuggestion(
                type="warning",
                title="Database changes detected",
                description="Schema changes require careful deployment planning.",
                action="Run migrations in staging first",
                priority="high",
            )
        )
    if ahead_by >= STAGE_FIRST_AHEAD_BY:
        suggestions.append(
            DeploymentSuggestion(
                type="recommendation",
                title="Multiple commits detected",
                description=f"{ahead_by} commits since last deploy. Consider staging first.",
                action="Deploy to staging environment first",
                priority="medium",
            )
        )
    if any(is_image_asset(path) for path in changed_files):
        suggestions.append(
            DeploymentSuggestion(
                type="optimization",
                title="Image assets detected",
                description="Consider optimizing images to reduce bundle size.",
                action="Enable automatic image optimization",
                priority="low",
            )
        )
    if environment == Environment.PRODUCTION:
        suggestions.append(
            DeploymentSuggestion(
                type="security",
                title="Production deployment",
                description="Ensure all environment variables are properly configured.",
                action="Review production environment variables",
                priority="high",
            )
        )
    if len(changed_files) > LARGE_CHANGESET_SUGGESTION_THRESHOLD:
        suggestions.append(
            DeploymentSuggestion(
                type="optimization",
                title="Large changeset detected",
                description="Consider incremental deployment strategy.",
                action="Deploy in smaller batches",
                priority="medium",
            )
        )
    return suggestions


def assess_risk(changed_files: Sequence[str], environment: Environment) -> RiskAssessment:
    level = "low"
    factors: List[str] = []

    def raise_to(target: str) -> None:
        nonlocal level
        if RISK_ORDER[target] > RISK_ORDER[level]:
            level = target

    if any(touches_migration(path) for path in changed_files):
        factors.append("Database schema changes")
        raise_to("high")
    if any(is_api_path(path) for path in changed_files):
        factors.append("API endpoint modifications")
        raise_to("medium")
    if any(is_config_path(path) for path in changed_files):
        factors.append("Configuration changes")
        raise_to("medium")
    if any(is_dependency_manifest(path) for path in changed_files):
        factors.append("Dependency changes")
        raise_to("medium")
    if environment == Environment.PRODUCTION:
        factors.append("Production environment deployment")
        raise_to("medium")
    return RiskAssessment(level=level, factors=factors)


def estimate_plan_cost(changed_files: Sequence[str], environment: Environment) -> CostEstimate:
    base_cost = BASE_PLAN_COST + COST_PER_FILE * len(changed_files)
    build = base_cost * PLAN_COST_MULTIPLIERS.get(environment, 1.0)
    hosting = build * HOSTING_SHARE
    return CostEstimate(build=build, hosting=hosting, total=build + hosting)


def estimate_plan_build_time(changed_files: Sequence[str]) -> int:
    seconds = BASE_PLAN_BUILD_SECONDS
    if any(is_dependency_manifest(path) or "node_modules" in path for path in changed_files):
        seconds += DEPENDENCY_BUILD_SECONDS
    if len(changed_files) > LARGE_CHANGESET_BUILD_THRESHOLD:
        seconds += LARGE_CHANGESET_BUILD_SECONDS
    return seconds


def recommend_environment(git_status: GitStatus, requested: Environment) -> Environment:
    if git_status.is_dirty:
        return Environment.PREVIEW
    if requested == Environment.PRODUCTION and (git_status.ahead_by or 0) > PRODUCTION_DOWNGRADE_AHEAD_BY:
        return Environment.STAGING
    return requested


def calculate_confidence(risk: RiskAssessment, suggestions: Iterable[DeploymentSuggestion]) -> float:
    confidence = 0.9
    if risk.level == "high":
        confidence -= 0.3
    elif risk.level == "medium":
        confidence -= 0.15
    warnings = sum(1 for suggestion in suggestions if suggestion.type == "warning")
    confidence -= 0.1 * warnings
    return round(max(0.1, min(1.0, confidence)), 4)


def build_rationale(
    git_status: GitStatus, risk: RiskAssessment, suggestions: Sequence[DeploymentSuggestion]
) -> str:
    parts: List[str] = []
    ahead_by = git_status.ahead_by or 0
    if ahead_by > 0:
        parts.append(f"{ahead_by} commits ahead of last deployment")
    if risk.level == "high":
        parts.append("High-risk changes detected requiring careful deployment")
    elif risk.level == "medium":
        parts.append("Medium-risk changes requiring staging validation")
    else:
        parts.append("Low-risk changes suitable for direct deployment")
    high_priority = sum(1 for suggestion in suggestions if suggestion.priority == "high")
    if high_priority:
        parts.append(f"{high_priority} high-priority recommendations")
    return ". ".join(parts) + "."


def generate_deployment_plan(
    git_status: Optional[GitStatus],
    changed_files: Optional[Sequence[str]],
    requested_environment: Environment | str,
    recommended_provider: Provider | str = Provider.VERCEL,
) -> AIDeploymentPlan:
    """Combine suggestions, risk, cost and confidence into a deployment plan.

    Missing git data is read as the least risky value (nothing ahead, clean
    tree), so partial inspector output degrades the plan instead of failing it.
    """
    git_status = git_status or GitStatus()
    files = [path for path in (changed_files or []) if isinstance(path, str) and path]
    environment = Environment(requested_environment)

    suggestions = build_suggestions(git_status, files, environment)
    risk = assess_risk(files, environment)
    cost = estimate_plan_cost(files, environment)

    return AIDeploymentPlan(
        recommended_environment=recommend_environment(git_status, environment),
        recommended_provider=Provider(recommended_provider),
        estimated_cost=cost.total,
        estimated_build_time=estimate_plan_build_time(files),
        confidence=calculate_confidence(risk, suggestions),
        rationale=build_rationale(git_status, risk, suggestions),
        suggestions=suggestions,
        risk=risk,
        cost_breakdown=cost,
    )
