from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from domain.deploy_states import Environment, Provider

from .deploy import DeployQuota


class GitCommit(BaseModel):
    hash: Optional[str] = None
    message: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None


class GitStatus(BaseModel):
    """Working tree snapshot; ``None`` marks data the inspector could not read."""

    branch: Optional[str] = None
    last_commit: Optional[GitCommit] = None
    ahead_by: Optional[int] = None
    behind_by: Optional[int] = None
    is_dirty: Optional[bool] = None
    uncommitted_changes: Optional[int] = None


class DeploymentSuggestion(BaseModel):
    type: str = Field(..., pattern="^(recommendation|warning|optimization|security)$")
    title: str
    description: str
    action: Optional[str] = None
    priority: str = Field(..., pattern="^(low|medium|high)$")


class RiskAssessment(BaseModel):
    level: str = Field(default="low", pattern="^(low|medium|high)$")
    factors: List[str] = Field(default_factory=list)


class CostEstimate(BaseModel):
    build: float
    hosting: float
    total: float


class AIDeploymentPlan(BaseModel):
    recommended_environment: Environment
    recommended_provider: Provider
    estimated_cost: float
    estimated_build_time: int
    confidence: float = Field(..., ge=0.1, le=1.0)
    rationale: str
    suggestions: List[DeploymentSuggestion] = Field(default_factory=list)
    risk: RiskAssessment
    cost_breakdown: Optional[CostEstimate] = None


class DeployPreview(BaseModel):
    project_id: str
    branch: str
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    provider: Provider
    environment: Environment
    environment_allowed: bool = True
    blocked_reason: Optional[str] = None
    changed_files: List[str] = Field(default_factory=list)
    build_command: Optional[str] = None
    env_variables: Dict[str, str] = Field(default_factory=dict)
    estimated_cost: Optional[float] = None
    estimated_build_time: Optional[int] = None
    git_status: Optional[GitStatus] = None
    plan: Optional[AIDeploymentPlan] = None
    quota: Optional[DeployQuota] = None
    narrative: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Structured summary ({summary, highlights, risks}) of the plan.",
    )
