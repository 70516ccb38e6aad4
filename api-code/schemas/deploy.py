from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from domain import DeployStatus, Environment, Plan, Provider
from models import DeployOptions, Deployment


class DeployRequest(BaseModel):
    branch: str = Field(default="main", min_length=1, description="Branch to deploy.")
    environment: Environment = Field(default=Environment.PREVIEW, description="Target environment.")
    provider: Provider = Field(default=Provider.VERCEL, description="Hosting provider.")
    commit_hash: Optional[str] = Field(default=None, description="Commit to deploy; defaults to branch head.")
    commit_message: Optional[str] = None
    build_command: Optional[str] = Field(
        default=None, description="Overrides the provider project's build command."
    )
    env_variables: Dict[str, str] = Field(
        default_factory=dict, description="Variables applied to this deployment only."
    )

    def to_options(self) -> DeployOptions:
        return DeployOptions(**self.model_dump())


class DeployResponse(BaseModel):
    id: str = Field(..., description="Provider-namespaced deployment id.")
    status: DeployStatus = Field(..., description="Status reported when the provider accepted the request.")
    provider_id: Optional[str] = None
    logs_url: Optional[str] = None
    estimated_cost: Optional[float] = Field(default=None, description="USD estimate from the provider adapter.")
    estimated_build_time: Optional[int] = Field(default=None, description="Seconds.")


class DeploymentResponse(BaseModel):
    id: str
    project_id: str
    branch: str
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    provider: Provider
    environment: Environment
    status: DeployStatus
    url: Optional[str] = None
    logs_url: Optional[str] = None
    build_command: Optional[str] = None
    estimated_cost: Optional[float] = None
    estimated_build_time: Optional[int] = None
    actual_cost: Optional[float] = None
    build_time_seconds: Optional[int] = None
    error: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back_from: Optional[str] = None
    rollback_reason: Optional[str] = None

    @classmethod
    def from_deployment(cls, deployment: Deployment) -> "DeploymentResponse":
        return cls.model_validate(deployment.model_dump())


class RollbackRequest(BaseModel):
    reason: Optional[str] = Field(
        default=None, max_length=500, description="Why the deployment is being rolled back."
    )


class ProjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    framework: Optional[str] = None
    repo_path: Optional[str] = Field(
        default=None, description="Local working tree used for git status and changed files."
    )
    default_provider: Provider = Provider.VERCEL


class EnvVariablesRequest(BaseModel):
    variables: Dict[str, str] = Field(..., description="Variables to create or overwrite.")
    provider: Optional[Provider] = Field(
        default=None, description="Defaults to the project's provider."
    )


class EnvVariablesResponse(BaseModel):
    project_id: str
    environment: Environment
    variables: Dict[str, str]


class UserPlanRequest(BaseModel):
    plan: Plan


class DeploymentHistoryResponse(BaseModel):
    project_id: str
    deployments: List[DeploymentResponse]
