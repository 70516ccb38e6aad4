from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.deploy_states import DeployStatus, Environment, Plan, Provider


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MongoModel(BaseModel):
    """Base Pydantic model with sensible defaults for MongoDB documents."""

    model_config = {
        "populate_by_name": True,
        "use_enum_values": True,
        "json_encoders": {datetime: lambda dt: dt.isoformat()},
    }

    def to_mongo(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_mongo(cls, document: dict[str, Any]):
        if not document:
            raise ValueError(f"Mongo document is empty; cannot build {cls.__name__}.")
        return cls.model_validate(dict(document))


class Deployment(MongoModel):
    id: str = Field(..., alias="_id", description="Provider-namespaced deployment id.")
    project_id: str
    branch: str = "main"
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    provider: Provider
    environment: Environment
    status: DeployStatus
    provider_id: Optional[str] = Field(default=None, description="Upstream provider id.")
    url: Optional[str] = Field(default=None, description="Set once the deployment succeeds.")
    logs_url: Optional[str] = None
    build_command: Optional[str] = None
    estimated_cost: Optional[float] = None
    estimated_build_time: Optional[int] = None
    actual_cost: Optional[float] = Field(
        default=None, description="Set only when the deployment succeeds."
    )
    build_time_seconds: Optional[int] = None
    error: Optional[str] = Field(default=None, description="Set only when the deployment fails.")
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back_from: Optional[str] = Field(
        default=None, description="Id of the deployment this rollback reinstates."
    )
    rollback_reason: Optional[str] = None

    @property
    def status_enum(self) -> DeployStatus:
        return DeployStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal


class DeploymentCreate(BaseModel):
    deployment_id: str
    project_id: str
    branch: str
    provider: Provider
    environment: Environment
    status: DeployStatus = Field(default=DeployStatus.PENDING)
    created_by: str
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    provider_id: Optional[str] = None
    logs_url: Optional[str] = None
    build_command: Optional[str] = None
    estimated_cost: Optional[float] = None
    estimated_build_time: Optional[int] = None
    rolled_back_from: Optional[str] = None
    rollback_reason: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        payload = self.model_dump(exclude={"deployment_id"})
        return Deployment(_id=self.deployment_id, **payload).to_mongo()


class DeploymentUpdate(BaseModel):
    """Field group written atomically by whichever resolution path finishes."""

    status: Optional[DeployStatus] = None
    url: Optional[str] = None
    error: Optional[str] = None
    actual_cost: Optional[float] = None
    build_time_seconds: Optional[int] = None
    completed_at: Optional[datetime] = None

    def set_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.status is not None:
            fields["status"] = DeployStatus(self.status).value
        if self.url is not None:
            fields["url"] = self.url
        if self.error is not None:
            fields["error"] = self.error
        if self.actual_cost is not None:
            fields["actual_cost"] = self.actual_cost
        if self.build_time_seconds is not None:
            fields["build_time_seconds"] = self.build_time_seconds
        if self.completed_at is not None:
            fields["completed_at"] = self.completed_at
        return fields

    def to_update_query(self) -> dict[str, Any]:
        set_fields = self.set_fields()
        if not set_fields:
            return {}
        set_fields["updated_at"] = utc_now()
        return {"$set": set_fields}


class Project(MongoModel):
    id: str = Field(..., alias="_id")
    name: str
    framework: Optional[str] = None
    repo_path: Optional[str] = Field(
        default=None, description="Working tree inspected for git status and changed files."
    )
    default_provider: Provider = Provider.VERCEL
    created_at: datetime = Field(default_factory=utc_now)


class UserAccount(MongoModel):
    id: str = Field(..., alias="_id")
    plan: Plan = Plan.FREE


class DeployOptions(BaseModel):
    """Immutable request value built once per submission."""

    model_config = ConfigDict(frozen=True)

    branch: str = "main"
    environment: Environment
    provider: Provider
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    build_command: Optional[str] = None
    env_variables: Dict[str, str] = Field(default_factory=dict)


class RollbackOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_deployment_id: str
    reason: Optional[str] = None


class DeployResult(BaseModel):
    id: str
    status: DeployStatus
    provider_id: Optional[str] = None
    url: Optional[str] = None
    logs_url: Optional[str] = None
    build_time_seconds: Optional[int] = None
    error: Optional[str] = None
    estimated_cost: Optional[float] = None
    estimated_build_time: Optional[int] = None


class DeployStatusReport(BaseModel):
    id: str
    status: DeployStatus
    url: Optional[str] = None
    build_time_seconds: Optional[int] = None
    error: Optional[str] = None


class DeployLog(BaseModel):
    timestamp: str
    level: str = Field(default="info", pattern="^(info|warn|error|debug)$")
    source: str = Field(default="build", pattern="^(build|deploy|runtime)$")
    message: str


class DeployMetrics(BaseModel):
    total_deploys: int = 0
    successful_deploys: int = 0
    failed_deploys: int = 0
    average_build_time: float = 0.0
    total_cost: float = 0.0
    last_deploy_at: Optional[datetime] = None


class QuotaUsage(BaseModel):
    limit: int
    used: int
    remaining: int


class QuotaFeatures(BaseModel):
    preview: bool
    staging: bool
    production: bool
    rollback: bool
    logs: bool
    custom_domains: bool


class DeployQuota(BaseModel):
    plan: Plan
    monthly_deploys: QuotaUsage
    environments: List[Environment]
    features: QuotaFeatures

    def allows(self, environment: Environment) -> bool:
        return Environment(environment) in self.environments
