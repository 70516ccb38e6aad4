from .deploy import (
    DeployLog,
    DeployMetrics,
    DeployOptions,
    DeployQuota,
    DeployResult,
    DeployStatusReport,
    Deployment,
    DeploymentCreate,
    DeploymentUpdate,
    MongoModel,
    Project,
    QuotaFeatures,
    QuotaUsage,
    RollbackOptions,
    UserAccount,
    utc_now,
)
from .plan import (
    AIDeploymentPlan,
    CostEstimate,
    DeployPreview,
    DeploymentSuggestion,
    GitCommit,
    GitStatus,
    RiskAssessment,
)

__all__ = [
    "DeployLog",
    "DeployMetrics",
    "DeployOptions",
    "DeployQuota",
    "DeployResult",
    "DeployStatusReport",
    "Deployment",
    "DeploymentCreate",
    "DeploymentUpdate",
    "MongoModel",
    "Project",
    "QuotaFeatures",
    "QuotaUsage",
    "RollbackOptions",
    "UserAccount",
    "utc_now",
    "AIDeploymentPlan",
    "CostEstimate",
    "DeployPreview",
    "DeploymentSuggestion",
    "GitCommit",
    "GitStatus",
    "RiskAssessment",
]
