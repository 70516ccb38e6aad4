from .auth import LoginRequest, LoginResponse, LogoutResponse, MeResponse
from .deploy import (
    DeploymentHistoryResponse,
    DeploymentResponse,
    DeployRequest,
    DeployResponse,
    EnvVariablesRequest,
    EnvVariablesResponse,
    ProjectRequest,
    RollbackRequest,
    UserPlanRequest,
)

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "LogoutResponse",
    "MeResponse",
    "DeploymentHistoryResponse",
    "DeploymentResponse",
    "DeployRequest",
    "DeployResponse",
    "EnvVariablesRequest",
    "EnvVariablesResponse",
    "ProjectRequest",
    "RollbackRequest",
    "UserPlanRequest",
]
