from .deploy_states import (
    ALLOWED_TRANSITIONS,
    PROVIDER_REPORTED_STATUSES,
    TERMINAL_STATUSES,
    DeployStatus,
    Environment,
    Plan,
    Provider,
    is_valid_transition,
)
from .errors import (
    DeployerError,
    EnvironmentNotAllowedError,
    FeatureNotAvailableError,
    InvalidRollbackTargetError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    UnsupportedProviderError,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "PROVIDER_REPORTED_STATUSES",
    "TERMINAL_STATUSES",
    "DeployStatus",
    "Environment",
    "Plan",
    "Provider",
    "is_valid_transition",
    "DeployerError",
    "EnvironmentNotAllowedError",
    "FeatureNotAvailableError",
    "InvalidRollbackTargetError",
    "NotFoundError",
    "ProviderError",
    "QuotaExceededError",
    "UnsupportedProviderError",
]
