from __future__ import annotations

from enum import Enum


class DeployStatus(str, Enum):
    PENDING = "pending"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class Environment(str, Enum):
    PREVIEW = "preview"
    STAGING = "staging"
    PRODUCTION = "production"


class Provider(str, Enum):
    VERCEL = "vercel"
    NETLIFY = "netlify"


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"


TERMINAL_STATUSES: frozenset[DeployStatus] = frozenset(
    {
        DeployStatus.SUCCESS,
        DeployStatus.FAILED,
        DeployStatus.ROLLED_BACK,
        DeployStatus.CANCELLED,
    }
)

# success -> rolled_back only happens through an explicit rollback and
# deploying -> cancelled only through an explicit cancel; provider polling
# never reports either.
ALLOWED_TRANSITIONS: dict[DeployStatus, frozenset[DeployStatus]] = {
    DeployStatus.PENDING: frozenset({DeployStatus.DEPLOYING}),
    DeployStatus.DEPLOYING: frozenset(
        {DeployStatus.SUCCESS, DeployStatus.FAILED, DeployStatus.CANCELLED}
    ),
    DeployStatus.SUCCESS: frozenset({DeployStatus.ROLLED_BACK}),
    DeployStatus.FAILED: frozenset(),
    DeployStatus.ROLLED_BACK: frozenset(),
    DeployStatus.CANCELLED: frozenset(),
}

PROVIDER_REPORTED_STATUSES: frozenset[DeployStatus] = frozenset(
    {
        DeployStatus.PENDING,
        DeployStatus.DEPLOYING,
        DeployStatus.SUCCESS,
        DeployStatus.FAILED,
    }
)


def is_valid_transition(current: DeployStatus, new: DeployStatus) -> bool:
    current = DeployStatus(current)
    new = DeployStatus(new)
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())
