"""Error taxonomy shared by the orchestrator, adapters and routers."""

from __future__ import annotations

from typing import Any, Optional


class DeployerError(Exception):
    """Base exception for deployer failures."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class QuotaExceededError(DeployerError):
    """Creation blocked by the user's plan; nothing was persisted."""

    def __init__(
        self,
        message: str = "Monthly deployment quota exceeded",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class EnvironmentNotAllowedError(QuotaExceededError):
    def __init__(self, plan: str, environment: str, allowed: list[str]):
        super().__init__(
            f"Environment '{environment}' is not available on the {plan} plan",
            {"plan": plan, "environment": environment, "allowed": allowed},
        )


class FeatureNotAvailableError(QuotaExceededError):
    def __init__(self, plan: str, feature: str):
        super().__init__(
            f"Feature '{feature}' is not available on the {plan} plan",
            {"plan": plan, "feature": feature},
        )


class UnsupportedProviderError(DeployerError):
    def __init__(self, provider: str, supported: Optional[list[str]] = None):
        details: dict[str, Any] = {"provider": provider}
        if supported is not None:
            details["supported"] = supported
        super().__init__(f"Unsupported deployment provider: {provider}", details)
        self.provider = provider


class ProviderError(DeployerError):
    """A provider call failed; carries the upstream status and message."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        details: dict[str, Any] = {"provider": provider}
        if status_code is not None:
            details["status_code"] = status_code
        prefix = f"{provider} HTTP {status_code}" if status_code is not None else provider
        super().__init__(f"{prefix}: {message}", details)
        self.provider = provider
        self.status_code = status_code
        self.upstream_message = message


class InvalidRollbackTargetError(DeployerError):
    def __init__(self, deployment_id: str, status: str):
        super().__init__(
            f"Can only roll back successful deployments; {deployment_id} is {status}",
            {"deployment_id": deployment_id, "status": status},
        )


class NotFoundError(DeployerError):
    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", {"kind": kind, "id": identifier})
        self.kind = kind
        self.identifier = identifier
