from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from domain import DeployStatus, Environment, ProviderError
from models import DeployOptions


POLLS_BY_ENVIRONMENT: Dict[Environment, int] = {
    Environment.PREVIEW: 1,
    Environment.STAGING: 2,
    Environment.PRODUCTION: 3,
}

BUILD_SECONDS_BY_ENVIRONMENT: Dict[Environment, int] = {
    Environment.PREVIEW: 120,
    Environment.STAGING: 180,
    Environment.PRODUCTION: 240,
}


@dataclass
class SimulatedDeployment:
    provider_id: str
    project_id: str
    environment: Environment
    branch: str
    commit_hash: Optional[str]
    polls_remaining: int
    status: DeployStatus = DeployStatus.DEPLOYING
    url: Optional[str] = None
    error: Optional[str] = None
    build_time_seconds: Optional[int] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    restored_from: Optional[str] = None


class ProviderSimulation:
    """Deterministic stand-in for a provider backend in dry-run mode.

    Every simulated deployment succeeds after a fixed number of status polls
    unless a failure was injected with :meth:`fail_build` or
    :meth:`fail_builds`. :meth:`raise_on` queues a :class:`ProviderError` for
    the next call of an operation (``create``, ``status``, ``logs``,
    ``cancel``, ``rollback``, ``settings``, ``env``).
    """

    def __init__(
        self,
        provider: str,
        *,
        domain: str,
        polls_by_environment: Optional[Dict[Environment, int]] = None,
    ) -> None:
        self.provider = provider
        self.domain = domain
        self.polls_by_environment = dict(polls_by_environment or POLLS_BY_ENVIRONMENT)
        self.deployments: Dict[str, SimulatedDeployment] = {}
        self.project_settings: Dict[str, Dict[str, object]] = {}
        self.env_variables: Dict[tuple[str, str], Dict[str, str]] = {}
        self.status_calls: Dict[str, int] = {}
        self._failures: Dict[str, str] = {}
        self._default_failure: Optional[str] = None
        self._queued_errors: Dict[str, List[ProviderError]] = {}

    def fail_builds(self, reason: Optional[str] = "Simulated build failure") -> None:
        """Make every deployment that has not resolved yet fail with ``reason``."""
        self._default_failure = reason

    def fail_build(self, provider_id: str, reason: str = "Simulated build failure") -> None:
        self._failures[provider_id] = reason

    def raise_on(self, operation: str, error: Optional[ProviderError] = None) -> None:
        queued = error or ProviderError(self.provider, f"simulated {operation} outage", status_code=503)
        self._queued_errors.setdefault(operation, []).append(queued)

    def check(self, operation: str) -> None:
        queued = self._queued_errors.get(operation)
        if queued:
            raise queued.pop(0)

    def create(self, project_id: str, options: DeployOptions) -> SimulatedDeployment:
        self.check("create")
        environment = Environment(options.environment)
        provider_id = f"{int(time.time() * 1000)}_{uuid4().hex[:9]}"
        deployment = SimulatedDeployment(
            provider_id=provider_id,
            project_id=project_id,
            environment=environment,
            branch=options.branch,
            commit_hash=options.commit_hash,
            polls_remaining=self.polls_by_environment.get(environment, 1),
        )
        self.deployments[provider_id] = deployment
        return deployment

    def rollback(self, target_provider_id: str) -> SimulatedDeployment:
        self.check("rollback")
        target = self.get(target_provider_id)
        provider_id = f"{int(time.time() * 1000)}_{uuid4().hex[:9]}"
        deployment = SimulatedDeployment(
            provider_id=provider_id,
            project_id=target.project_id,
            environment=target.environment,
            branch=target.branch,
            commit_hash=target.commit_hash,
            polls_remaining=self.polls_by_environment.get(target.environment, 1),
            restored_from=target_provider_id,
        )
        self.deployments[provider_id] = deployment
        return deployment

    def status(self, provider_id: str) -> SimulatedDeployment:
        self.check("status")
        deployment = self.get(provider_id)
        self.status_calls[provider_id] = self.status_calls.get(provider_id, 0) + 1
        if deployment.status.is_terminal:
            return deployment
        deployment.polls_remaining -= 1
        if deployment.polls_remaining > 0:
            return deployment

        deployment.build_time_seconds = BUILD_SECONDS_BY_ENVIRONMENT[deployment.environment]
        failure = self._failures.get(provider_id) or self._default_failure
        if failure:
            deployment.status = DeployStatus.FAILED
            deployment.error = failure
        else:
            deployment.status = DeployStatus.SUCCESS
            deployment.url = f"https://{deployment.project_id}-{provider_id.split('_')[-1]}.{self.domain}"
        return deployment

    def cancel(self, provider_id: str) -> bool:
        self.check("cancel")
        deployment = self.get(provider_id)
        if deployment.status.is_terminal:
            return False
        deployment.status = DeployStatus.CANCELLED
        deployment.error = "Cancelled by user"
        return True

    def log_lines(self, provider_id: str) -> List[str]:
        self.check("logs")
        deployment = self.get(provider_id)
        started = deployment.started_at
        steps: List[tuple[int, str, str, str]] = [
            (0, "info", "build", f"Starting {self.provider} deployment for {deployment.branch}..."),
            (1, "info", "build", "Installing dependencies..."),
            (5, "info", "build", "Running build command..."),
        ]
        if deployment.status == DeployStatus.FAILED:
            steps.append((10, "error", "build", deployment.error or "Build failed"))
        elif deployment.status == DeployStatus.CANCELLED:
            steps.append((10, "warn", "deploy", "Deployment cancelled"))
        elif deployment.status == DeployStatus.SUCCESS:
            steps.extend(
                [
                    (10, "info", "build", "Build completed successfully"),
                    (15, "info", "deploy", f"Deploying to {self.provider}..."),
                    (20, "info", "deploy", f"Deployment ready at {deployment.url}"),
                ]
            )
        lines = []
        for offset, level, source, message in steps:
            timestamp = (started + timedelta(seconds=offset)).isoformat()
            lines.append(f"[{timestamp}] [{level}] [{source}] {message}")
        return lines

    def get_settings(self, project_id: str, defaults: Dict[str, object]) -> Dict[str, object]:
        self.check("settings")
        stored = self.project_settings.setdefault(project_id, dict(defaults))
        return {"id": project_id, **stored}

    def update_settings(self, project_id: str, settings: Dict[str, object], defaults: Dict[str, object]) -> None:
        self.check("settings")
        stored = self.project_settings.setdefault(project_id, dict(defaults))
        stored.update(settings)

    def get_env(self, project_id: str, environment: str) -> Dict[str, str]:
        self.check("env")
        return self._env_for(project_id, environment)

    def set_env(self, project_id: str, environment: str, variables: Dict[str, str]) -> None:
        self.check("env")
        current = self._env_for(project_id, environment)
        current.update(variables)
        self.env_variables[(project_id, environment)] = current

    def _env_for(self, project_id: str, environment: str) -> Dict[str, str]:
        default = {"NODE_ENV": "production" if environment == Environment.PRODUCTION.value else "development"}
        return dict(self.env_variables.get((project_id, environment), default))

    def get(self, provider_id: str) -> SimulatedDeployment:
        deployment = self.deployments.get(provider_id)
        if deployment is None:
            raise ProviderError(self.provider, f"deployment {provider_id} not found", status_code=404)
        return deployment
