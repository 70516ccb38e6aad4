from __future__ import annotations

import abc
import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request

from domain import DeployStatus, Environment, Provider, ProviderError
from models import (
    DeployLog,
    DeployOptions,
    DeployResult,
    DeployStatusReport,
    RollbackOptions,
)

from .simulation import ProviderSimulation, SimulatedDeployment


logger = logging.getLogger("devflow-deployer.providers")

BASE_COST_PER_DEPLOY = 0.001  # USD
BASE_BUILD_SECONDS = 60

BASE_COST_MULTIPLIERS: Dict[Environment, float] = {
    Environment.PREVIEW: 1.0,
    Environment.STAGING: 2.0,
    Environment.PRODUCTION: 5.0,
}

BASE_BUILD_MULTIPLIERS: Dict[Environment, float] = {
    Environment.PREVIEW: 1.0,
    Environment.STAGING: 1.5,
    Environment.PRODUCTION: 2.0,
}

LOG_LINE_PATTERN = re.compile(r"^\[([^\]]+)\] \[([^\]]+)\] \[([^\]]+)\] (.+)$")
LOG_LEVELS = {"info", "warn", "error", "debug"}
LOG_SOURCES = {"build", "deploy", "runtime"}
ROLLBACK_ID_SEPARATOR = "~"


def parse_log_line(line: str) -> DeployLog:
    """Parse ``[timestamp] [level] [source] message``; other lines become info/build."""
    match = LOG_LINE_PATTERN.match(line.strip())
    if match:
        timestamp, level, source, message = match.groups()
        level = level.lower()
        source = source.lower()
        if level == "warning":
            level = "warn"
        return DeployLog(
            timestamp=timestamp,
            level=level if level in LOG_LEVELS else "info",
            source=source if source in LOG_SOURCES else "build",
            message=message,
        )
    return DeployLog(
        timestamp=datetime.now(timezone.utc).isoformat(),
        level="info",
        source="build",
        message=line,
    )


class BaseDeployAdapter(abc.ABC):
    """Uniform contract over a hosting provider.

    Subclasses map each operation onto the provider's REST API (the ``_remote``
    hooks) and may layer their own multipliers over the base estimates. When a
    :class:`ProviderSimulation` is attached (dry-run mode) the remote hooks are
    bypassed entirely.
    """

    provider: Provider
    default_base_url: str
    simulation_domain: str
    resolution_timeout_seconds: float = 600.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        dry_run: bool = False,
        simulation: Optional[ProviderSimulation] = None,
        request_timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.request_timeout = request_timeout
        if simulation is None and dry_run:
            simulation = ProviderSimulation(self.provider.value, domain=self.simulation_domain)
        self.simulation = simulation

    @property
    def name(self) -> str:
        return self.provider.value

    @property
    def dry_run(self) -> bool:
        return self.simulation is not None

    # ------------------------------------------------------------------ ids

    def make_deploy_id(self, provider_id: str, *, suffix: Optional[str] = None) -> str:
        deploy_id = f"{self.name}_{provider_id}"
        if suffix:
            deploy_id = f"{deploy_id}{ROLLBACK_ID_SEPARATOR}{suffix}"
        return deploy_id

    def provider_id_from(self, deploy_id: str) -> str:
        prefix = f"{self.name}_"
        value = deploy_id[len(prefix):] if deploy_id.startswith(prefix) else deploy_id
        return value.split(ROLLBACK_ID_SEPARATOR, 1)[0]

    # ------------------------------------------------------------ contract

    async def create_deploy(self, project_id: str, options: DeployOptions) -> DeployResult:
        logger.info(
            "Creating %s deployment project=%s environment=%s branch=%s",
            self.name,
            project_id,
            Environment(options.environment).value,
            options.branch,
        )
        if self.simulation is not None:
            simulated = self.simulation.create(project_id, options)
            return DeployResult(
                id=self.make_deploy_id(simulated.provider_id),
                status=DeployStatus.DEPLOYING,
                provider_id=simulated.provider_id,
                logs_url=self.logs_url(simulated.provider_id),
            )
        return await self._create_remote(project_id, options)

    async def get_deploy_status(self, deploy_id: str) -> DeployStatusReport:
        provider_id = self.provider_id_from(deploy_id)
        if self.simulation is not None:
            return self._report_from_simulation(deploy_id, self.simulation.status(provider_id))
        return await self._status_remote(deploy_id, provider_id)

    async def get_deploy_logs(self, deploy_id: str) -> List[DeployLog]:
        provider_id = self.provider_id_from(deploy_id)
        if self.simulation is not None:
            return [parse_log_line(line) for line in self.simulation.log_lines(provider_id)]
        return await self._logs_remote(provider_id)

    async def cancel_deploy(self, deploy_id: str) -> Optional[DeployStatusReport]:
        """Cancel a running deployment.

        Returns ``None`` once the provider has cancelled it. When the provider
        had already finished, nothing is cancelled and its final report is
        returned instead.
        """
        provider_id = self.provider_id_from(deploy_id)
        if self.simulation is not None:
            if self.simulation.cancel(provider_id):
                return None
            report = self._report_from_simulation(deploy_id, self.simulation.get(provider_id))
        else:
            report = await self._status_remote(deploy_id, provider_id)
            if not report.status.is_terminal:
                await self._cancel_remote(provider_id)
                logger.info("Cancelled %s deployment %s", self.name, deploy_id)
                return None
        logger.info("Cancel ignored; %s deployment %s already %s", self.name, deploy_id, report.status.value)
        return report

    async def rollback_deploy(
        self,
        deploy_id: str,
        options: RollbackOptions,
        *,
        project_id: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> DeployResult:
        """Redeploy ``deploy_id`` into ``environment``, the target's own environment."""
        logger.info(
            "Rolling back %s deployment %s environment=%s reason=%s",
            self.name,
            deploy_id,
            environment or "-",
            options.reason or "-",
        )
        provider_id = self.provider_id_from(deploy_id)
        if self.simulation is not None:
            simulated = self.simulation.rollback(provider_id)
            return DeployResult(
                id=self.make_deploy_id(simulated.provider_id),
                status=DeployStatus.DEPLOYING,
                provider_id=simulated.provider_id,
                logs_url=self.logs_url(simulated.provider_id),
            )
        if environment is not None:
            environment = Environment(environment).value
        return await self._rollback_remote(
            provider_id, options, project_id=project_id, environment=environment
        )

    async def get_project_settings(self, project_id: str) -> Dict[str, Any]:
        if self.simulation is not None:
            return self.simulation.get_settings(project_id, self.default_project_settings(project_id))
        return await self._project_settings_remote(project_id)

    async def update_project_settings(self, project_id: str, settings: Mapping[str, Any]) -> None:
        if self.simulation is not None:
            self.simulation.update_settings(
                project_id, dict(settings), self.default_project_settings(project_id)
            )
            return
        await self._update_project_settings_remote(project_id, dict(settings))

    async def get_environment_variables(self, project_id: str, environment: str) -> Dict[str, str]:
        environment = Environment(environment).value
        if self.simulation is not None:
            return self.simulation.get_env(project_id, environment)
        return await self._env_remote(project_id, environment)

    async def set_environment_variables(
        self, project_id: str, environment: str, variables: Mapping[str, str]
    ) -> None:
        environment = Environment(environment).value
        logger.info(
            "Setting %d %s environment variable(s) project=%s environment=%s",
            len(variables),
            self.name,
            project_id,
            environment,
        )
        if self.simulation is not None:
            self.simulation.set_env(project_id, environment, dict(variables))
            return
        await self._set_env_remote(project_id, environment, dict(variables))

    def estimate_cost(self, options: DeployOptions) -> float:
        return BASE_COST_PER_DEPLOY * BASE_COST_MULTIPLIERS[Environment(options.environment)]

    def estimate_build_time(self, options: DeployOptions) -> float:
        return BASE_BUILD_SECONDS * BASE_BUILD_MULTIPLIERS[Environment(options.environment)]

    # ------------------------------------------------------ provider hooks

    @abc.abstractmethod
    def logs_url(self, provider_id: str) -> str: ...

    @abc.abstractmethod
    def default_project_settings(self, project_id: str) -> Dict[str, Any]: ...

    @abc.abstractmethod
    async def _create_remote(self, project_id: str, options: DeployOptions) -> DeployResult: ...

    @abc.abstractmethod
    async def _status_remote(self, deploy_id: str, provider_id: str) -> DeployStatusReport: ...

    @abc.abstractmethod
    async def _logs_remote(self, provider_id: str) -> List[DeployLog]: ...

    @abc.abstractmethod
    async def _cancel_remote(self, provider_id: str) -> None: ...

    @abc.abstractmethod
    async def _rollback_remote(
        self,
        provider_id: str,
        options: RollbackOptions,
        *,
        project_id: Optional[str],
        environment: Optional[str],
    ) -> DeployResult: ...

    @abc.abstractmethod
    async def _project_settings_remote(self, project_id: str) -> Dict[str, Any]: ...

    @abc.abstractmethod
    async def _update_project_settings_remote(self, project_id: str, settings: Dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def _env_remote(self, project_id: str, environment: str) -> Dict[str, str]: ...

    @abc.abstractmethod
    async def _set_env_remote(
        self, project_id: str, environment: str, variables: Dict[str, str]
    ) -> None: ...

    # ---------------------------------------------------------------- http

    def _default_query(self) -> Dict[str, str]:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return await asyncio.to_thread(self._send_request, method, path, payload, query)

    def _send_request(
        self,
        method: str,
        path: str,
        payload: Any,
        query: Optional[Dict[str, Any]],
    ) -> Any:
        url = f"{self.base_url}{path}"
        params = {**self._default_query(), **(query or {})}
        if params:
            url = f"{url}?{urllib_parse.urlencode(params)}"
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "devflow-deployer",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None

        request = urllib_request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib_request.urlopen(request, timeout=self.request_timeout) as response:
                body = response.read()
        except urllib_error.HTTPError as exc:
            try:
                error_body = exc.read().decode("utf-8", errors="ignore")
            except OSError:
                error_body = ""
            message = _extract_error_message(error_body) or str(exc.reason)
            logger.warning("%s %s %s failed with HTTP %s: %s", self.name, method, path, exc.code, message)
            raise ProviderError(self.name, message, status_code=exc.code) from exc
        except urllib_error.URLError as exc:
            raise ProviderError(self.name, f"request failed: {exc.reason}") from exc

        if not body:
            return {}
        try:
            return json.loads(body.decode("utf-8"))
        except ValueError as exc:
            raise ProviderError(self.name, f"invalid JSON response from {path}") from exc

    def _report_from_simulation(self, deploy_id: str, simulated: SimulatedDeployment) -> DeployStatusReport:
        status = simulated.status
        error = simulated.error
        if status == DeployStatus.CANCELLED:
            status = DeployStatus.FAILED
        return DeployStatusReport(
            id=deploy_id,
            status=status,
            url=simulated.url if status == DeployStatus.SUCCESS else None,
            build_time_seconds=simulated.build_time_seconds,
            error=error if status == DeployStatus.FAILED else None,
        )


def _extract_error_message(body: str) -> Optional[str]:
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:500] or None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
    return body.strip()[:500] or None
