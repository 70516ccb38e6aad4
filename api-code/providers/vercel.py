from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from domain import DeployStatus, Environment, Provider, ProviderError
from models import DeployLog, DeployOptions, DeployResult, DeployStatusReport, RollbackOptions

from .base import BaseDeployAdapter


VERCEL_COST_MULTIPLIERS: Dict[Environment, float] = {
    Environment.PREVIEW: 1.0,
    Environment.STAGING: 1.5,
    Environment.PRODUCTION: 3.0,
}
VERCEL_BUILD_SPEED_MULTIPLIER = 0.8

# Vercel only distinguishes production from preview targets.
VERCEL_TARGETS: Dict[Environment, str] = {
    Environment.PREVIEW: "preview",
    Environment.STAGING: "preview",
    Environment.PRODUCTION: "production",
}

READY_STATE_MAP: Dict[str, DeployStatus] = {
    "QUEUED": DeployStatus.DEPLOYING,
    "INITIALIZING": DeployStatus.DEPLOYING,
    "BUILDING": DeployStatus.DEPLOYING,
    "READY": DeployStatus.SUCCESS,
    "ERROR": DeployStatus.FAILED,
    "CANCELED": DeployStatus.FAILED,
}

EVENT_LEVELS = {"stdout": "info", "stderr": "error", "command": "debug", "fatal": "error"}


class VercelAdapter(BaseDeployAdapter):
    provider = Provider.VERCEL
    default_base_url = "https://api.vercel.com"
    simulation_domain = "vercel.app"
    resolution_timeout_seconds = 600.0

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, *, team_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(api_key, base_url, **kwargs)
        self.team_id = team_id

    def estimate_cost(self, options: DeployOptions) -> float:
        base_cost = super().estimate_cost(options)
        return base_cost * VERCEL_COST_MULTIPLIERS[Environment(options.environment)]

    def estimate_build_time(self, options: DeployOptions) -> int:
        base_time = super().estimate_build_time(options)
        return math.floor(base_time * VERCEL_BUILD_SPEED_MULTIPLIER)

    def logs_url(self, provider_id: str) -> str:
        return f"{self.base_url}/v3/deployments/{provider_id}/events"

    def default_project_settings(self, project_id: str) -> Dict[str, Any]:
        return {
            "name": f"Project {project_id}",
            "framework": "nextjs",
            "build_command": "npm run build",
            "output_directory": ".next",
            "install_command": "npm install",
        }

    def _default_query(self) -> Dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    async def _create_remote(self, project_id: str, options: DeployOptions) -> DeployResult:
        environment = Environment(options.environment)
        body: Dict[str, Any] = {
            "name": project_id,
            "project": project_id,
            "target": VERCEL_TARGETS[environment],
            "gitSource": {"type": "github", "ref": options.branch},
            "meta": {"devflowEnvironment": environment.value},
        }
        if options.commit_hash:
            body["gitSource"]["sha"] = options.commit_hash
        if options.commit_message:
            body["meta"]["commitMessage"] = options.commit_message
        if options.build_command:
            body["projectSettings"] = {"buildCommand": options.build_command}
        if options.env_variables:
            body["build"] = {"env": dict(options.env_variables)}

        payload = await self._request("POST", "/v13/deployments", payload=body)
        provider_id = _require_id(payload, self.name)
        return DeployResult(
            id=self.make_deploy_id(provider_id),
            status=DeployStatus.DEPLOYING,
            provider_id=provider_id,
            logs_url=self.logs_url(provider_id),
        )

    async def _status_remote(self, deploy_id: str, provider_id: str) -> DeployStatusReport:
        payload = await self._request("GET", f"/v13/deployments/{provider_id}")
        state = str(payload.get("readyState") or payload.get("state") or "QUEUED").upper()
        status = READY_STATE_MAP.get(state, DeployStatus.DEPLOYING)
        build_time = None
        building_at, ready_at = payload.get("buildingAt"), payload.get("ready")
        if isinstance(building_at, (int, float)) and isinstance(ready_at, (int, float)):
            build_time = max(0, int((ready_at - building_at) / 1000))
        url = payload.get("url")
        error = None
        if status == DeployStatus.FAILED:
            error = payload.get("errorMessage") or f"Vercel deployment {state.lower()}"
        return DeployStatusReport(
            id=deploy_id,
            status=status,
            url=f"https://{url}" if status == DeployStatus.SUCCESS and url else None,
            build_time_seconds=build_time,
            error=error,
        )

    async def _logs_remote(self, provider_id: str) -> List[DeployLog]:
        payload = await self._request(
            "GET", f"/v3/deployments/{provider_id}/events", query={"builds": 1, "direction": "forward"}
        )
        events = payload if isinstance(payload, list) else payload.get("events", [])
        logs: List[DeployLog] = []
        for event in events:
            if not isinstance(event, dict):
                continue
            text = event.get("text") or (event.get("payload") or {}).get("text")
            if not text:
                continue
            created = event.get("created") or (event.get("payload") or {}).get("date")
            timestamp = (
                datetime.fromtimestamp(created / 1000, tz=timezone.utc).isoformat()
                if isinstance(created, (int, float))
                else datetime.now(timezone.utc).isoformat()
            )
            logs.append(
                DeployLog(
                    timestamp=timestamp,
                    level=EVENT_LEVELS.get(str(event.get("type")), "info"),
                    source="build",
                    message=str(text),
                )
            )
        return logs

    async def _cancel_remote(self, provider_id: str) -> None:
        await self._request("PATCH", f"/v12/deployments/{provider_id}/cancel")

    async def _rollback_remote(
        self,
        provider_id: str,
        options: RollbackOptions,
        *,
        project_id: Optional[str],
        environment: Optional[str],
    ) -> DeployResult:
        if not project_id:
            raise ProviderError(self.name, "project id is required to redeploy a previous deployment")
        if environment is not None:
            target = VERCEL_TARGETS[Environment(environment)]
        else:
            # Vercel reports a null target for preview deployments.
            original = await self._request("GET", f"/v13/deployments/{provider_id}")
            target = original.get("target") or "preview"
        body: Dict[str, Any] = {
            "name": project_id,
            "deploymentId": provider_id,
            "target": target,
            "meta": {"rollbackOf": provider_id},
        }
        if options.reason:
            body["meta"]["rollbackReason"] = options.reason
        payload = await self._request("POST", "/v13/deployments", payload=body, query={"forceNew": 1})
        new_id = _require_id(payload, self.name)
        return DeployResult(
            id=self.make_deploy_id(new_id),
            status=DeployStatus.DEPLOYING,
            provider_id=new_id,
            logs_url=self.logs_url(new_id),
        )

    async def _project_settings_remote(self, project_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/v9/projects/{project_id}")
        return {
            "id": payload.get("id", project_id),
            "name": payload.get("name"),
            "framework": payload.get("framework"),
            "build_command": payload.get("buildCommand"),
            "output_directory": payload.get("outputDirectory"),
            "install_command": payload.get("installCommand"),
        }

    async def _update_project_settings_remote(self, project_id: str, settings: Dict[str, Any]) -> None:
        field_map = {
            "name": "name",
            "framework": "framework",
            "build_command": "buildCommand",
            "output_directory": "outputDirectory",
            "install_command": "installCommand",
        }
        body = {field_map.get(key, key): value for key, value in settings.items()}
        await self._request("PATCH", f"/v9/projects/{project_id}", payload=body)

    async def _env_remote(self, project_id: str, environment: str) -> Dict[str, str]:
        payload = await self._request("GET", f"/v9/projects/{project_id}/env", query={"decrypt": "true"})
        target = VERCEL_TARGETS[Environment(environment)]
        variables: Dict[str, str] = {}
        for entry in payload.get("envs", []):
            if target in (entry.get("target") or []) and entry.get("key"):
                variables[entry["key"]] = str(entry.get("value", ""))
        return variables

    async def _set_env_remote(
        self, project_id: str, environment: str, variables: Dict[str, str]
    ) -> None:
        target = VERCEL_TARGETS[Environment(environment)]
        body = [
            {"key": key, "value": value, "type": "encrypted", "target": [target]}
            for key, value in variables.items()
        ]
        await self._request("POST", f"/v10/projects/{project_id}/env", payload=body, query={"upsert": "true"})


def _require_id(payload: Any, provider: str) -> str:
    if isinstance(payload, dict) and payload.get("id"):
        return str(payload["id"])
    raise ProviderError(provider, "response did not include a deployment id")
