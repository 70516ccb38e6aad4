from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from domain import DeployStatus, Environment, Provider, ProviderError
from models import DeployLog, DeployOptions, DeployResult, DeployStatusReport, RollbackOptions

from .base import BaseDeployAdapter


NETLIFY_COST_MULTIPLIERS: Dict[Environment, float] = {
    Environment.PREVIEW: 1.0,
    Environment.STAGING: 1.8,
    Environment.PRODUCTION: 4.0,
}
NETLIFY_BUILD_SPEED_MULTIPLIER = 1.2

# Netlify deploy contexts per environment.
NETLIFY_CONTEXTS: Dict[Environment, str] = {
    Environment.PREVIEW: "deploy-preview",
    Environment.STAGING: "branch-deploy",
    Environment.PRODUCTION: "production",
}

DEPLOY_STATE_MAP: Dict[str, DeployStatus] = {
    "new": DeployStatus.DEPLOYING,
    "pending_review": DeployStatus.DEPLOYING,
    "accepted": DeployStatus.DEPLOYING,
    "enqueued": DeployStatus.DEPLOYING,
    "building": DeployStatus.DEPLOYING,
    "uploading": DeployStatus.DEPLOYING,
    "uploaded": DeployStatus.DEPLOYING,
    "preparing": DeployStatus.DEPLOYING,
    "prepared": DeployStatus.DEPLOYING,
    "processing": DeployStatus.DEPLOYING,
    "processed": DeployStatus.DEPLOYING,
    "ready": DeployStatus.SUCCESS,
    "error": DeployStatus.FAILED,
    "rejected": DeployStatus.FAILED,
    "cancelled": DeployStatus.FAILED,
}

MESSAGE_LEVELS = {"info": "info", "warning": "warn", "error": "error", "debug": "debug"}


class NetlifyAdapter(BaseDeployAdapter):
    provider = Provider.NETLIFY
    default_base_url = "https://api.netlify.com"
    simulation_domain = "netlify.app"
    resolution_timeout_seconds = 900.0

    def estimate_cost(self, options: DeployOptions) -> float:
        base_cost = super().estimate_cost(options)
        return base_cost * NETLIFY_COST_MULTIPLIERS[Environment(options.environment)]

    def estimate_build_time(self, options: DeployOptions) -> int:
        base_time = super().estimate_build_time(options)
        return math.floor(base_time * NETLIFY_BUILD_SPEED_MULTIPLIER)

    def logs_url(self, provider_id: str) -> str:
        return f"{self.base_url}/api/v1/deploys/{provider_id}/log"

    def default_project_settings(self, project_id: str) -> Dict[str, Any]:
        return {
            "name": f"Site {project_id}",
            "framework": "nextjs",
            "build_command": "npm run build",
            "publish_directory": "out",
            "functions_directory": "netlify/functions",
        }

    async def _create_remote(self, project_id: str, options: DeployOptions) -> DeployResult:
        environment = Environment(options.environment)
        body: Dict[str, Any] = {
            "branch": options.branch,
            "context": NETLIFY_CONTEXTS[environment],
            "clear_cache": False,
        }
        if options.commit_hash:
            body["commit_ref"] = options.commit_hash
        if options.commit_message:
            body["title"] = options.commit_message
        if options.build_command:
            body["build_command"] = options.build_command
        if options.env_variables:
            body["env"] = dict(options.env_variables)

        payload = await self._request("POST", f"/api/v1/sites/{project_id}/builds", payload=body)
        provider_id = _deploy_id_from(payload, self.name)
        return DeployResult(
            id=self.make_deploy_id(provider_id),
            status=DeployStatus.DEPLOYING,
            provider_id=provider_id,
            logs_url=self.logs_url(provider_id),
        )

    async def _status_remote(self, deploy_id: str, provider_id: str) -> DeployStatusReport:
        payload = await self._request("GET", f"/api/v1/deploys/{provider_id}")
        state = str(payload.get("state") or "new").lower()
        status = DEPLOY_STATE_MAP.get(state, DeployStatus.DEPLOYING)
        build_time = payload.get("deploy_time")
        error = None
        if status == DeployStatus.FAILED:
            error = payload.get("error_message") or f"Netlify deploy {state}"
        url = payload.get("ssl_url") or payload.get("deploy_ssl_url") or payload.get("url")
        return DeployStatusReport(
            id=deploy_id,
            status=status,
            url=url if status == DeployStatus.SUCCESS else None,
            build_time_seconds=int(build_time) if isinstance(build_time, (int, float)) else None,
            error=error,
        )

    async def _logs_remote(self, provider_id: str) -> List[DeployLog]:
        payload = await self._request("GET", f"/api/v1/deploys/{provider_id}")
        created_at = payload.get("created_at") or datetime.now(timezone.utc).isoformat()
        logs = [
            DeployLog(
                timestamp=created_at,
                level="info",
                source="build",
                message=f"Deploy {provider_id} is {payload.get('state', 'unknown')}",
            )
        ]
        summary = payload.get("summary") or {}
        for message in summary.get("messages") or []:
            if not isinstance(message, dict):
                continue
            text = message.get("title") or message.get("description")
            if not text:
                continue
            logs.append(
                DeployLog(
                    timestamp=payload.get("updated_at") or created_at,
                    level=MESSAGE_LEVELS.get(str(message.get("type")), "info"),
                    source="deploy",
                    message=str(text),
                )
            )
        if payload.get("error_message"):
            logs.append(
                DeployLog(
                    timestamp=payload.get("updated_at") or created_at,
                    level="error",
                    source="build",
                    message=str(payload["error_message"]),
                )
            )
        return logs

    async def _cancel_remote(self, provider_id: str) -> None:
        await self._request("POST", f"/api/v1/deploys/{provider_id}/cancel")

    async def _rollback_remote(
        self,
        provider_id: str,
        options: RollbackOptions,
        *,
        project_id: Optional[str],
        environment: Optional[str],
    ) -> DeployResult:
        if not project_id:
            raise ProviderError(self.name, "site id is required to restore a previous deploy")
        if environment is not None and environment != Environment.PRODUCTION.value:
            return await self._rebuild_in_context(project_id, provider_id, Environment(environment))
        payload = await self._request(
            "POST", f"/api/v1/sites/{project_id}/deploys/{provider_id}/restore"
        )
        restored_id = str(payload.get("id") or provider_id) if isinstance(payload, dict) else provider_id
        # Restores republish the old deploy under its own id; the suffix keeps the record key unique.
        return DeployResult(
            id=self.make_deploy_id(restored_id, suffix=f"r{int(time.time() * 1000)}"),
            status=DeployStatus.DEPLOYING,
            provider_id=restored_id,
            logs_url=self.logs_url(restored_id),
        )

    async def _rebuild_in_context(
        self, project_id: str, provider_id: str, environment: Environment
    ) -> DeployResult:
        # Restore always publishes to the production URL, so other contexts rebuild the old commit.
        original = await self._request("GET", f"/api/v1/deploys/{provider_id}")
        body: Dict[str, Any] = {"context": NETLIFY_CONTEXTS[environment], "clear_cache": False}
        if original.get("branch"):
            body["branch"] = original["branch"]
        if original.get("commit_ref"):
            body["commit_ref"] = original["commit_ref"]
        payload = await self._request("POST", f"/api/v1/sites/{project_id}/builds", payload=body)
        rebuilt_id = _deploy_id_from(payload, self.name)
        return DeployResult(
            id=self.make_deploy_id(rebuilt_id),
            status=DeployStatus.DEPLOYING,
            provider_id=rebuilt_id,
            logs_url=self.logs_url(rebuilt_id),
        )

    async def _project_settings_remote(self, project_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/api/v1/sites/{project_id}")
        build_settings = payload.get("build_settings") or {}
        return {
            "id": payload.get("id", project_id),
            "name": payload.get("name"),
            "framework": build_settings.get("framework"),
            "build_command": build_settings.get("cmd"),
            "publish_directory": build_settings.get("dir"),
            "functions_directory": build_settings.get("functions_dir"),
        }

    async def _update_project_settings_remote(self, project_id: str, settings: Dict[str, Any]) -> None:
        field_map = {
            "build_command": "cmd",
            "publish_directory": "dir",
            "functions_directory": "functions_dir",
            "framework": "framework",
        }
        body: Dict[str, Any] = {}
        build_settings = {field_map[key]: value for key, value in settings.items() if key in field_map}
        if build_settings:
            body["build_settings"] = build_settings
        if "name" in settings:
            body["name"] = settings["name"]
        await self._request("PATCH", f"/api/v1/sites/{project_id}", payload=body)

    async def _env_remote(self, project_id: str, environment: str) -> Dict[str, str]:
        payload = await self._request("GET", f"/api/v1/sites/{project_id}")
        build_settings = payload.get("build_settings") or {}
        return {str(key): str(value) for key, value in (build_settings.get("env") or {}).items()}

    async def _set_env_remote(
        self, project_id: str, environment: str, variables: Dict[str, str]
    ) -> None:
        current = await self._env_remote(project_id, environment)
        current.update(variables)
        await self._request(
            "PATCH", f"/api/v1/sites/{project_id}", payload={"build_settings": {"env": current}}
        )


def _deploy_id_from(payload: Any, provider: str) -> str:
    if isinstance(payload, dict):
        deploy_id = payload.get("deploy_id") or payload.get("id")
        if deploy_id:
            return str(deploy_id)
    raise ProviderError(provider, "response did not include a deploy id")
