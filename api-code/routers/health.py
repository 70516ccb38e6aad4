from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter

from services import DeployService


logger = logging.getLogger("devflow-deployer.health")


def build_health_router(deploy_service: DeployService) -> APIRouter:
    router = APIRouter()

    @router.get("/healthz")
    async def healthcheck() -> Dict[str, Any]:
        try:
            store_ok = await deploy_service.repository.ping()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Record store ping failed: %s", exc)
            store_ok = False

        issues = []
        if not store_ok:
            issues.append("Record store ping failed.")
        if not deploy_service.adapters.names():
            issues.append("No provider adapters registered.")

        providers = {
            adapter.name: "dry-run" if adapter.dry_run else "live"
            for adapter in deploy_service.adapters
        }
        return {
            "status": "healthy" if not issues else "degraded",
            "record_store": "ok" if store_ok else "unreachable",
            "providers": providers,
            "in_flight_resolutions": deploy_service.in_flight_resolutions(),
            "issues": issues,
        }

    return router
