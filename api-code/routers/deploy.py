from __future__ import annotations

from typing import Callable, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from domain import (
    DeployerError,
    EnvironmentNotAllowedError,
    Environment,
    FeatureNotAvailableError,
    InvalidRollbackTargetError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    UnsupportedProviderError,
)
from models import DeployLog, DeployMetrics, DeployPreview, DeployQuota, Project, RollbackOptions
from schemas import (
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
from services import DeployService


def to_http_error(exc: DeployerError) -> HTTPException:
    if isinstance(exc, (EnvironmentNotAllowedError, FeatureNotAvailableError)):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, QuotaExceededError):
        code = status.HTTP_402_PAYMENT_REQUIRED
    elif isinstance(exc, UnsupportedProviderError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ProviderError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, InvalidRollbackTargetError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"message": exc.message, "details": exc.details})


def build_deploy_router(
    deploy_service: DeployService, auth_dependency: Callable, admin_dependency: Callable
) -> APIRouter:
    router = APIRouter(prefix="/api/v1", tags=["deploy"])

    @router.put(
        "/projects/{project_id}",
        response_model=Project,
        response_model_by_alias=False,
        summary="Register or update a project and its working tree.",
    )
    async def register_project(
        project_id: str,
        payload: ProjectRequest,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> Project:
        try:
            return await deploy_service.register_project(Project(_id=project_id, **payload.model_dump()))
        except DeployerError as exc:
            raise to_http_error(exc) from exc

    @router.post(
        "/projects/{project_id}/deploy/preview",
        response_model=DeployPreview,
        summary="Show settings, changed files, risk and cost before deploying.",
    )
    async def preview(
        project_id: str,
        payload: DeployRequest,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeployPreview:
        try:
            return await deploy_service.create_deploy_preview(
                project_id, payload.to_options(), user_id=user["user_id"]
            )
        except DeployerError as exc:
            raise to_http_error(exc) from exc

    @router.post(
        "/projects/{project_id}/deploy",
        response_model=DeployResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Submit a deployment; it resolves in the background.",
    )
    async def trigger_deploy(
        project_id: str,
        payload: DeployRequest,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeployResponse:
        try:
            result = await deploy_service.create_deployment(
                project_id, user["user_id"], payload.to_options()
            )
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return DeployResponse.model_validate(result.model_dump())

    @router.get(
        "/deployments/{deployment_id}/status",
        response_model=DeploymentResponse,
        summary="Refresh and return the deployment record.",
    )
    async def get_status(
        deployment_id: str,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeploymentResponse:
        try:
            deployment = await deploy_service.get_deployment_status(deployment_id)
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return DeploymentResponse.from_deployment(deployment)

    @router.get(
        "/deployments/{deployment_id}/logs",
        response_model=List[DeployLog],
        summary="Return build and deploy log entries from the provider.",
    )
    async def get_logs(
        deployment_id: str,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> List[DeployLog]:
        try:
            return await deploy_service.get_deployment_logs(deployment_id)
        except DeployerError as exc:
            raise to_http_error(exc) from exc

    @router.post(
        "/deployments/{deployment_id}/cancel",
        response_model=DeploymentResponse,
        summary="Cancel an in-flight deployment; finished deployments are returned unchanged.",
    )
    async def cancel(
        deployment_id: str,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeploymentResponse:
        try:
            deployment = await deploy_service.cancel_deployment(deployment_id)
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return DeploymentResponse.from_deployment(deployment)

    @router.post(
        "/deployments/{deployment_id}/rollback",
        response_model=DeployResponse,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Redeploy a successful deployment and mark it rolled back.",
    )
    async def rollback(
        deployment_id: str,
        payload: RollbackRequest,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeployResponse:
        options = RollbackOptions(target_deployment_id=deployment_id, reason=payload.reason)
        try:
            result = await deploy_service.rollback_deployment(deployment_id, user["user_id"], options)
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return DeployResponse.model_validate(result.model_dump())

    @router.get(
        "/projects/{project_id}/deployments",
        response_model=DeploymentHistoryResponse,
        summary="List recent deployments, newest first.",
    )
    async def history(
        project_id: str,
        limit: int = Query(default=20, ge=1, le=100),
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeploymentHistoryResponse:
        deployments = await deploy_service.get_deployment_history(project_id, limit=limit)
        return DeploymentHistoryResponse(
            project_id=project_id,
            deployments=[DeploymentResponse.from_deployment(row) for row in deployments],
        )

    @router.get(
        "/projects/{project_id}/deployments/metrics",
        response_model=DeployMetrics,
        summary="Aggregate totals, outcomes, build time and cost for a project.",
    )
    async def metrics(
        project_id: str,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> DeployMetrics:
        return await deploy_service.get_deployment_metrics(project_id)

    @router.get(
        "/projects/{project_id}/env/{environment}",
        response_model=EnvVariablesResponse,
        summary="Read provider environment variables for an environment.",
    )
    async def get_env(
        project_id: str,
        environment: Environment,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> EnvVariablesResponse:
        try:
            variables = await deploy_service.get_environment_variables(project_id, environment)
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return EnvVariablesResponse(project_id=project_id, environment=environment, variables=variables)

    @router.put(
        "/projects/{project_id}/env/{environment}",
        response_model=EnvVariablesResponse,
        summary="Create or overwrite provider environment variables.",
    )
    async def set_env(
        project_id: str,
        environment: Environment,
        payload: EnvVariablesRequest,
        user=Depends(auth_dependency),  # type: ignore[valid-type]
    ) -> EnvVariablesResponse:
        try:
            variables = await deploy_service.update_environment_variables(
                project_id, environment, payload.variables, provider=payload.provider
            )
        except DeployerError as exc:
            raise to_http_error(exc) from exc
        return EnvVariablesResponse(project_id=project_id, environment=environment, variables=variables)

    @router.get(
        "/quota",
        response_model=DeployQuota,
        summary="Plan limits and month-to-date usage for the current user.",
    )
    async def quota(user=Depends(auth_dependency)) -> DeployQuota:  # type: ignore[valid-type]
        return await deploy_service.check_user_quota(user["user_id"])

    @router.put(
        "/users/{user_id}/plan",
        response_model=DeployQuota,
        summary="Assign a plan to a user. Admin only.",
    )
    async def set_plan(
        user_id: str,
        payload: UserPlanRequest,
        admin=Depends(admin_dependency),  # type: ignore[valid-type]
    ) -> DeployQuota:
        await deploy_service.set_user_plan(user_id, payload.plan, assigned_by=admin["user_id"])
        return await deploy_service.check_user_quota(user_id)

    return router
