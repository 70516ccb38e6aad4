from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, Optional

from domain import (
    PROVIDER_REPORTED_STATUSES,
    DeployStatus,
    Environment,
    EnvironmentNotAllowedError,
    FeatureNotAvailableError,
    InvalidRollbackTargetError,
    NotFoundError,
    Plan,
    ProviderError,
    QuotaExceededError,
    is_valid_transition,
)
from models import (
    DeployLog,
    DeployMetrics,
    DeployOptions,
    DeployPreview,
    DeployQuota,
    DeployResult,
    DeployStatusReport,
    Deployment,
    DeploymentCreate,
    DeploymentUpdate,
    Project,
    RollbackOptions,
    UserAccount,
    utc_now,
)
from providers import AdapterRegistry, BaseDeployAdapter, build_adapter_registry
from repositories import DeploymentRepository
from settings import Settings

from .git_inspector import GitInspector
from .plan_narrator import PlanNarrator
from .quota import month_start, resolve_quota
from .resolution import ResolutionScheduler
from .risk_engine import generate_deployment_plan


logger = logging.getLogger("devflow-deployer.deploy")

CANCELLED_ERROR = "Deployment cancelled"
HISTORY_MAX_LIMIT = 100

GitInspectorFactory = Callable[[Optional[str]], GitInspector]


class DeployService:
    """Coordinates deployment lifecycle across providers, quota and the record store."""

    def __init__(
        self,
        repository: DeploymentRepository,
        settings: Settings,
        *,
        adapters: Optional[AdapterRegistry] = None,
        scheduler: Optional[ResolutionScheduler] = None,
        narrator: Optional[PlanNarrator] = None,
        git_inspector_factory: Optional[GitInspectorFactory] = None,
    ):
        self.repository = repository
        self.settings = settings
        self.dry_run = settings.deploy_dry_run
        self.default_plan = Plan(settings.deploy_default_plan)
        self.adapters = adapters if adapters is not None else build_adapter_registry(settings)
        self.scheduler = scheduler or ResolutionScheduler(
            poll_interval=settings.deploy_poll_interval_seconds
        )
        self.narrator = narrator or PlanNarrator(settings.gemini_api_key, settings.plan_llm_model)
        self._git_inspector_factory = git_inspector_factory or (
            lambda repo_path: GitInspector(repo_path, dry_run=self.dry_run)
        )
        self._quota_lock = asyncio.Lock()
        self._reservations: Dict[str, int] = {}
        self._rollback_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        logger.info(
            "DeployService initialized (dry_run=%s, providers=%s, default_plan=%s)",
            self.dry_run,
            self.adapters.names(),
            self.default_plan.value,
        )

    # ------------------------------------------------------------ lookups

    def get_adapter(self, provider: str) -> BaseDeployAdapter:
        return self.adapters.get(provider)

    async def register_project(self, project: Project) -> Project:
        self.get_adapter(project.default_provider)
        return await self.repository.upsert_project(project)

    async def get_project(self, project_id: str) -> Project:
        project = await self.repository.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def get_deployment(self, deployment_id: str) -> Deployment:
        deployment = await self.repository.get_deployment(deployment_id)
        if deployment is None:
            raise NotFoundError("Deployment", deployment_id)
        return deployment

    async def resolve_user_plan(self, user_id: str) -> Plan:
        account = await self.repository.get_user(user_id)
        if account is None:
            return self.default_plan
        return Plan(account.plan)

    async def set_user_plan(
        self, user_id: str, plan: Plan, *, assigned_by: Optional[str] = None
    ) -> UserAccount:
        account = await self.repository.set_user_plan(user_id, Plan(plan))
        logger.info("Plan for user=%s set to %s by %s", user_id, Plan(plan).value, assigned_by or "system")
        return account

    async def check_user_quota(self, user_id: str) -> DeployQuota:
        plan = await self.resolve_user_plan(user_id)
        used = await self.repository.count_user_deployments_since(user_id, month_start())
        return resolve_quota(plan, used)

    # ------------------------------------------------------------ preview

    async def create_deploy_preview(
        self,
        project_id: str,
        options: DeployOptions,
        user_id: Optional[str] = None,
    ) -> DeployPreview:
        """Assemble everything a user needs before confirming a deployment.

        Read-only. When ``user_id`` is given and the plan excludes the requested
        environment the preview is returned flagged, before any provider call.
        """
        project = await self.get_project(project_id)
        adapter = self.get_adapter(options.provider)
        environment = Environment(options.environment)

        quota: Optional[DeployQuota] = None
        if user_id is not None:
            quota = await self.check_user_quota(user_id)
            if not quota.allows(environment):
                logger.info(
                    "Preview blocked project=%s user=%s environment=%s plan=%s",
                    project_id,
                    user_id,
                    environment.value,
                    quota.plan.value,
                )
                return DeployPreview(
                    project_id=project_id,
                    branch=options.branch,
                    commit_hash=options.commit_hash,
                    commit_message=options.commit_message,
                    provider=options.provider,
                    environment=environment,
                    environment_allowed=False,
                    blocked_reason=(
                        f"The {quota.plan.value} plan does not include {environment.value} deployments"
                    ),
                    build_command=options.build_command,
                    quota=quota,
                )

        project_settings = await adapter.get_project_settings(project_id)
        env_variables = await adapter.get_environment_variables(project_id, environment.value)
        env_variables.update(options.env_variables)

        last_success = await self.repository.get_last_successful(project_id, environment)
        since_commit = last_success.commit_hash if last_success else None
        inspector = self._git_inspector_factory(project.repo_path)
        git_status = await inspector.get_status(since_commit)
        changed_files = await inspector.get_changed_files_since(since_commit)

        plan = generate_deployment_plan(git_status, changed_files, environment, options.provider)
        narrative = await self.narrator.narrate(project_id, plan, git_status, changed_files)

        last_commit = git_status.last_commit
        return DeployPreview(
            project_id=project_id,
            branch=options.branch,
            commit_hash=options.commit_hash or (last_commit.hash if last_commit else None),
            commit_message=options.commit_message or (last_commit.message if last_commit else None),
            provider=options.provider,
            environment=environment,
            changed_files=changed_files,
            build_command=options.build_command or project_settings.get("build_command"),
            env_variables=env_variables,
            estimated_cost=adapter.estimate_cost(options),
            estimated_build_time=int(adapter.estimate_build_time(options)),
            git_status=git_status,
            plan=plan,
            quota=quota,
            narrative=narrative,
        )

    # ------------------------------------------------------------- submit

    async def create_deployment(
        self, project_id: str, user_id: str, options: DeployOptions
    ) -> DeployResult:
        adapter = self.get_adapter(options.provider)
        await self.get_project(project_id)
        environment = Environment(options.environment)

        await self._reserve_quota(user_id, environment)
        try:
            result = await adapter.create_deploy(project_id, options)
            estimated_cost = adapter.estimate_cost(options)
            estimated_build_time = int(adapter.estimate_build_time(options))
            deployment = await self.repository.create_deployment(
                DeploymentCreate(
                    deployment_id=result.id,
                    project_id=project_id,
                    branch=options.branch,
                    provider=options.provider,
                    environment=environment,
                    status=result.status,
                    created_by=user_id,
                    commit_hash=options.commit_hash,
                    commit_message=options.commit_message,
                    provider_id=result.provider_id,
                    logs_url=result.logs_url,
                    build_command=options.build_command,
                    estimated_cost=estimated_cost,
                    estimated_build_time=estimated_build_time,
                )
            )
        finally:
            self._release_quota(user_id)

        logger.info(
            "Deployment created id=%s project=%s provider=%s environment=%s user=%s",
            deployment.id,
            project_id,
            adapter.name,
            environment.value,
            user_id,
        )
        self._schedule_resolution(deployment.id, adapter)
        return DeployResult(
            id=deployment.id,
            status=deployment.status_enum,
            provider_id=deployment.provider_id,
            logs_url=deployment.logs_url,
            estimated_cost=estimated_cost,
            estimated_build_time=estimated_build_time,
        )

    async def _reserve_quota(self, user_id: str, environment: Environment) -> DeployQuota:
        async with self._quota_lock:
            quota = await self.check_user_quota(user_id)
            if not quota.allows(environment):
                raise EnvironmentNotAllowedError(
                    quota.plan.value,
                    environment.value,
                    [Environment(env).value for env in quota.environments],
                )
            pending = self._reservations.get(user_id, 0)
            if quota.monthly_deploys.remaining - pending <= 0:
                logger.info(
                    "Quota exhausted user=%s plan=%s used=%d limit=%d",
                    user_id,
                    quota.plan.value,
                    quota.monthly_deploys.used,
                    quota.monthly_deploys.limit,
                )
                raise QuotaExceededError(
                    details={
                        "plan": quota.plan.value,
                        "limit": quota.monthly_deploys.limit,
                        "used": quota.monthly_deploys.used,
                    }
                )
            self._reservations[user_id] = pending + 1
            return quota

    def _release_quota(self, user_id: str) -> None:
        pending = self._reservations.get(user_id, 0) - 1
        if pending > 0:
            self._reservations[user_id] = pending
        else:
            self._reservations.pop(user_id, None)

    # ------------------------------------------------------------- status

    async def get_deployment_status(self, deployment_id: str) -> Deployment:
        """Refresh the row from its provider and return it; terminal rows are returned as stored."""
        deployment = await self.get_deployment(deployment_id)
        if deployment.is_terminal:
            return deployment
        adapter = self.get_adapter(deployment.provider)
        report = await adapter.get_deploy_status(deployment_id)
        return await self._apply_report(deployment, report)

    async def _apply_report(self, deployment: Deployment, report: DeployStatusReport) -> Deployment:
        current = deployment.status_enum
        reported = DeployStatus(report.status)
        if reported == current or reported not in PROVIDER_REPORTED_STATUSES:
            return deployment
        if not is_valid_transition(current, reported):
            logger.debug(
                "Ignoring reported status deployment=%s current=%s reported=%s",
                deployment.id,
                current.value,
                reported.value,
            )
            return deployment

        update = DeploymentUpdate(status=reported, build_time_seconds=report.build_time_seconds)
        if reported == DeployStatus.SUCCESS:
            if not report.url:
                logger.warning("Provider reported success without a url deployment=%s", deployment.id)
                return deployment
            update.url = report.url
            update.actual_cost = deployment.estimated_cost or 0.0
            update.completed_at = utc_now()
        elif reported == DeployStatus.FAILED:
            update.error = report.error or "Deployment failed"
            update.completed_at = utc_now()

        updated = await self.repository.update_deployment(
            deployment.id, update, expected_status=[current]
        )
        if updated is None:
            # Another writer got there first.
            return await self.get_deployment(deployment.id)
        logger.info(
            "Deployment %s transitioned %s -> %s", deployment.id, current.value, reported.value
        )
        return updated

    async def _record_failure(self, deployment_id: str, error: str) -> Optional[Deployment]:
        updated = await self.repository.update_deployment(
            deployment_id,
            DeploymentUpdate(status=DeployStatus.FAILED, error=error, completed_at=utc_now()),
            expected_status=[DeployStatus.DEPLOYING],
        )
        if updated is not None:
            logger.warning("Deployment %s failed: %s", deployment_id, error)
        return updated

    def _schedule_resolution(self, deployment_id: str, adapter: BaseDeployAdapter) -> None:
        timeout_seconds = adapter.resolution_timeout_seconds

        async def refresh() -> bool:
            try:
                deployment = await self.get_deployment_status(deployment_id)
            except ProviderError as exc:
                await self._record_failure(deployment_id, str(exc))
                return True
            return deployment.is_terminal

        async def on_timeout() -> None:
            await self._record_failure(
                deployment_id, f"Deployment did not finish within {int(timeout_seconds)}s"
            )

        self.scheduler.schedule(
            deployment_id, refresh, timeout_seconds=timeout_seconds, on_timeout=on_timeout
        )

    # --------------------------------------------------------------- logs

    async def get_deployment_logs(self, deployment_id: str) -> List[DeployLog]:
        deployment = await self.get_deployment(deployment_id)
        adapter = self.get_adapter(deployment.provider)
        return await adapter.get_deploy_logs(deployment_id)

    # ------------------------------------------------------------- cancel

    async def cancel_deployment(self, deployment_id: str) -> Deployment:
        deployment = await self.get_deployment(deployment_id)
        if deployment.is_terminal:
            logger.info("Cancel ignored; deployment %s already %s", deployment_id, deployment.status)
            return deployment

        adapter = self.get_adapter(deployment.provider)
        self.scheduler.cancel(deployment_id)
        try:
            final_report = await adapter.cancel_deploy(deployment_id)
        except ProviderError:
            self._schedule_resolution(deployment_id, adapter)
            raise

        if final_report is not None:
            # The provider finished first; record its outcome instead of a cancellation.
            resolved = await self._apply_report(deployment, final_report)
            if not resolved.is_terminal:
                self._schedule_resolution(deployment_id, adapter)
            return resolved

        updated = await self.repository.update_deployment(
            deployment_id,
            DeploymentUpdate(
                status=DeployStatus.CANCELLED, error=CANCELLED_ERROR, completed_at=utc_now()
            ),
            expected_status=[DeployStatus.DEPLOYING],
        )
        if updated is None:
            return await self.get_deployment(deployment_id)
        logger.info("Deployment %s cancelled", deployment_id)
        return updated

    # ----------------------------------------------------------- rollback

    async def rollback_deployment(
        self,
        target_deployment_id: str,
        user_id: str,
        options: Optional[RollbackOptions] = None,
    ) -> DeployResult:
        """Redeploy a successful deployment and mark it superseded.

        The new row is written before the target flips to ``rolled_back`` so a
        crash in between never loses the rollback itself. Rollbacks are
        serialized per project; unrelated projects roll back concurrently.
        """
        options = options or RollbackOptions(target_deployment_id=target_deployment_id)
        project_id = (await self.get_deployment(target_deployment_id)).project_id
        async with self._rollback_locks[project_id]:
            target = await self.get_deployment(target_deployment_id)
            if target.status_enum != DeployStatus.SUCCESS:
                raise InvalidRollbackTargetError(target_deployment_id, target.status_enum.value)

            quota = await self.check_user_quota(user_id)
            if not quota.features.rollback:
                raise FeatureNotAvailableError(quota.plan.value, "rollback")

            adapter = self.get_adapter(target.provider)
            result = await adapter.rollback_deploy(
                target_deployment_id,
                options,
                project_id=target.project_id,
                environment=Environment(target.environment).value,
            )
            deployment = await self.repository.create_deployment(
                DeploymentCreate(
                    deployment_id=result.id,
                    project_id=target.project_id,
                    branch=target.branch,
                    provider=target.provider,
                    environment=target.environment,
                    status=result.status,
                    created_by=user_id,
                    commit_hash=target.commit_hash,
                    commit_message=target.commit_message,
                    provider_id=result.provider_id,
                    logs_url=result.logs_url,
                    build_command=target.build_command,
                    estimated_cost=target.estimated_cost,
                    estimated_build_time=target.estimated_build_time,
                    rolled_back_from=target_deployment_id,
                    rollback_reason=options.reason,
                )
            )
            flipped = await self.repository.update_deployment(
                target_deployment_id,
                DeploymentUpdate(status=DeployStatus.ROLLED_BACK),
                expected_status=[DeployStatus.SUCCESS],
            )
            if flipped is None:
                logger.warning(
                    "Rollback target %s changed status before it could be superseded",
                    target_deployment_id,
                )

        logger.info(
            "Rollback created id=%s target=%s user=%s reason=%s",
            deployment.id,
            target_deployment_id,
            user_id,
            options.reason or "-",
        )
        self._schedule_resolution(deployment.id, adapter)
        return DeployResult(
            id=deployment.id,
            status=deployment.status_enum,
            provider_id=deployment.provider_id,
            logs_url=deployment.logs_url,
            estimated_cost=deployment.estimated_cost,
            estimated_build_time=deployment.estimated_build_time,
        )

    # ---------------------------------------------------- history/metrics

    async def get_deployment_history(self, project_id: str, limit: int = 20) -> List[Deployment]:
        bounded_limit = max(1, min(limit, HISTORY_MAX_LIMIT))
        return await self.repository.list_deployments(project_id, limit=bounded_limit)

    async def get_deployment_metrics(self, project_id: str) -> DeployMetrics:
        deployments = await self.repository.list_deployments(project_id)
        if not deployments:
            return DeployMetrics()

        successful = sum(
            1
            for row in deployments
            if row.status_enum in (DeployStatus.SUCCESS, DeployStatus.ROLLED_BACK)
        )
        failed = sum(1 for row in deployments if row.status_enum == DeployStatus.FAILED)
        build_times = [row.build_time_seconds for row in deployments if row.build_time_seconds is not None]
        return DeployMetrics(
            total_deploys=len(deployments),
            successful_deploys=successful,
            failed_deploys=failed,
            average_build_time=sum(build_times) / len(build_times) if build_times else 0.0,
            total_cost=sum(row.actual_cost or 0.0 for row in deployments),
            last_deploy_at=max(row.created_at for row in deployments),
        )

    # ---------------------------------------------------------- variables

    async def get_environment_variables(
        self, project_id: str, environment: Environment, provider: Optional[str] = None
    ) -> Dict[str, str]:
        project = await self.get_project(project_id)
        adapter = self.get_adapter(provider or project.default_provider)
        return await adapter.get_environment_variables(project_id, Environment(environment).value)

    async def update_environment_variables(
        self,
        project_id: str,
        environment: Environment,
        variables: Mapping[str, str],
        provider: Optional[str] = None,
    ) -> Dict[str, str]:
        project = await self.get_project(project_id)
        adapter = self.get_adapter(provider or project.default_provider)
        environment_value = Environment(environment).value
        await adapter.set_environment_variables(project_id, environment_value, variables)
        return await adapter.get_environment_variables(project_id, environment_value)

    # ---------------------------------------------------------- lifecycle

    def in_flight_resolutions(self) -> List[str]:
        return self.scheduler.in_flight()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
