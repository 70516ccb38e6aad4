from __future__ import annotations

import asyncio
import sys
from pathlib import Path
import unittest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
API_CODE_PATH = PROJECT_ROOT / "api-code"
if str(API_CODE_PATH) not in sys.path:
    sys.path.insert(0, str(API_CODE_PATH))

from domain import (
    DeployStatus,
    Environment,
    EnvironmentNotAllowedError,
    FeatureNotAvailableError,
    InvalidRollbackTargetError,
    NotFoundError,
    Plan,
    Provider,
    ProviderError,
    QuotaExceededError,
    UnsupportedProviderError,
)
from models import DeployOptions, DeploymentCreate, DeploymentUpdate, Project, RollbackOptions
from repositories import InMemoryDeploymentRepository
from services import DeployService, ResolutionScheduler
from settings import Settings


def make_settings(**overrides) -> Settings:
    values = {
        "GEMINI_API_KEY": None,
        "MONGODB_URI": "mongodb://localhost:27017",
        "MONGODB_DB_NAME": "test",
        "DEPLOY_DRY_RUN": True,
        "DEPLOY_DEFAULT_PLAN": "free",
        "DEPLOY_POLL_INTERVAL_SECONDS": 5,
    }
    values.update(overrides)
    return Settings.model_validate(values)


def preview_options(**overrides) -> DeployOptions:
    values = {"branch": "main", "environment": Environment.PREVIEW, "provider": Provider.VERCEL}
    values.update(overrides)
    return DeployOptions(**values)


class DeployServiceTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:  # noqa: N802
        self.repository = InMemoryDeploymentRepository()
        self.sleeps: list[float] = []
        self.clock_running = asyncio.Event()
        self.clock_running.set()

        async def fake_sleep(seconds: float) -> None:
            self.sleeps.append(seconds)
            await self.clock_running.wait()
            await asyncio.sleep(0)

        self.scheduler = ResolutionScheduler(poll_interval=5.0, sleep=fake_sleep)
        self.service = DeployService(self.repository, make_settings(), scheduler=self.scheduler)
        self.vercel = self.service.get_adapter("vercel")
        self.simulation = self.vercel.simulation
        await self.repository.upsert_project(Project(_id="proj-1", name="Marketing site"))

    async def asyncTearDown(self) -> None:  # noqa: N802
        await self.service.shutdown()

    async def _deploy_and_resolve(self, user_id: str = "alice", **overrides):
        result = await self.service.create_deployment("proj-1", user_id, preview_options(**overrides))
        await self.scheduler.wait(result.id)
        return await self.repository.get_deployment(result.id)

    async def test_free_plan_quota_blocks_fourth_deployment(self) -> None:
        for _ in range(3):
            await self.service.create_deployment("proj-1", "alice", preview_options())

        with self.assertRaises(QuotaExceededError):
            await self.service.create_deployment("proj-1", "alice", preview_options())

        rows = await self.repository.list_deployments("proj-1")
        self.assertEqual(len(rows), 3)
        self.assertEqual(len(self.simulation.deployments), 3)

        quota = await self.service.check_user_quota("alice")
        self.assertEqual(quota.monthly_deploys.used, 3)
        self.assertEqual(quota.monthly_deploys.remaining, 0)

    async def test_concurrent_submissions_cannot_exceed_quota(self) -> None:
        results = await asyncio.gather(
            *(self.service.create_deployment("proj-1", "alice", preview_options()) for _ in range(5)),
            return_exceptions=True,
        )

        created = [result for result in results if not isinstance(result, Exception)]
        rejected = [result for result in results if isinstance(result, QuotaExceededError)]
        self.assertEqual(len(created), 3)
        self.assertEqual(len(rejected), 2)
        self.assertEqual(len(await self.repository.list_deployments("proj-1")), 3)

    async def test_environment_outside_plan_is_rejected_before_provider_call(self) -> None:
        options = preview_options(environment=Environment.PRODUCTION)

        with self.assertRaises(EnvironmentNotAllowedError) as ctx:
            await self.service.create_deployment("proj-1", "alice", options)

        self.assertIsInstance(ctx.exception, QuotaExceededError)
        self.assertEqual(self.simulation.deployments, {})
        self.assertEqual(await self.repository.list_deployments("proj-1"), [])

    async def test_pro_plan_production_preview_is_flagged_without_adapter_calls(self) -> None:
        await self.service.set_user_plan("bob", Plan.PRO)
        for index in range(10):
            await self.repository.create_deployment(
                DeploymentCreate(
                    deployment_id=f"vercel_seed{index}",
                    project_id="proj-1",
                    branch="main",
                    provider=Provider.VERCEL,
                    environment=Environment.PREVIEW,
                    status=DeployStatus.DEPLOYING,
                    created_by="bob",
                )
            )

        preview = await self.service.create_deploy_preview(
            "proj-1", preview_options(environment=Environment.PRODUCTION), user_id="bob"
        )

        self.assertFalse(preview.environment_allowed)
        self.assertIn("production", preview.blocked_reason or "")
        self.assertIsNotNone(preview.quota)
        assert preview.quota is not None
        self.assertNotIn(Environment.PRODUCTION, preview.quota.environments)
        self.assertEqual(preview.quota.monthly_deploys.used, 10)
        self.assertIsNone(preview.plan)
        self.assertEqual(self.simulation.deployments, {})
        self.assertEqual(self.simulation.project_settings, {})
        self.assertEqual(self.simulation.env_variables, {})
        self.assertEqual(self.simulation.status_calls, {})

    async def test_preview_combines_estimates_plan_and_variables(self) -> None:
        options = preview_options(env_variables={"API_URL": "https://api.example.com"})

        preview = await self.service.create_deploy_preview("proj-1", options, user_id="alice")

        self.assertTrue(preview.environment_allowed)
        self.assertAlmostEqual(preview.estimated_cost or 0.0, 0.001)
        self.assertEqual(preview.estimated_build_time, 48)
        self.assertEqual(preview.build_command, "npm run build")
        self.assertEqual(preview.env_variables["NODE_ENV"], "development")
        self.assertEqual(preview.env_variables["API_URL"], "https://api.example.com")
        self.assertIsNotNone(preview.plan)
        assert preview.plan is not None
        self.assertEqual(preview.plan.recommended_environment, Environment.PREVIEW)
        self.assertEqual(preview.narrative["summary"], preview.plan.rationale)
        self.assertEqual(await self.repository.list_deployments("proj-1"), [])

    async def test_preview_unknown_project_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.service.create_deploy_preview("missing", preview_options())

    async def test_deployment_resolves_to_success_in_background(self) -> None:
        result = await self.service.create_deployment("proj-1", "alice", preview_options())
        self.assertEqual(result.status, DeployStatus.DEPLOYING)
        self.assertTrue(result.id.startswith("vercel_"))

        await self.scheduler.wait(result.id)
        stored = await self.repository.get_deployment(result.id)

        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.SUCCESS.value)
        self.assertTrue(stored.url and stored.url.endswith(".vercel.app"))
        self.assertAlmostEqual(stored.actual_cost or 0.0, 0.001)
        self.assertEqual(stored.build_time_seconds, 120)
        self.assertIsNone(stored.error)
        self.assertIsNotNone(stored.completed_at)
        self.assertEqual(self.sleeps, [5.0])
        self.assertEqual(self.service.in_flight_resolutions(), [])

    async def test_failed_build_records_error_without_url(self) -> None:
        self.simulation.fail_builds("Build exploded")

        stored = await self._deploy_and_resolve()

        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.FAILED.value)
        self.assertEqual(stored.error, "Build exploded")
        self.assertIsNone(stored.url)
        self.assertIsNone(stored.actual_cost)

    async def test_provider_error_during_resolution_is_recorded_on_row(self) -> None:
        result = await self.service.create_deployment("proj-1", "alice", preview_options())
        self.simulation.raise_on("status")

        await self.scheduler.wait(result.id)
        stored = await self.repository.get_deployment(result.id)

        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.FAILED.value)
        self.assertIn("HTTP 503", stored.error or "")

    async def test_adapter_failure_leaves_no_row_and_releases_reservation(self) -> None:
        self.simulation.raise_on("create")

        with self.assertRaises(ProviderError):
            await self.service.create_deployment("proj-1", "alice", preview_options())

        self.assertEqual(await self.repository.list_deployments("proj-1"), [])
        self.assertEqual(self.service._reservations, {})
        quota = await self.service.check_user_quota("alice")
        self.assertEqual(quota.monthly_deploys.used, 0)

    async def test_unregistered_provider_fails_before_any_io(self) -> None:
        service = DeployService(
            self.repository,
            make_settings(DEPLOY_ENABLED_PROVIDERS="vercel"),
            scheduler=self.scheduler,
        )

        with self.assertRaises(UnsupportedProviderError):
            await service.create_deployment(
                "proj-1", "alice", preview_options(provider=Provider.NETLIFY)
            )
        self.assertEqual(await self.repository.list_deployments("proj-1"), [])

    async def test_resolution_timeout_marks_row_failed(self) -> None:
        self.simulation.polls_by_environment[Environment.PREVIEW] = 10_000
        self.vercel.resolution_timeout_seconds = 10

        stored = await self._deploy_and_resolve()

        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.FAILED.value)
        self.assertIn("did not finish within 10s", stored.error or "")
        self.assertEqual(self.sleeps, [5.0, 5.0])

    async def test_status_refresh_never_regresses_terminal_row(self) -> None:
        stored = await self._deploy_and_resolve()
        assert stored is not None and stored.provider_id is not None
        self.simulation.deployments[stored.provider_id].status = DeployStatus.DEPLOYING

        refreshed = await self.service.get_deployment_status(stored.id)

        self.assertEqual(refreshed.status, DeployStatus.SUCCESS.value)
        self.assertEqual(refreshed.url, stored.url)

    async def test_cancel_in_flight_deployment(self) -> None:
        self.clock_running.clear()
        result = await self.service.create_deployment("proj-1", "alice", preview_options())

        cancelled = await self.service.cancel_deployment(result.id)

        self.assertEqual(cancelled.status, DeployStatus.CANCELLED.value)
        self.assertEqual(cancelled.error, "Deployment cancelled")
        self.assertIsNone(cancelled.url)
        await self.scheduler.wait(result.id)
        self.assertEqual(self.service.in_flight_resolutions(), [])

    async def test_cancel_after_success_is_a_no_op(self) -> None:
        stored = await self._deploy_and_resolve()
        assert stored is not None

        after_cancel = await self.service.cancel_deployment(stored.id)

        self.assertEqual(after_cancel.status, DeployStatus.SUCCESS.value)
        self.assertEqual(after_cancel.url, stored.url)
        self.assertIsNone(after_cancel.error)

    async def test_cancel_records_provider_outcome_when_it_finished_first(self) -> None:
        self.clock_running.clear()
        result = await self.service.create_deployment("proj-1", "alice", preview_options())
        assert result.provider_id is not None
        finished = self.simulation.status(result.provider_id)
        self.assertEqual(finished.status, DeployStatus.SUCCESS)

        after_cancel = await self.service.cancel_deployment(result.id)

        self.assertEqual(after_cancel.status, DeployStatus.SUCCESS.value)
        self.assertEqual(after_cancel.url, finished.url)
        self.assertIsNone(after_cancel.error)
        self.assertAlmostEqual(after_cancel.actual_cost or 0.0, 0.001)
        stored = await self.repository.get_deployment(result.id)
        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.SUCCESS.value)
        await self.scheduler.wait(result.id)
        self.assertEqual(self.service.in_flight_resolutions(), [])

    async def test_cancel_records_provider_failure_when_build_already_failed(self) -> None:
        self.clock_running.clear()
        result = await self.service.create_deployment("proj-1", "alice", preview_options())
        assert result.provider_id is not None
        self.simulation.fail_build(result.provider_id, "Out of memory")
        self.simulation.status(result.provider_id)

        after_cancel = await self.service.cancel_deployment(result.id)

        self.assertEqual(after_cancel.status, DeployStatus.FAILED.value)
        self.assertEqual(after_cancel.error, "Out of memory")

    async def test_late_terminal_write_loses_to_cancel(self) -> None:
        self.clock_running.clear()
        result = await self.service.create_deployment("proj-1", "alice", preview_options())
        await self.service.cancel_deployment(result.id)

        late = await self.repository.update_deployment(
            result.id,
            DeploymentUpdate(status=DeployStatus.SUCCESS, url="https://late.example"),
            expected_status=[DeployStatus.DEPLOYING],
        )

        self.assertIsNone(late)
        stored = await self.repository.get_deployment(result.id)
        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.CANCELLED.value)

    async def test_rollback_of_failed_deployment_is_rejected(self) -> None:
        await self.service.set_user_plan("alice", Plan.PRO)
        self.simulation.fail_builds()
        failed = await self._deploy_and_resolve()
        assert failed is not None

        with self.assertRaises(InvalidRollbackTargetError):
            await self.service.rollback_deployment(failed.id, "alice")

        self.assertEqual(len(await self.repository.list_deployments("proj-1")), 1)

    async def test_rollback_of_success_creates_one_row_and_flips_target(self) -> None:
        await self.service.set_user_plan("alice", Plan.PRO)
        target = await self._deploy_and_resolve()
        assert target is not None

        result = await self.service.rollback_deployment(
            target.id,
            "alice",
            RollbackOptions(target_deployment_id=target.id, reason="Broken checkout"),
        )

        rows = await self.repository.list_deployments("proj-1")
        self.assertEqual(len(rows), 2)
        new_row = await self.repository.get_deployment(result.id)
        assert new_row is not None
        self.assertEqual(new_row.rolled_back_from, target.id)
        self.assertEqual(new_row.rollback_reason, "Broken checkout")
        self.assertEqual(new_row.created_by, "alice")

        flipped = await self.repository.get_deployment(target.id)
        assert flipped is not None
        self.assertEqual(flipped.status, DeployStatus.ROLLED_BACK.value)
        self.assertEqual(flipped.url, target.url)
        self.assertEqual(flipped.actual_cost, target.actual_cost)

        await self.scheduler.wait(result.id)
        resolved = await self.repository.get_deployment(result.id)
        assert resolved is not None
        self.assertEqual(resolved.status, DeployStatus.SUCCESS.value)

    async def test_rollback_redeploys_into_target_environment(self) -> None:
        await self.service.set_user_plan("alice", Plan.PRO)
        target = await self._deploy_and_resolve(environment=Environment.STAGING)
        assert target is not None
        calls = []
        original = self.vercel.rollback_deploy

        async def recording_rollback(deploy_id, options, **kwargs):
            calls.append(kwargs)
            return await original(deploy_id, options, **kwargs)

        self.vercel.rollback_deploy = recording_rollback
        result = await self.service.rollback_deployment(target.id, "alice")

        self.assertEqual(calls, [{"project_id": "proj-1", "environment": "staging"}])
        new_row = await self.repository.get_deployment(result.id)
        assert new_row is not None
        self.assertEqual(new_row.environment, Environment.STAGING.value)

    async def test_rollbacks_on_other_projects_are_not_serialized(self) -> None:
        await self.service.set_user_plan("alice", Plan.PRO)
        await self.repository.upsert_project(Project(_id="proj-2", name="Docs site"))
        first = await self._deploy_and_resolve()
        second_result = await self.service.create_deployment("proj-2", "alice", preview_options())
        await self.scheduler.wait(second_result.id)
        assert first is not None

        gate = asyncio.Event()
        original = self.vercel.rollback_deploy

        async def gated_rollback(deploy_id, options, **kwargs):
            if kwargs["project_id"] == "proj-1":
                await gate.wait()
            return await original(deploy_id, options, **kwargs)

        self.vercel.rollback_deploy = gated_rollback
        blocked = asyncio.create_task(self.service.rollback_deployment(first.id, "alice"))
        for _ in range(5):
            await asyncio.sleep(0)

        other = await asyncio.wait_for(
            self.service.rollback_deployment(second_result.id, "alice"), timeout=1
        )

        self.assertFalse(blocked.done())
        self.assertTrue(other.id.startswith("vercel_"))
        gate.set()
        rolled = await blocked
        self.assertNotEqual(rolled.id, other.id)
        flipped = await self.repository.get_deployment(first.id)
        assert flipped is not None
        self.assertEqual(flipped.status, DeployStatus.ROLLED_BACK.value)

    async def test_rollback_requires_plan_feature(self) -> None:
        target = await self._deploy_and_resolve()
        assert target is not None

        with self.assertRaises(FeatureNotAvailableError):
            await self.service.rollback_deployment(target.id, "alice")

        stored = await self.repository.get_deployment(target.id)
        assert stored is not None
        self.assertEqual(stored.status, DeployStatus.SUCCESS.value)

    async def test_rollback_unknown_target_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.service.rollback_deployment("vercel_missing", "alice")

    async def test_logs_are_delegated_to_owning_adapter(self) -> None:
        stored = await self._deploy_and_resolve()
        assert stored is not None

        logs = await self.service.get_deployment_logs(stored.id)
        again = await self.service.get_deployment_logs(stored.id)

        self.assertEqual(logs, again)
        self.assertEqual(logs[0].source, "build")
        self.assertIn("Deployment ready", logs[-1].message)

    async def test_history_and_metrics(self) -> None:
        self.clock_running.clear()
        first = await self.service.create_deployment("proj-1", "alice", preview_options())
        second = await self.service.create_deployment("proj-1", "alice", preview_options())
        assert second.provider_id is not None
        self.simulation.fail_build(second.provider_id, "Type error")
        self.clock_running.set()
        await self.scheduler.wait_all()

        history = await self.service.get_deployment_history("proj-1", limit=20)
        self.assertEqual([row.id for row in history], [second.id, first.id])
        self.assertEqual(len(await self.service.get_deployment_history("proj-1", limit=1)), 1)

        metrics = await self.service.get_deployment_metrics("proj-1")
        self.assertEqual(metrics.total_deploys, 2)
        self.assertEqual(metrics.successful_deploys, 1)
        self.assertEqual(metrics.failed_deploys, 1)
        self.assertAlmostEqual(metrics.average_build_time, 120.0)
        self.assertAlmostEqual(metrics.total_cost, 0.001)
        self.assertEqual(metrics.last_deploy_at, history[0].created_at)

    async def test_metrics_for_project_without_deployments(self) -> None:
        metrics = await self.service.get_deployment_metrics("proj-1")

        self.assertEqual(metrics.total_deploys, 0)
        self.assertIsNone(metrics.last_deploy_at)

    async def test_environment_variables_pass_through(self) -> None:
        variables = await self.service.update_environment_variables(
            "proj-1", Environment.STAGING, {"FEATURE_FLAG": "on"}
        )

        self.assertEqual(variables["FEATURE_FLAG"], "on")
        fetched = await self.service.get_environment_variables("proj-1", Environment.STAGING)
        self.assertEqual(fetched, variables)
        untouched = await self.service.get_environment_variables("proj-1", Environment.PREVIEW)
        self.assertNotIn("FEATURE_FLAG", untouched)


if __name__ == "__main__":
    unittest.main()
