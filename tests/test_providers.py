from __future__ import annotations

import io
import json
import sys
from pathlib import Path
import unittest
from unittest.mock import AsyncMock, MagicMock, patch
from urllib import error as urllib_error

from hypothesis import given, strategies as st

PROJECT_ROOT = Path(__file__).resolve().parent.parent
API_CODE_PATH = PROJECT_ROOT / "api-code"
if str(API_CODE_PATH) not in sys.path:
    sys.path.insert(0, str(API_CODE_PATH))

from domain import DeployStatus, Environment, Provider, ProviderError, UnsupportedProviderError
from models import DeployOptions, RollbackOptions
from providers import (
    AdapterRegistry,
    NetlifyAdapter,
    ProviderSimulation,
    VercelAdapter,
    build_adapter_registry,
    parse_log_line,
)
from settings import Settings


def options_for(environment: Environment, provider: Provider = Provider.VERCEL, **extra) -> DeployOptions:
    return DeployOptions(environment=environment, provider=provider, **extra)


def mock_response(payload) -> MagicMock:
    response = MagicMock()
    response.read.return_value = json.dumps(payload).encode("utf-8")
    context = MagicMock()
    context.__enter__.return_value = response
    context.__exit__.return_value = False
    return context


class EstimationTest(unittest.TestCase):
    def test_vercel_production_cost_layers_base_and_provider_multipliers(self):
        adapter = VercelAdapter(dry_run=True)

        self.assertAlmostEqual(adapter.estimate_cost(options_for(Environment.PRODUCTION)), 0.015)

    def test_provider_tables(self):
        vercel = VercelAdapter(dry_run=True)
        netlify = NetlifyAdapter(dry_run=True)
        expected = {
            Environment.PREVIEW: (0.001, 48, 0.001, 72),
            Environment.STAGING: (0.003, 72, 0.0036, 108),
            Environment.PRODUCTION: (0.015, 96, 0.02, 144),
        }
        for environment, (v_cost, v_time, n_cost, n_time) in expected.items():
            with self.subTest(environment=environment):
                v_opts = options_for(environment)
                n_opts = options_for(environment, Provider.NETLIFY)
                self.assertAlmostEqual(vercel.estimate_cost(v_opts), v_cost)
                self.assertEqual(vercel.estimate_build_time(v_opts), v_time)
                self.assertAlmostEqual(netlify.estimate_cost(n_opts), n_cost)
                self.assertEqual(netlify.estimate_build_time(n_opts), n_time)

    @given(
        environment=st.sampled_from(list(Environment)),
        provider=st.sampled_from(list(Provider)),
        file_count=st.integers(min_value=0, max_value=500),
    )
    def test_estimates_are_deterministic(self, environment, provider, file_count):
        adapter = VercelAdapter(dry_run=True) if provider == Provider.VERCEL else NetlifyAdapter(dry_run=True)
        options = options_for(
            environment,
            provider,
            env_variables={f"VAR_{index}": "x" for index in range(file_count % 5)},
        )

        self.assertEqual(adapter.estimate_cost(options), adapter.estimate_cost(options))
        self.assertEqual(adapter.estimate_build_time(options), adapter.estimate_build_time(options))


class LogParsingTest(unittest.TestCase):
    def test_structured_line(self):
        entry = parse_log_line("[2024-05-01T10:00:00Z] [WARNING] [deploy] Slow upload")

        self.assertEqual(entry.timestamp, "2024-05-01T10:00:00Z")
        self.assertEqual(entry.level, "warn")
        self.assertEqual(entry.source, "deploy")
        self.assertEqual(entry.message, "Slow upload")

    def test_unknown_level_and_source_fall_back(self):
        entry = parse_log_line("[t] [trace] [edge] hello")

        self.assertEqual((entry.level, entry.source), ("info", "build"))

    def test_unstructured_line_becomes_info_build(self):
        entry = parse_log_line("npm WARN deprecated")

        self.assertEqual(entry.level, "info")
        self.assertEqual(entry.source, "build")
        self.assertEqual(entry.message, "npm WARN deprecated")


class SimulationTest(unittest.IsolatedAsyncioTestCase):
    async def test_deploy_ids_are_provider_namespaced_and_unique(self):
        adapter = NetlifyAdapter(dry_run=True)

        first = await adapter.create_deploy("site", options_for(Environment.PREVIEW, Provider.NETLIFY))
        second = await adapter.create_deploy("site", options_for(Environment.PREVIEW, Provider.NETLIFY))

        self.assertTrue(first.id.startswith("netlify_"))
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.status, DeployStatus.DEPLOYING)
        self.assertEqual(adapter.provider_id_from(first.id), first.provider_id)

    async def test_production_resolves_after_three_polls(self):
        adapter = VercelAdapter(dry_run=True)
        result = await adapter.create_deploy("web", options_for(Environment.PRODUCTION))

        statuses = [(await adapter.get_deploy_status(result.id)).status for _ in range(4)]

        self.assertEqual(
            statuses,
            [DeployStatus.DEPLOYING, DeployStatus.DEPLOYING, DeployStatus.SUCCESS, DeployStatus.SUCCESS],
        )

    async def test_injected_failure_and_cancel_noop_on_terminal(self):
        simulation = ProviderSimulation("vercel", domain="vercel.app")
        adapter = VercelAdapter(simulation=simulation)
        result = await adapter.create_deploy("web", options_for(Environment.PREVIEW))
        simulation.fail_build(result.provider_id, "Missing env var")

        report = await adapter.get_deploy_status(result.id)
        await adapter.cancel_deploy(result.id)

        self.assertEqual(report.status, DeployStatus.FAILED)
        self.assertEqual(report.error, "Missing env var")
        self.assertIsNone(report.url)
        self.assertEqual(simulation.deployments[result.provider_id].status, DeployStatus.FAILED)

    async def test_rollback_creates_new_forward_deployment(self):
        adapter = VercelAdapter(dry_run=True)
        original = await adapter.create_deploy("web", options_for(Environment.PREVIEW))
        await adapter.get_deploy_status(original.id)

        rolled = await adapter.rollback_deploy(
            original.id, RollbackOptions(target_deployment_id=original.id), project_id="web"
        )

        self.assertNotEqual(rolled.id, original.id)
        self.assertEqual(rolled.status, DeployStatus.DEPLOYING)
        self.assertEqual(
            adapter.simulation.deployments[original.provider_id].status, DeployStatus.SUCCESS
        )

    async def test_raise_on_queues_a_single_error(self):
        adapter = VercelAdapter(dry_run=True)
        adapter.simulation.raise_on("create")

        with self.assertRaises(ProviderError) as ctx:
            await adapter.create_deploy("web", options_for(Environment.PREVIEW))
        self.assertEqual(ctx.exception.status_code, 503)

        result = await adapter.create_deploy("web", options_for(Environment.PREVIEW))
        self.assertTrue(result.id.startswith("vercel_"))


class VercelHttpTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.adapter = VercelAdapter("token-123", "https://vercel.test", team_id="team_1")

    async def test_create_sends_bearer_token_and_team_scope(self):
        with patch(
            "providers.base.urllib_request.urlopen", return_value=mock_response({"id": "dpl_1"})
        ) as urlopen:
            result = await self.adapter.create_deploy(
                "web", options_for(Environment.PRODUCTION, commit_hash="abc123")
            )

        request = urlopen.call_args[0][0]
        body = json.loads(request.data.decode("utf-8"))
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(request.full_url, "https://vercel.test/v13/deployments?teamId=team_1")
        self.assertEqual(request.get_header("Authorization"), "Bearer token-123")
        self.assertEqual(body["target"], "production")
        self.assertEqual(body["gitSource"]["sha"], "abc123")
        self.assertEqual(result.id, "vercel_dpl_1")
        self.assertEqual(result.status, DeployStatus.DEPLOYING)

    async def test_rollback_redeploys_into_the_target_environment(self):
        cases = [("staging", "preview"), ("preview", "preview"), ("production", "production")]
        for environment, expected_target in cases:
            with self.subTest(environment=environment):
                with patch(
                    "providers.base.urllib_request.urlopen", return_value=mock_response({"id": "dpl_2"})
                ) as urlopen:
                    result = await self.adapter.rollback_deploy(
                        "vercel_dpl_1",
                        RollbackOptions(target_deployment_id="vercel_dpl_1"),
                        project_id="web",
                        environment=environment,
                    )

                urlopen.assert_called_once()
                request = urlopen.call_args[0][0]
                body = json.loads(request.data.decode("utf-8"))
                self.assertEqual(request.get_method(), "POST")
                self.assertEqual(body["target"], expected_target)
                self.assertEqual(body["deploymentId"], "dpl_1")
                self.assertEqual(result.id, "vercel_dpl_2")

    async def test_rollback_without_environment_keeps_original_target(self):
        self.adapter._request = AsyncMock(side_effect=[{"id": "dpl_1", "target": None}, {"id": "dpl_2"}])

        await self.adapter.rollback_deploy(
            "vercel_dpl_1", RollbackOptions(target_deployment_id="vercel_dpl_1"), project_id="web"
        )

        first, second = self.adapter._request.await_args_list
        self.assertEqual(first.args, ("GET", "/v13/deployments/dpl_1"))
        self.assertEqual(second.kwargs["payload"]["target"], "preview")

    async def test_non_2xx_surfaces_provider_error_with_upstream_message(self):
        error = urllib_error.HTTPError(
            "https://vercel.test/v13/deployments/dpl_1",
            403,
            "Forbidden",
            {},
            io.BytesIO(b'{"error": {"code": "forbidden", "message": "Not authorized"}}'),
        )
        with patch("providers.base.urllib_request.urlopen", side_effect=error):
            with self.assertRaises(ProviderError) as ctx:
                await self.adapter.get_deploy_status("vercel_dpl_1")

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.upstream_message, "Not authorized")
        self.assertEqual(ctx.exception.provider, "vercel")

    async def test_transport_error_is_wrapped(self):
        with patch(
            "providers.base.urllib_request.urlopen",
            side_effect=urllib_error.URLError("connection refused"),
        ):
            with self.assertRaises(ProviderError) as ctx:
                await self.adapter.get_deploy_logs("vercel_dpl_1")

        self.assertIsNone(ctx.exception.status_code)

    async def test_status_mapping(self):
        cases = [
            ({"readyState": "BUILDING"}, DeployStatus.DEPLOYING, None),
            (
                {"readyState": "READY", "url": "web-abc.vercel.app", "buildingAt": 1000, "ready": 91000},
                DeployStatus.SUCCESS,
                "https://web-abc.vercel.app",
            ),
            ({"readyState": "ERROR", "errorMessage": "Build failed"}, DeployStatus.FAILED, None),
            ({"readyState": "CANCELED"}, DeployStatus.FAILED, None),
        ]
        for payload, expected_status, expected_url in cases:
            with self.subTest(payload=payload):
                self.adapter._request = AsyncMock(return_value=payload)
                report = await self.adapter.get_deploy_status("vercel_dpl_1")
                self.assertEqual(report.status, expected_status)
                self.assertEqual(report.url, expected_url)
                self.adapter._request.assert_awaited_with("GET", "/v13/deployments/dpl_1")

        self.adapter._request = AsyncMock(
            return_value={"readyState": "READY", "url": "x.vercel.app", "buildingAt": 1000, "ready": 91000}
        )
        report = await self.adapter.get_deploy_status("vercel_dpl_1")
        self.assertEqual(report.build_time_seconds, 90)

    async def test_cancel_skips_terminal_deployment(self):
        self.adapter._request = AsyncMock(return_value={"readyState": "READY", "url": "x.vercel.app"})

        report = await self.adapter.cancel_deploy("vercel_dpl_1")

        self.adapter._request.assert_awaited_once_with("GET", "/v13/deployments/dpl_1")
        assert report is not None
        self.assertEqual(report.status, DeployStatus.SUCCESS)
        self.assertEqual(report.url, "https://x.vercel.app")

    async def test_cancel_of_running_deployment_returns_none(self):
        self.adapter._request = AsyncMock(side_effect=[{"readyState": "BUILDING"}, {}])

        report = await self.adapter.cancel_deploy("vercel_dpl_1")

        self.assertIsNone(report)
        self.adapter._request.assert_awaited_with("PATCH", "/v12/deployments/dpl_1/cancel")

    async def test_environment_variables_map_staging_to_preview_target(self):
        self.adapter._request = AsyncMock(
            return_value={
                "envs": [
                    {"key": "API_URL", "value": "https://preview.api", "target": ["preview"]},
                    {"key": "API_URL_PROD", "value": "https://api", "target": ["production"]},
                ]
            }
        )

        variables = await self.adapter.get_environment_variables("web", "staging")

        self.assertEqual(variables, {"API_URL": "https://preview.api"})


class NetlifyHttpTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.adapter = NetlifyAdapter("token-abc", "https://netlify.test")

    async def test_status_mapping_uses_ssl_url_and_deploy_time(self):
        self.adapter._request = AsyncMock(
            return_value={"state": "ready", "ssl_url": "https://site.netlify.app", "deploy_time": 42}
        )

        report = await self.adapter.get_deploy_status("netlify_d1")

        self.assertEqual(report.status, DeployStatus.SUCCESS)
        self.assertEqual(report.url, "https://site.netlify.app")
        self.assertEqual(report.build_time_seconds, 42)

    async def test_error_state_carries_error_message(self):
        self.adapter._request = AsyncMock(return_value={"state": "error", "error_message": "Exit 1"})

        report = await self.adapter.get_deploy_status("netlify_d1")

        self.assertEqual(report.status, DeployStatus.FAILED)
        self.assertEqual(report.error, "Exit 1")

    async def test_restore_keeps_record_ids_unique(self):
        self.adapter._request = AsyncMock(return_value={"id": "d1", "state": "ready"})

        first = await self.adapter.rollback_deploy(
            "netlify_d1", RollbackOptions(target_deployment_id="netlify_d1"), project_id="site"
        )

        self.adapter._request.assert_awaited_with("POST", "/api/v1/sites/site/deploys/d1/restore")
        self.assertTrue(first.id.startswith("netlify_d1~r"))
        self.assertEqual(first.provider_id, "d1")
        self.assertEqual(self.adapter.provider_id_from(first.id), "d1")

    async def test_staging_rollback_rebuilds_in_branch_context(self):
        self.adapter._request = AsyncMock(
            side_effect=[
                {"id": "d1", "state": "ready", "branch": "release", "commit_ref": "abc123"},
                {"id": "d2", "deploy_id": "d2"},
            ]
        )

        result = await self.adapter.rollback_deploy(
            "netlify_d1",
            RollbackOptions(target_deployment_id="netlify_d1"),
            project_id="site",
            environment="staging",
        )

        first, second = self.adapter._request.await_args_list
        self.assertEqual(first.args, ("GET", "/api/v1/deploys/d1"))
        self.assertEqual(second.args, ("POST", "/api/v1/sites/site/builds"))
        self.assertEqual(
            second.kwargs["payload"],
            {"context": "branch-deploy", "clear_cache": False, "branch": "release", "commit_ref": "abc123"},
        )
        self.assertEqual(result.id, "netlify_d2")

    async def test_production_rollback_restores_in_place(self):
        self.adapter._request = AsyncMock(return_value={"id": "d1", "state": "ready"})

        await self.adapter.rollback_deploy(
            "netlify_d1",
            RollbackOptions(target_deployment_id="netlify_d1"),
            project_id="site",
            environment="production",
        )

        self.adapter._request.assert_awaited_once_with("POST", "/api/v1/sites/site/deploys/d1/restore")

    async def test_logs_come_from_summary_messages(self):
        self.adapter._request = AsyncMock(
            return_value={
                "state": "ready",
                "created_at": "2024-05-01T10:00:00Z",
                "summary": {"messages": [{"type": "warning", "title": "Large bundle"}]},
            }
        )

        logs = await self.adapter.get_deploy_logs("netlify_d1")

        self.assertEqual(len(logs), 2)
        self.assertEqual(logs[1].level, "warn")
        self.assertEqual(logs[1].message, "Large bundle")


class RegistryTest(unittest.TestCase):
    def test_factory_registers_enabled_providers(self):
        settings = Settings.model_validate({"DEPLOY_ENABLED_PROVIDERS": "netlify, vercel", "DEPLOY_DRY_RUN": True})

        registry = build_adapter_registry(settings)

        self.assertEqual(registry.names(), ["netlify", "vercel"])
        self.assertTrue(registry.get(Provider.VERCEL).dry_run)
        self.assertIn("netlify", registry)

    def test_unknown_provider_raises(self):
        registry = AdapterRegistry([VercelAdapter(dry_run=True)])

        with self.assertRaises(UnsupportedProviderError) as ctx:
            registry.get("heroku")
        self.assertEqual(ctx.exception.details["supported"], ["vercel"])

    def test_unknown_provider_in_settings_raises(self):
        settings = Settings.model_validate({"DEPLOY_ENABLED_PROVIDERS": "vercel,render"})

        with self.assertRaises(UnsupportedProviderError):
            build_adapter_registry(settings)


if __name__ == "__main__":
    unittest.main()
