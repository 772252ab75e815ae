"""
Orchestrator Flow Tests
=======================
Full runs of the default pipeline definition with every external
collaborator mocked: trigger → resolve → stages → finalize.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from app.agents.e2e_runner import E2EResult
from app.agents.git_agent import DeployUpdate
from app.agents.orchestrator import Orchestrator
from app.core.constants import FINALIZED
from app.executor.build_executor import ExecutionResult
from app.models.push_event import PushEvent
from app.pipeline.actions import ActionCatalog
from app.pipeline.definition import load_definition
from app.pipeline.finalizer import Finalizer
from app.pipeline.guarded_action import GuardedActionRunner
from app.pipeline.sequencer import StageSequencer
from app.pipeline.variables import SecretResolver
from app.state.run_registry import RunRegistry

from pathlib import Path

DEFAULT_DEFINITION = str(Path(__file__).resolve().parent.parent / "pipelines" / "default.yml")

ENV = {
    "AWS_ACCOUNT_ID": "123456789012",
    "AWS_REGION": "eu-west-1",
    "REGISTRY_USERNAME": "AWS",
    "REGISTRY_PASSWORD": "registry-pass-xyz",
    "GIT_TOKEN": "git-token-xyz",
}


class Harness:
    """Mocked collaborators plus an orchestrator wired to them."""

    def __init__(self, tmp_path, environ=None, unit_exit_code=0, e2e_status="passed"):
        self.builder = MagicMock()
        self.registry = MagicMock()
        self.registry.tag.side_effect = lambda src, addr, repo, tag: f"{addr}/{repo}:{tag}"
        self.registry.push.side_effect = lambda addr, repo, tag: f"{addr}/{repo}:{tag}"
        self.registry.pull.side_effect = lambda addr, repo, tag: f"{addr}/{repo}:{tag}"

        self.e2e_runner = MagicMock()
        self.e2e_runner.run_suite = AsyncMock(return_value=E2EResult(status=e2e_status, runner_run_id="r-1"))

        self.version_resolver = MagicMock()
        self.version_resolver.resolve.return_value = "1.4.0"

        self.git_agent = MagicMock()
        self.git_agent.clone.side_effect = lambda dest, token="": dest
        self.git_agent.update.return_value = DeployUpdate(changed=True, commit_sha="abc")

        self.executor = MagicMock(return_value=ExecutionResult(exit_code=unit_exit_code, full_log="tests ran\n"))

        self.notifier = MagicMock()
        self.notifier.send = AsyncMock()

        catalog = ActionCatalog(
            builder=self.builder,
            registry=self.registry,
            e2e_runner=self.e2e_runner,
            version_resolver=self.version_resolver,
            git_agent=self.git_agent,
            executor=self.executor,
        )
        definition = load_definition(DEFAULT_DEFINITION, catalog)
        self.orchestrator = Orchestrator(
            stages=definition.stages,
            finalizer=Finalizer(
                builder=self.builder, notifier=self.notifier,
                recipient="ops@example.com", base_url="https://ci.example.com",
            ),
            resolver=SecretResolver(environ=ENV if environ is None else environ, secrets_dir=""),
            sequencer=StageSequencer(GuardedActionRunner(retry_delay=0)),
            registry=RunRegistry(start_at=41),
            workspace_root=str(tmp_path / "workspaces"),
        )

    def trigger(self, branch):
        event = PushEvent(ref=f"refs/heads/{branch}", after="a" * 40, repository="https://git.example.com/app.git")
        with patch("app.pipeline.actions.clone_repository") as clone, \
             patch("app.pipeline.actions.checkout_commit"):
            clone.side_effect = lambda url, dest, token="", branch="": dest
            return asyncio.run(self.orchestrator.trigger(event))

    def sent(self):
        assert self.notifier.send.await_count == 1
        return self.notifier.send.await_args.args[0]


def _statuses(run):
    return {s.name: s.status for s in run.stages}


def test_main_branch_runs_every_stage_and_deploys(tmp_path):
    h = Harness(tmp_path)
    run = h.trigger("main")

    assert run.run_id == 41
    assert run.result == "success"
    assert run.state == FINALIZED
    assert [s.name for s in run.stages] == [
        "checkout", "unit-tests", "build", "push-staging",
        "e2e-tests", "version-tag", "promote", "deploy",
    ]
    assert set(_statuses(run).values()) == {"passed"}

    h.git_agent.update.assert_called_once()
    _, version, build_number = h.git_agent.update.call_args.args
    assert (version, build_number) == ("1.4.0", "41")

    staging = "123456789012.dkr.ecr.eu-west-1.amazonaws.com/platform/staging"
    production = "123456789012.dkr.ecr.eu-west-1.amazonaws.com/platform/production"
    suite = h.e2e_runner.run_suite.await_args.kwargs
    assert suite["backend_image"] == f"{staging}/backend:41"
    pushed = [c.args for c in h.registry.push.call_args_list]
    assert (production, "worker", "1.4.0") in pushed
    assert (production, "worker", "latest") in pushed

    note = h.sent()
    assert note.status == "success"
    assert note.link == "https://ci.example.com/runs/41"
    assert run.notification_sent


def test_feature_branch_stops_after_staging(tmp_path):
    h = Harness(tmp_path)
    run = h.trigger("feature/login")

    assert run.result == "success"
    assert _statuses(run) == {
        "checkout": "passed",
        "unit-tests": "passed",
        "build": "passed",
        "push-staging": "passed",
        "e2e-tests": "passed",
        "version-tag": "skipped",
        "promote": "skipped",
        "deploy": "skipped",
    }
    h.version_resolver.resolve.assert_not_called()
    h.git_agent.update.assert_not_called()
    assert h.sent().status == "success"


def test_unmatched_branch_skips_everything(tmp_path):
    h = Harness(tmp_path)
    run = h.trigger("experiment")

    assert set(_statuses(run).values()) == {"skipped"}
    assert run.result == "success"
    assert run.state == FINALIZED
    h.executor.assert_not_called()
    assert h.sent().status == "success"


def test_unit_test_failure_stops_the_run(tmp_path):
    h = Harness(tmp_path, unit_exit_code=1)
    run = h.trigger("main")

    assert run.result == "failure"
    assert run.state == FINALIZED
    assert [(s.name, s.status) for s in run.stages] == [
        ("checkout", "passed"),
        ("unit-tests", "failed"),
    ]
    assert run.stages[1].failed_action == "run_unit_tests"
    # archive post-action still ran and found nothing to archive
    assert run.stages[1].post_action_error is None
    h.builder.build.assert_not_called()
    h.git_agent.update.assert_not_called()
    assert h.sent().status == "failure"


def test_e2e_failure_blocks_promotion(tmp_path):
    h = Harness(tmp_path, e2e_status="failed")
    run = h.trigger("release/2.0")

    assert run.result == "failure"
    assert _statuses(run)["e2e-tests"] == "failed"
    assert "promote" not in _statuses(run)
    h.registry.pull.assert_not_called()
    # e2e suite is triggered once; it is not repeatable
    assert h.e2e_runner.run_suite.await_count == 1
    assert h.sent().status == "failure"


def test_missing_secret_fails_before_any_stage(tmp_path):
    env = {k: v for k, v in ENV.items() if k != "GIT_TOKEN"}
    h = Harness(tmp_path, environ=env)
    run = h.trigger("main")

    assert run.result == "failure"
    assert run.state == FINALIZED
    assert run.stages == []
    assert "GIT_TOKEN" in run.error
    h.executor.assert_not_called()
    assert h.sent().status == "failure"


def test_workspace_released_and_images_removed(tmp_path):
    h = Harness(tmp_path)
    h.trigger("feature/x")

    removed = [c.args[0] for c in h.builder.remove.call_args_list]
    assert "backend:41" in removed
    h.builder.prune.assert_called_once()
    assert list((tmp_path / "workspaces").iterdir()) == []


def test_notification_failure_does_not_change_result(tmp_path):
    h = Harness(tmp_path)
    h.notifier.send.side_effect = RuntimeError("relay down")
    run = h.trigger("feature/x")

    assert run.result == "success"
    assert run.state == FINALIZED
    assert not run.notification_sent


def test_concurrent_runs_get_distinct_build_numbers(tmp_path):
    h = Harness(tmp_path)

    async def run_test():
        events = [PushEvent(branch=b) for b in ("feature/a", "feature/b")]
        with patch("app.pipeline.actions.clone_repository") as clone, \
             patch("app.pipeline.actions.checkout_commit"):
            clone.side_effect = lambda url, dest, token="", branch="": dest
            return await asyncio.gather(*(h.orchestrator.trigger(e) for e in events))

    with patch("app.core.config.SOURCE_REPO_URL", "https://git.example.com/app.git"):
        runs = asyncio.run(run_test())

    assert sorted(r.run_id for r in runs) == [41, 42]
    assert all(r.result == "success" for r in runs)
    assert h.notifier.send.await_count == 2
