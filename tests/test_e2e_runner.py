import json
import pytest
import asyncio
import httpx
from unittest.mock import AsyncMock, patch, MagicMock

from app.agents.e2e_runner import E2EResult, E2ETestRunner
from app.models.push_event import PushEvent
from app.models.run import Run
from app.pipeline.actions import ActionCatalog
from app.pipeline.context import RunContext
from app.pipeline.variables import VariableSet


@pytest.fixture
def runner():
    return E2ETestRunner("http://e2e.local/", token="fake", poll_timeout=300)


def _resp(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


def _run(runner):
    return runner.run_suite("reg/backend:1", "reg/frontend:1", "reg/worker:1", "ops@example.com")


def test_passes_image_refs_and_polls_until_complete(runner):
    async def run_test():
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-1"})) as mock_post, \
             patch("httpx.AsyncClient.get") as mock_get, \
             patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_get.side_effect = [
                _resp({"status": "in_progress"}),
                _resp({"status": "completed", "conclusion": "passed", "report_url": "http://r/1"}),
            ]
            result = await _run(runner)

            assert result.passed
            assert result.report_url == "http://r/1"
            payload = mock_post.call_args.kwargs["json"]
            assert payload == {
                "backendImageRef": "reg/backend:1",
                "frontendImageRef": "reg/frontend:1",
                "workerImageRef": "reg/worker:1",
                "notifyAddress": "ops@example.com",
            }
            mock_sleep.assert_called_once_with(5.0)

    asyncio.run(run_test())


def test_failed_conclusion(runner):
    async def run_test():
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-2"})), \
             patch("httpx.AsyncClient.get", return_value=_resp({"status": "completed", "conclusion": "failed"})):
            result = await _run(runner)
            assert result.status == "failed"
            assert result.timeline[-1]["status"] == "failed"

    asyncio.run(run_test())


def test_client_error_aborts_polling(runner):
    async def run_test():
        error_resp = MagicMock()
        error_resp.status_code = 404
        err = httpx.HTTPStatusError("not found", request=MagicMock(), response=error_resp)
        bad = MagicMock()
        bad.raise_for_status.side_effect = err

        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-3"})), \
             patch("httpx.AsyncClient.get", return_value=bad):
            result = await _run(runner)
            assert result.status == "runner_error"

    asyncio.run(run_test())


def test_missing_run_id(runner):
    async def run_test():
        with patch("httpx.AsyncClient.post", return_value=_resp({})):
            result = await _run(runner)
            assert result.status == "runner_error"

    asyncio.run(run_test())


def test_poll_timeout(runner):
    async def run_test():
        runner.poll_timeout = 0
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-4"})):
            result = await _run(runner)
            assert result.status == "unknown_timeout"

    asyncio.run(run_test())


def test_completed_without_conclusion_is_not_a_pass(runner):
    async def run_test():
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-5"})), \
             patch("httpx.AsyncClient.get", return_value=_resp({"status": "completed"})):
            result = await _run(runner)
            assert not result.passed
            assert result.status == "failed"

    asyncio.run(run_test())


@pytest.mark.parametrize("conclusion", ["", "skipped", "pased", None])
def test_unrecognised_conclusion_is_a_failure(runner, conclusion):
    async def run_test():
        payload = {"status": "completed", "conclusion": conclusion}
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-6"})), \
             patch("httpx.AsyncClient.get", return_value=_resp(payload)):
            result = await _run(runner)
            assert result.status == "failed"

    asyncio.run(run_test())


def test_success_conclusion_passes(runner):
    async def run_test():
        payload = {"status": "completed", "conclusion": "SUCCESS"}
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-7"})), \
             patch("httpx.AsyncClient.get", return_value=_resp(payload)):
            result = await _run(runner)
            assert result.passed

    asyncio.run(run_test())


def test_timeline_belongs_to_one_suite(runner):
    async def run_test():
        results = []
        with patch("httpx.AsyncClient.post", return_value=_resp({"id": "r-8"})), \
             patch("httpx.AsyncClient.get",
                   return_value=_resp({"status": "completed", "conclusion": "passed"})):
            for _ in range(50):
                results.append(await _run(runner))

        assert all(len(r.timeline) == 1 for r in results)
        assert not hasattr(runner, "timeline")

    asyncio.run(run_test())


def test_e2e_action_records_timeline_in_artifact(tmp_path):
    events = [{"runner_run_id": "r-9", "status": "passed", "timestamp": "t", "duration": 1.0}]
    e2e = MagicMock()
    e2e.run_suite = AsyncMock(return_value=E2EResult(status="passed", runner_run_id="r-9", timeline=events))
    catalog = ActionCatalog(
        builder=MagicMock(), registry=MagicMock(), e2e_runner=e2e,
        version_resolver=MagicMock(), git_agent=MagicMock(), executor=MagicMock(),
    )
    run = Run(run_id=3, branch="main", trigger_event=PushEvent(branch="main"))
    ctx = RunContext(
        run=run,
        variables=VariableSet({"AWS_ACCOUNT_ID": "1", "AWS_REGION": "eu-west-1"}),
        workspace_path=str(tmp_path),
    )

    asyncio.run(catalog.run_e2e_tests(ctx))

    with open(tmp_path / "artifacts" / "e2e-result.json", encoding="utf-8") as f:
        assert json.load(f)["timeline"] == events
