"""
Guarded Action Runner Tests
===========================
Retry counting, timeouts, precondition failures and blocking callables.
"""
import time
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from app.core.errors import ActionFailure, MissingArtifactTag
from app.pipeline.guarded_action import GuardedAction, GuardedActionRunner


def _flaky(fail_times: int):
    """Async callable failing its first ``fail_times`` calls."""
    calls = {"n": 0}

    async def fn(ctx):
        calls["n"] += 1
        if calls["n"] <= fail_times:
            raise RuntimeError(f"boom {calls['n']}")
        return "ok"

    return fn, calls


@pytest.mark.parametrize("k,attempts,expected", [
    (1, 1, True),
    (3, 3, True),
    (3, 5, True),
    (3, 2, False),
    (2, 1, False),
])
def test_retry_succeeds_only_within_attempts(k, attempts, expected):
    fn, calls = _flaky(k - 1)
    action = GuardedAction(name="push", fn=fn, attempts=attempts)
    result = asyncio.run(GuardedActionRunner().execute(action))

    assert result.success is expected
    assert calls["n"] == (k if expected else attempts)
    assert result.attempts_used == calls["n"]


def test_execute_arguments_override_declared_attempts():
    fn, calls = _flaky(2)
    action = GuardedAction(name="login", fn=fn, attempts=1)
    result = asyncio.run(GuardedActionRunner().execute(action, attempts=3))
    assert result.success is True
    assert calls["n"] == 3


def test_timeout_reports_failure_even_if_action_would_succeed():
    async def slow(ctx):
        await asyncio.sleep(5)
        return "eventually"

    action = GuardedAction(name="slow", fn=slow, timeout=0.05)
    result = asyncio.run(GuardedActionRunner().execute(action))

    assert result.success is False
    assert result.timed_out is True
    failure = result.to_failure()
    assert isinstance(failure, ActionFailure)
    assert "timed out" in failure.reason


def test_timeout_applies_to_blocking_callables():
    def blocking(ctx):
        time.sleep(0.5)

    action = GuardedAction(name="blocking", fn=blocking, timeout=0.05)
    result = asyncio.run(GuardedActionRunner().execute(action))
    assert result.success is False
    assert result.timed_out is True


def test_blocking_callable_receives_context():
    seen = []
    action = GuardedAction(name="sync", fn=lambda ctx: seen.append(ctx) or 42)
    result = asyncio.run(GuardedActionRunner().execute(action, context="CTX"))
    assert result.success is True
    assert result.value == 42
    assert seen == ["CTX"]


def test_missing_tag_is_not_retried():
    calls = {"n": 0}

    async def needs_version(ctx):
        calls["n"] += 1
        raise MissingArtifactTag("semantic_version")

    action = GuardedAction(name="promote", fn=needs_version, attempts=3)
    result = asyncio.run(GuardedActionRunner().execute(action))

    assert result.success is False
    assert calls["n"] == 1
    assert isinstance(result.to_failure(), MissingArtifactTag)


def test_retry_delay_is_fixed():
    fn, _ = _flaky(2)
    action = GuardedAction(name="push", fn=fn, attempts=3)
    with patch("app.pipeline.guarded_action.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = asyncio.run(GuardedActionRunner(retry_delay=2.0).execute(action))
    assert result.success is True
    assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 2.0]


def test_invalid_declarations_rejected():
    with pytest.raises(ValueError):
        GuardedAction(name="x", fn=lambda c: None, attempts=0)
    with pytest.raises(ValueError):
        GuardedAction(name="git-push", fn=lambda c: None, attempts=2, repeatable=False)
