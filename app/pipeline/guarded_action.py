"""
Guarded Action Runner
=====================
Wraps a single external call with an optional timeout and bounded retry.

Timeouts:
    Each attempt is bounded by ``asyncio.wait_for``. Blocking collaborators
    (Docker SDK, git subprocesses) run in a worker thread, so when an
    attempt overruns the wrapper reports failure while the underlying call
    may still complete on its own. Collaborators must tolerate this.

Retry:
    ``attempts`` is the total number of tries. Retry is immediate unless a
    fixed ``retry_delay`` is configured; there is no backoff. Only actions
    that are safe to repeat (registry login, image push, promotion) may
    declare ``attempts > 1``.

A MissingArtifactTag is a precondition failure and is never retried.
"""
import time
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.core.config import DEFAULT_ACTION_TIMEOUT, DEFAULT_RETRY_DELAY
from app.core.errors import ActionFailure, MissingArtifactTag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardedAction:
    """
    One external call owned by exactly one stage.

    Fields
    ------
    name : str
        Label used in logs and stage outcomes.
    fn : Callable[[RunContext], Any]
        Async or blocking callable receiving the run context.
    attempts : int
        Total tries (>= 1).
    timeout : float | None
        Per-attempt bound in seconds. None or 0 disables it.
    repeatable : bool
        Whether the call is safe to repeat. Non-repeatable actions are
        always attempted once.
    """
    name: str
    fn: Callable[..., Any]
    attempts: int = 1
    timeout: Optional[float] = None
    repeatable: bool = True

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"{self.name}: attempts must be >= 1")
        if not self.repeatable and self.attempts > 1:
            raise ValueError(f"{self.name}: action is not safe to repeat")


@dataclass
class ActionResult:
    action: str
    success: bool
    attempts_used: int
    timed_out: bool = False
    value: Any = None
    error: Optional[Exception] = None
    duration_seconds: float = 0.0

    def to_failure(self) -> ActionFailure:
        if isinstance(self.error, ActionFailure):
            return self.error
        reason = "timed out" if self.timed_out else f"{type(self.error).__name__}: {self.error}"
        return ActionFailure(self.action, reason, self.attempts_used)


class GuardedActionRunner:
    """Executes GuardedActions, converting every failure into an ActionResult."""

    def __init__(
        self,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        default_timeout: float = DEFAULT_ACTION_TIMEOUT,
    ) -> None:
        self.retry_delay = retry_delay
        self.default_timeout = default_timeout

    async def _call_once(self, action: GuardedAction, context, timeout: Optional[float]) -> Any:
        if inspect.iscoroutinefunction(action.fn):
            pending = action.fn(context)
        else:
            pending = asyncio.to_thread(action.fn, context)
        if timeout:
            return await asyncio.wait_for(pending, timeout=timeout)
        return await pending

    async def execute(
        self,
        action: GuardedAction,
        context=None,
        attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """
        Run ``action`` up to ``attempts`` times, each bounded by ``timeout``.

        Arguments default to the values declared on the action, then to the
        runner's defaults. Never raises for action errors.
        """
        attempts = attempts or action.attempts
        if timeout is None:
            timeout = action.timeout if action.timeout is not None else self.default_timeout
        run_label = getattr(getattr(context, "run", None), "run_id", "-")
        start = time.monotonic()

        result = ActionResult(action=action.name, success=False, attempts_used=0)
        for attempt in range(1, attempts + 1):
            result.attempts_used = attempt
            result.timed_out = False
            try:
                result.value = await self._call_once(action, context, timeout)
                result.success = True
                result.error = None
                logger.info(
                    "[run #%s] %s succeeded (attempt %d/%d)",
                    run_label, action.name, attempt, attempts,
                )
                break
            except asyncio.TimeoutError as exc:
                result.timed_out = True
                result.error = exc
                logger.warning(
                    "[run #%s] %s timed out after %ss (attempt %d/%d)",
                    run_label, action.name, timeout, attempt, attempts,
                )
            except MissingArtifactTag as exc:
                result.error = exc
                logger.error("[run #%s] %s precondition failed: %s", run_label, action.name, exc)
                break
            except Exception as exc:
                result.error = exc
                logger.warning(
                    "[run #%s] %s failed (attempt %d/%d): %s",
                    run_label, action.name, attempt, attempts, exc,
                )

            if attempt < attempts and self.retry_delay:
                await asyncio.sleep(self.retry_delay)

        result.duration_seconds = round(time.monotonic() - start, 3)
        if not result.success:
            logger.error(
                "[run #%s] %s gave up after %d attempt(s)",
                run_label, action.name, result.attempts_used,
            )
        return result
