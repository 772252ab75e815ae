"""
Stage Sequencer
===============
Runs stages in declared order for one run.

Per stage:
    1. Evaluate the run-condition against the branch and the run's current
       result. False → the stage is recorded as skipped; skipping is not a
       failure and does not touch the result.
    2. Await the body's actions front to back.
    3. Run the post-action, if any, whatever the body did. Its failure is
       recorded on the outcome and logged, never escalated.
    4. On body failure set the result to ``failure`` and stop. Completed
       stages are not rolled back.

When every stage has been run or skipped the result becomes ``success``.
The sequencer never finalizes; the orchestrator does that.
"""
import time
import logging
from typing import Optional, Sequence

from app.core.constants import (
    PENDING, SUCCESS, FAILURE, RUNNING,
    STAGE_SKIPPED, STAGE_PASSED, STAGE_FAILED,
)
from app.core.errors import StageFailure, PipelineDefinitionError
from app.models.stage_outcome import StageOutcome
from app.pipeline.guarded_action import GuardedActionRunner
from app.pipeline.stage import Stage

logger = logging.getLogger(__name__)


def validate_order(stages: Sequence[Stage]) -> None:
    """Stage positions must be strictly increasing and names unique."""
    names = [s.name for s in stages]
    if len(set(names)) != len(names):
        raise PipelineDefinitionError(f"Duplicate stage names: {names}")
    positions = [s.position for s in stages]
    if positions != sorted(set(positions)):
        raise PipelineDefinitionError(f"Stage positions are not strictly increasing: {positions}")


class StageSequencer:

    def __init__(self, runner: Optional[GuardedActionRunner] = None) -> None:
        self.runner = runner or GuardedActionRunner()

    async def run(self, stages: Sequence[Stage], context) -> str:
        """Execute ``stages`` against ``context`` and return the run result."""
        validate_order(stages)
        run = context.run
        if run.state == PENDING:
            run.transition(RUNNING)

        for stage in stages:
            if not stage.should_run(context.branch, context.prior_result):
                logger.info(
                    "[run #%s] Skipping stage '%s' (condition: %s, branch=%s, result=%s)",
                    run.run_id, stage.name, stage.condition.describe(),
                    context.branch, context.prior_result,
                )
                run.stages.append(StageOutcome(
                    name=stage.name, position=stage.position, status=STAGE_SKIPPED,
                ))
                continue

            outcome = await self._run_stage(stage, context)
            run.stages.append(outcome)

            if outcome.status == STAGE_FAILED:
                context.prior_result = FAILURE
                logger.error(
                    "[run #%s] Stage '%s' failed, remaining stages will not run",
                    run.run_id, stage.name,
                )
                break

        if context.prior_result == PENDING:
            context.prior_result = SUCCESS
        run.transition(context.prior_result)
        return context.prior_result

    async def _run_stage(self, stage: Stage, context) -> StageOutcome:
        run_id = context.run.run_id
        logger.info("[run #%s] Stage %d: %s started", run_id, stage.position, stage.name)
        context.current_stage = stage.name
        start = time.monotonic()
        outcome = StageOutcome(name=stage.name, position=stage.position, status=STAGE_PASSED)

        try:
            for action in stage.actions:
                result = await self.runner.execute(action, context)
                if not result.success:
                    failure = StageFailure(stage.name, result.to_failure())
                    outcome.status = STAGE_FAILED
                    outcome.failed_action = action.name
                    outcome.error = str(failure)
                    break

            if stage.post_action is not None:
                post = await self.runner.execute(stage.post_action, context)
                if not post.success:
                    outcome.post_action_error = str(post.to_failure())
                    logger.warning(
                        "[run #%s] Post-action '%s' of stage '%s' failed (ignored): %s",
                        run_id, stage.post_action.name, stage.name, outcome.post_action_error,
                    )
        finally:
            context.current_stage = ""

        outcome.duration_seconds = round(time.monotonic() - start, 3)
        logger.info(
            "[run #%s] Stage %s: %s in %.2fs",
            run_id, stage.name, outcome.status, outcome.duration_seconds,
        )
        return outcome
