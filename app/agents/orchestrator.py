"""
Orchestrator Agent
==================
Entry point of a pipeline run: trigger → resolve → sequence → finalize.

Flow per run:
    1. Allocate a build number and an isolated workspace.
    2. Resolve every required variable and secret into a frozen
       VariableSet. Any miss fails the run before stage 1.
    3. Hand the stages and the RunContext to the StageSequencer.
    4. Always finalize, from exactly one place (the ``finally`` below),
       whichever way steps 1–3 ended.

Concurrent runs are independent asyncio tasks; they share only the run
registry and the external collaborators.
"""
import logging
from typing import Optional, Sequence

from app.core import config
from app.core.constants import FAILURE
from app.core.errors import SecretResolutionFailure
from app.models.push_event import PushEvent
from app.models.run import Run
from app.pipeline.actions import ActionCatalog
from app.pipeline.context import RunContext
from app.pipeline.definition import load_definition
from app.pipeline.finalizer import Finalizer
from app.pipeline.guarded_action import GuardedActionRunner
from app.pipeline.sequencer import StageSequencer
from app.pipeline.stage import Stage
from app.pipeline.variables import SecretResolver, VariableSet
from app.services.notifier import Notifier
from app.services.workspace_service import create_workspace
from app.state.run_registry import RunRegistry
from app.utils.logging_config import secret_filter

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs a fixed stage sequence for each push event.

    Collaborators are injected so tests can replace any of them.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        finalizer: Finalizer,
        resolver: Optional[SecretResolver] = None,
        sequencer: Optional[StageSequencer] = None,
        registry: Optional[RunRegistry] = None,
        required_secrets: Sequence[str] = tuple(config.REQUIRED_SECRETS),
        required_variables: Sequence[str] = tuple(config.REQUIRED_VARIABLES),
        workspace_root: str = config.WORKSPACE_ROOT,
    ) -> None:
        self.stages = tuple(stages)
        self.finalizer = finalizer
        self.resolver = resolver or SecretResolver()
        self.sequencer = sequencer or StageSequencer()
        self.registry = registry or RunRegistry(start_at=config.BUILD_NUMBER_START)
        self.required_secrets = tuple(required_secrets)
        self.required_variables = tuple(required_variables)
        self.workspace_root = workspace_root

    def create_run(self, event: PushEvent) -> Run:
        run = self.registry.create(event)
        logger.info(
            "[run #%s] Triggered by push to %s (%s)",
            run.run_id, run.branch, event.after[:12] or "no sha",
        )
        return run

    def _resolve(self, run: Run) -> VariableSet:
        metadata = {
            "BUILD_NUMBER": run.run_id,
            "BRANCH_NAME": run.branch,
            "GIT_COMMIT": run.trigger_event.after,
        }
        variables = self.resolver.resolve(
            list(self.required_variables) + list(self.required_secrets),
            metadata=metadata,
            secret_names=self.required_secrets,
        )
        secret_filter.register(variables.secret_values())
        return variables

    async def execute(self, run: Run) -> Run:
        """Run the pipeline for an already created run. Never raises."""
        workspace = ""
        variables = VariableSet({})
        context: Optional[RunContext] = None

        try:
            workspace = create_workspace(run.run_id, self.workspace_root)
            variables = self._resolve(run)
            context = RunContext(run=run, variables=variables, workspace_path=workspace)
            result = await self.sequencer.run(self.stages, context)
            logger.info("[run #%s] Stage sequence finished: %s", run.run_id, result)

        except SecretResolutionFailure as exc:
            logger.error("[run #%s] %s, no stage will run", run.run_id, exc)
            run.error = str(exc)
            run.result = FAILURE

        except Exception as exc:
            logger.error("[run #%s] Orchestrator error: %s", run.run_id, exc, exc_info=True)
            run.error = f"{type(exc).__name__}: {exc}"
            run.result = FAILURE

        finally:
            if context is None:
                context = RunContext(run=run, variables=variables, workspace_path=workspace)
            await self.finalizer.finalize(context)

        return run

    async def trigger(self, event: PushEvent) -> Run:
        """Create a run for ``event`` and execute it to completion."""
        run = self.create_run(event)
        return await self.execute(run)


def build_orchestrator(
    definition_path: str = config.PIPELINE_DEFINITION,
    catalog: Optional[ActionCatalog] = None,
) -> Orchestrator:
    """Wire the production collaborators from configuration."""
    catalog = catalog or ActionCatalog()
    definition = load_definition(definition_path, catalog)
    finalizer = Finalizer(
        builder=catalog.builder,
        notifier=Notifier(config.NOTIFY_WEBHOOK_URL),
    )
    return Orchestrator(
        stages=definition.stages,
        finalizer=finalizer,
        sequencer=StageSequencer(GuardedActionRunner()),
    )
