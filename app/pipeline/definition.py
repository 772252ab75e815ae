"""
Pipeline Definition Loader
==========================
Reads a declarative YAML pipeline and turns it into an ordered tuple of
Stages bound to the action catalog.

Stage order, branch-gating breadth and retry/timeout settings are all
configuration. Example::

    name: default
    branch_sets:
      delivery: [main, "feature/*", "release/*"]
      production: [main, "release/*"]
    stages:
      - name: unit-tests
        branches: delivery
        actions:
          - action: run_unit_tests
            timeout: 1800
        post: archive_unit_reports
      - name: promote
        branches: production
        require_success: true
        actions:
          - action: registry_login
            params: {target: production}
            attempts: 3

``branches`` is either the name of a branch set or an inline list of glob
patterns; omitted means every branch.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import yaml

from app.core.errors import PipelineDefinitionError
from app.pipeline.actions import ActionCatalog
from app.pipeline.conditions import RunCondition
from app.pipeline.guarded_action import GuardedAction
from app.pipeline.sequencer import validate_order
from app.pipeline.stage import Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    stages: tuple[Stage, ...]

    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]


def _branches(raw: Any, branch_sets: dict, stage_name: str) -> Optional[tuple[str, ...]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        if raw not in branch_sets:
            raise PipelineDefinitionError(f"Stage '{stage_name}': unknown branch set '{raw}'")
        raw = branch_sets[raw]
    if not isinstance(raw, list) or not all(isinstance(p, str) for p in raw):
        raise PipelineDefinitionError(f"Stage '{stage_name}': branches must be a list of patterns")
    return tuple(raw)


def _action(raw: Any, catalog: ActionCatalog, stage_name: str) -> GuardedAction:
    if isinstance(raw, str):
        raw = {"action": raw}
    if not isinstance(raw, dict) or "action" not in raw:
        raise PipelineDefinitionError(f"Stage '{stage_name}': each action needs an 'action' key")

    unknown = set(raw) - {"action", "params", "attempts", "timeout", "label"}
    if unknown:
        raise PipelineDefinitionError(
            f"Stage '{stage_name}': unknown action keys {sorted(unknown)}"
        )
    attempts = raw.get("attempts", 1)
    if not isinstance(attempts, int) or attempts < 1:
        raise PipelineDefinitionError(f"Stage '{stage_name}': attempts must be an integer >= 1")
    timeout = raw.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise PipelineDefinitionError(f"Stage '{stage_name}': timeout must be a positive number")

    return catalog.bind(
        raw["action"],
        params=raw.get("params"),
        attempts=attempts,
        timeout=timeout,
        label=raw.get("label", ""),
    )


def parse_definition(data: Any, catalog: ActionCatalog) -> PipelineDefinition:
    if not isinstance(data, dict) or not isinstance(data.get("stages"), list):
        raise PipelineDefinitionError("Pipeline definition needs a 'stages' list")

    branch_sets = data.get("branch_sets") or {}
    stages = []
    for position, raw in enumerate(data["stages"], start=1):
        if not isinstance(raw, dict) or not raw.get("name"):
            raise PipelineDefinitionError(f"Stage #{position} has no name")
        name = raw["name"]
        actions = raw.get("actions") or []
        if not actions:
            raise PipelineDefinitionError(f"Stage '{name}' has no actions")

        condition = RunCondition(
            branches=_branches(raw.get("branches"), branch_sets, name),
            require_success=bool(raw.get("require_success", False)),
        )
        post = raw.get("post")
        stages.append(Stage(
            name=name,
            position=position,
            condition=condition,
            actions=tuple(_action(a, catalog, name) for a in actions),
            post_action=_action(post, catalog, name) if post else None,
        ))

    stages = tuple(stages)
    validate_order(stages)
    return PipelineDefinition(name=str(data.get("name", "pipeline")), stages=stages)


def load_definition(path: str, catalog: ActionCatalog) -> PipelineDefinition:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PipelineDefinitionError(f"Cannot read pipeline definition {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(f"Invalid YAML in {path}: {e}") from e

    definition = parse_definition(data, catalog)
    logger.info(
        "Loaded pipeline '%s' from %s: %s",
        definition.name, path, " -> ".join(definition.stage_names()),
    )
    return definition
