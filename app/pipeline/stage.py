"""
Stage
=====
A named, conditionally executed unit of pipeline work.

Stages are built once from the pipeline definition and shared by every run;
they hold no per-run state.
"""
from dataclasses import dataclass
from typing import Optional

from app.pipeline.conditions import RunCondition, condition_met
from app.pipeline.guarded_action import GuardedAction


@dataclass(frozen=True)
class Stage:
    name: str
    position: int
    condition: RunCondition
    actions: tuple[GuardedAction, ...]
    post_action: Optional[GuardedAction] = None

    def should_run(self, branch: str, prior_result: str) -> bool:
        return condition_met(self.condition, branch, prior_result)
