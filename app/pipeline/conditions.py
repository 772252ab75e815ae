"""
Run Conditions
==============
Pure rule table deciding whether a stage runs.

A stage runs when:
    1. the run's branch matches one of the stage's branch patterns
       (glob syntax: ``main``, ``feature/*``, ``release/*``), and
    2. if the rule requires it, no earlier stage of the run has failed
       (``prior_result`` is ``pending`` or ``success``).

A rule with no patterns matches every branch.
"""
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Optional

from app.core.constants import PENDING, SUCCESS

_HEALTHY_RESULTS = frozenset({PENDING, SUCCESS})


@dataclass(frozen=True)
class RunCondition:
    branches: Optional[tuple[str, ...]] = None
    require_success: bool = False

    def describe(self) -> str:
        scope = "any branch" if not self.branches else " | ".join(self.branches)
        return f"{scope}{' (no prior failure)' if self.require_success else ''}"


def branch_matches(branch: str, patterns: Optional[tuple[str, ...]]) -> bool:
    if not patterns:
        return True
    return any(fnmatchcase(branch, pattern) for pattern in patterns)


def condition_met(condition: RunCondition, branch: str, prior_result: str) -> bool:
    """Evaluate ``condition`` for a branch and the run's current result."""
    if not branch_matches(branch, condition.branches):
        return False
    if condition.require_success and prior_result not in _HEALTHY_RESULTS:
        return False
    return True
