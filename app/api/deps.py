"""
Shared API dependencies.

The orchestrator is built lazily on first use so importing the app (for
tests, for ``uvicorn --reload``) never touches Docker or the definition file.
"""
from typing import Optional

from app.agents.orchestrator import Orchestrator, build_orchestrator

_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator
