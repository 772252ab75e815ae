"""
Run Model
=========
Pydantic model for one execution of the pipeline.

Lifecycle:
    pending → running → success | failure → finalized

    - The orchestrator moves the run to ``running`` before the first stage.
    - The sequencer's verdict moves it to ``success`` or ``failure``.
    - The finalizer moves it to ``finalized``. No state is revisited.

``result`` is the aggregate outcome seen by run-conditions and the
notification; it only ever changes from ``pending`` to a terminal value.
"""
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field

from app.core.constants import PENDING, RUNNING, SUCCESS, FAILURE, FINALIZED
from app.models.push_event import PushEvent
from app.models.stage_outcome import StageOutcome

_TRANSITIONS = {
    PENDING: {RUNNING, FAILURE},
    RUNNING: {SUCCESS, FAILURE},
    SUCCESS: {FINALIZED},
    FAILURE: {FINALIZED},
    FINALIZED: set(),
}


class InvalidTransition(RuntimeError):
    pass


class Run(BaseModel):
    run_id: int
    branch: str
    trigger_event: PushEvent
    result: str = PENDING
    state: str = PENDING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    stages: List[StageOutcome] = []
    error: Optional[str] = None
    notification_sent: bool = False
    link: str = ""

    def transition(self, new_state: str) -> None:
        """Move to ``new_state``, rejecting anything the lifecycle forbids."""
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(f"Run #{self.run_id}: {self.state} -> {new_state}")
        self.state = new_state

    @property
    def is_finalized(self) -> bool:
        return self.state == FINALIZED
