"""
Stage Outcome Model
Pydantic model recording what happened to one stage in one run.
"""
from typing import Optional
from pydantic import BaseModel


class StageOutcome(BaseModel):
    name: str
    position: int
    status: str                         # skipped / passed / failed
    duration_seconds: float = 0.0
    failed_action: Optional[str] = None
    error: Optional[str] = None
    post_action_error: Optional[str] = None
