"""
Push Event Model
================
Pydantic model for the inbound source-control push that triggers a run.

Accepts either a GitHub-style payload (``ref`` = ``refs/heads/<branch>``)
or a plain ``branch`` field. Tag pushes keep their full ref so that no
branch rule can match them.
"""
from typing import Optional
from pydantic import BaseModel, model_validator

_BRANCH_PREFIX = "refs/heads/"
_ZERO_SHA = "0" * 40


class PushEvent(BaseModel):
    ref: str = ""
    branch: str = ""
    after: str = ""
    repository: str = ""
    pusher: Optional[str] = None
    deleted: bool = False

    @model_validator(mode="after")
    def derive_branch(self) -> "PushEvent":
        if not self.branch and self.ref.startswith(_BRANCH_PREFIX):
            self.branch = self.ref[len(_BRANCH_PREFIX):]
        if not self.ref and self.branch:
            self.ref = _BRANCH_PREFIX + self.branch
        return self

    @property
    def is_branch_push(self) -> bool:
        """True for a push that updates (not deletes) a branch."""
        return (
            bool(self.branch)
            and self.ref.startswith(_BRANCH_PREFIX)
            and not self.deleted
            and self.after != _ZERO_SHA
        )
