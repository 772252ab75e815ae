"""
Pipeline Errors
===============
Exception taxonomy for a pipeline run.

    SecretResolutionFailure  — fatal, raised before any stage starts
    ActionFailure            — a guarded action exhausted its attempts or timed out
    MissingArtifactTag       — a stage read a run tag nobody has written yet
    StageFailure             — a stage body failed; the sequence stops
    FinalizerStepFailure     — a cleanup/notify step failed; logged, never escalated
    PipelineDefinitionError  — the YAML pipeline definition is invalid
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class SecretResolutionFailure(PipelineError):
    def __init__(self, missing: list[str]) -> None:
        self.missing = sorted(missing)
        super().__init__(f"Unresolved secrets: {', '.join(self.missing)}")


class ActionFailure(PipelineError):
    def __init__(self, action: str, reason: str, attempts: int = 1) -> None:
        self.action = action
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Action '{action}' failed after {attempts} attempt(s): {reason}")


class MissingArtifactTag(ActionFailure):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(action=f"read:{tag}", reason=f"tag '{tag}' has not been computed")


class StageFailure(PipelineError):
    def __init__(self, stage: str, cause: Optional[Exception] = None) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")


class FinalizerStepFailure(PipelineError):
    def __init__(self, step: str, cause: Exception) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"Finalizer step '{step}' failed: {cause}")


class PipelineDefinitionError(PipelineError):
    """Raised when a pipeline definition cannot be loaded."""
