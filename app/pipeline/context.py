"""
Run Context
===========
Explicit per-run state passed by reference to every stage and action.

Sections:
    variables   — frozen VariableSet, resolved once before stage 1
    tags        — run-scoped computed values (build number, semantic
                  version); append-only, each key has a single writer
    resources   — local things the finalizer must clean up (built image
                  tags, cloned repositories, the workspace itself)

No stage reads from another run's context; the only state shared between
runs lives in the external collaborators.
"""
import os
import time
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.core.constants import BUILD_NUMBER, SEMANTIC_VERSION, VERSION_TAG
from app.core.errors import MissingArtifactTag, PipelineError
from app.models.run import Run
from app.pipeline.variables import VariableSet

logger = logging.getLogger(__name__)

# Which stage may write which tag. Keys not listed here may be written by
# any single stage, once.
DEFAULT_TAG_OWNERS = {
    SEMANTIC_VERSION: VERSION_TAG,
}


class TagWriteError(PipelineError):
    pass


class RunTags:
    """Append-only, single-writer store for values computed mid-run."""

    def __init__(self, owners: Optional[dict] = None) -> None:
        self._values: dict[str, str] = {}
        self._writers: dict[str, str] = {}
        self._owners = dict(DEFAULT_TAG_OWNERS if owners is None else owners)

    def write(self, key: str, value: str, writer: str) -> None:
        owner = self._owners.get(key)
        if owner is not None and owner != writer:
            raise TagWriteError(f"'{writer}' may not write tag '{key}' (owned by '{owner}')")
        if key in self._values:
            raise TagWriteError(
                f"tag '{key}' already written by '{self._writers[key]}'"
            )
        self._values[key] = value
        self._writers[key] = writer

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def require(self, key: str) -> str:
        value = self._values.get(key)
        if value is None:
            raise MissingArtifactTag(key)
        return value

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def as_dict(self) -> dict:
        return dict(self._values)


@dataclass
class RunContext:
    run: Run
    variables: VariableSet
    workspace_path: str
    tags: RunTags = field(default_factory=RunTags)
    current_stage: str = ""
    built_images: list[str] = field(default_factory=list)
    cloned_paths: list[str] = field(default_factory=list)
    started_monotonic: float = field(default_factory=time.monotonic)
    finalizing: bool = False
    finalizer_errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if BUILD_NUMBER not in self.tags:
            self.tags.write(BUILD_NUMBER, str(self.run.run_id), writer="trigger")

    @property
    def branch(self) -> str:
        return self.run.branch

    @property
    def prior_result(self) -> str:
        return self.run.result

    @prior_result.setter
    def prior_result(self, value: str) -> None:
        self.run.result = value

    @property
    def build_number(self) -> str:
        return self.tags.require(BUILD_NUMBER)

    @property
    def semantic_version(self) -> str:
        """Raises MissingArtifactTag until the version-tag stage has run."""
        return self.tags.require(SEMANTIC_VERSION)

    def publish(self, key: str, value: str) -> None:
        """Write a run tag on behalf of the stage currently executing."""
        self.tags.write(key, value, writer=self.current_stage)
        logger.info("[run #%s] %s = %s (by %s)", self.run.run_id, key, value, self.current_stage)

    @property
    def artifacts_dir(self) -> str:
        path = os.path.join(self.workspace_path, "artifacts")
        os.makedirs(path, exist_ok=True)
        return path

    @property
    def source_dir(self) -> str:
        return os.path.join(self.workspace_path, "source")

    def elapsed(self) -> float:
        return time.monotonic() - self.started_monotonic
