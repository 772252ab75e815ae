"""
Build Executor
==============
Runs commands inside ephemeral Docker containers and builds images with
the Docker SDK. Returns structured execution results (logs, exit code,
timing).

BOUNDARY RULES:
    - Executor ONLY observes execution; it never decides stage outcomes.
    - Executor NEVER pushes images — that is the RegistryClient's job.
    - Executor NEVER touches git.

DOCKER STRATEGY:
    - One container per command (ephemeral), destroyed after execution.
    - Run workspace mounted as a volume at /workspace.
    - Built images are tagged with the build number and recorded so the
      finalizer can remove them.
"""
import time
import logging
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import (
    BuildError,
    ContainerError,
    ImageNotFound,
    APIError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution Result
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from a single container execution.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, non-zero = failure, -1 = infrastructure error).
    full_log : str
        Full combined stdout + stderr from the container.
    log_excerpt : str
        Abbreviated log (first + last N lines) for notifications.
    execution_time_seconds : float
        Wall clock duration of the execution.
    environment_metadata : dict
        Runtime info: image used, container ID, timeout applied.
    error : str | None
        Error message if execution infrastructure failed (not test failures).
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and self.error is None


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    If the log is short enough it is returned as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    head_lines = lines[:head]
    tail_lines = lines[-tail:]
    omitted = total - head - tail

    return "\n".join(
        head_lines
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + tail_lines
    )


# ---------------------------------------------------------------------------
# Container Execution
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2
_RUN_LABELS = {"project": "delivery-pipeline", "role": "test-runner"}


def run_in_container(
    workspace_path: str,
    command: str,
    image: str,
    timeout_seconds: int = 900,
    environment: Optional[dict] = None,
    name: str = "",
    client=None,
) -> ExecutionResult:
    """
    Execute ``command`` inside an ephemeral container with the workspace
    mounted at /workspace.

    Returns
    -------
    ExecutionResult
        Always returned. On infrastructure failure exit_code is -1 and
        error is set.
    """
    result = ExecutionResult()
    start_time = time.monotonic()
    container = None

    try:
        client = client or docker.from_env()

        logger.info(
            "Starting container | image=%s | timeout=%ds | workspace=%s",
            image, timeout_seconds, workspace_path,
        )

        container = client.containers.run(
            image=image,
            command=["bash", "-c", command],
            volumes={workspace_path: {"bind": "/workspace", "mode": "rw"}},
            environment={"CI": "true", **(environment or {})},
            working_dir="/workspace",
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            name=name or f"pipeline-{int(time.time() * 1000)}",
            labels=_RUN_LABELS,
            detach=True,
        )

        wait_result = container.wait(timeout=timeout_seconds)
        result.exit_code = wait_result.get("StatusCode", -1)

        log_bytes = container.logs(stdout=True, stderr=True)
        result.full_log = log_bytes.decode("utf-8", errors="replace")

        result.environment_metadata = {
            "image": image,
            "container_id": container.short_id,
            "timeout_applied": timeout_seconds,
        }

    except ImageNotFound:
        result.error = f"Docker image '{image}' not found."
        logger.error(result.error)

    except ContainerError as e:
        result.error = f"Container execution error: {e}"
        result.exit_code = getattr(e, "exit_status", -1)
        result.full_log = str(e)
        logger.error(result.error)

    except APIError as e:
        result.error = f"Docker API error: {e}"
        logger.error(result.error)

    except Exception as e:
        # Caller must always receive a result
        result.error = f"Unexpected executor error: {type(e).__name__}: {e}"
        logger.exception(result.error)

    finally:
        if container is not None:
            try:
                container.remove(force=True)
                logger.info("Container %s destroyed", container.short_id)
            except Exception:
                logger.warning("Failed to remove container", exc_info=True)

    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)

    logger.info(
        "Execution complete | exit=%d | time=%.2fs | image=%s",
        result.exit_code, result.execution_time_seconds, image,
    )
    return result


# ---------------------------------------------------------------------------
# Image Build
# ---------------------------------------------------------------------------
class ImageBuilder:
    """Builds tagged images from the run's source tree."""

    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def build(self, context_path: str, dockerfile: str, tag: str, build_args: Optional[dict] = None) -> str:
        """
        Build one image and return its tag.

        Raises docker.errors.BuildError / APIError on failure; the guarded
        action wrapper turns those into a stage failure.
        """
        logger.info("Building %s from %s (%s)", tag, context_path, dockerfile)
        start = time.monotonic()
        try:
            image, _logs = self.client.images.build(
                path=context_path,
                dockerfile=dockerfile,
                tag=tag,
                buildargs=build_args or {},
                labels=_RUN_LABELS,
                rm=True,
            )
        except BuildError as e:
            tail = "\n".join(
                str(chunk.get("stream", "")).rstrip() for chunk in list(e.build_log)[-10:]
            )
            logger.error("Build of %s failed: %s\n%s", tag, e.msg, tail)
            raise
        logger.info("Built %s (%s) in %.2fs", tag, image.short_id, time.monotonic() - start)
        return tag

    def remove(self, tag: str) -> None:
        try:
            self.client.images.remove(image=tag, force=True)
            logger.info("Removed local image %s", tag)
        except ImageNotFound:
            logger.info("Local image %s already gone", tag)

    def prune(self) -> dict:
        """Remove stopped pipeline containers and dangling images."""
        containers = self.client.containers.prune(filters={"label": "project=delivery-pipeline"})
        images = self.client.images.prune(filters={"dangling": True})
        logger.info(
            "Pruned %d container(s), %d image(s)",
            len(containers.get("ContainersDeleted") or []),
            len(images.get("ImagesDeleted") or []),
        )
        return {"containers": containers, "images": images}
