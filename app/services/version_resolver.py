"""
Version Resolver
================
Asks an external tool for the semantic version of the current source tree.

The computation rules belong to the tool (semantic-release, git describe,
...). This module only runs it once, takes the last non-empty line of
stdout and checks that it looks like a semantic version.
"""
import re
import shlex
import logging
import subprocess

logger = logging.getLogger(__name__)

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)


class VersionResolutionError(RuntimeError):
    pass


def parse_version_output(output: str) -> str:
    """Return the semantic version printed last in ``output``."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        raise VersionResolutionError("Version command printed nothing")
    candidate = lines[-1]
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    if not SEMVER_RE.match(candidate):
        raise VersionResolutionError(f"Not a semantic version: {lines[-1]!r}")
    return candidate


class VersionResolver:

    def __init__(self, command: str, timeout: int = 300) -> None:
        self.command = command
        self.timeout = timeout

    def resolve(self, source_dir: str, env: dict = None) -> str:
        logger.info("Resolving version with: %s", self.command)
        try:
            res = subprocess.run(
                shlex.split(self.command),
                cwd=source_dir,
                env=env,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise VersionResolutionError(f"Version command failed: {e.stderr.strip()}") from e
        version = parse_version_output(res.stdout)
        logger.info("Resolved version %s", version)
        return version
