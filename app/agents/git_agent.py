"""
Git Agent
=========
Updates the deployment-configuration repository: clone fresh, rewrite the
backend image tag, commit and push.

Rules:
    - Exactly one line is rewritten: the first ``<field>:`` line inside the
      ``<block>:`` mapping. Nothing outside the block is touched.
    - No textual diff → no commit and no push (idempotent re-runs).
    - Commit message is deterministic: version + build number.
    - Commit and push are attempted once. The push mutates shared history
      and is never retried blindly.
"""
import os
import re
import subprocess
import logging
from dataclasses import dataclass
from typing import Optional

from app.core.constants import DEPLOY_COMMIT_TEMPLATE
from app.services.workspace_service import clone_repository

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^(?P<indent>\s*)(?P<key>[A-Za-z0-9_.-]+):(?P<rest>.*)$")
_VALUE_RE = re.compile(r"^(?P<space>\s*)(?P<value>\"[^\"]*\"|'[^']*'|[^#\s]*)(?P<tail>\s*(#.*)?)$")


class DeployConfigError(RuntimeError):
    pass


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def rewrite_block_field(text: str, block: str, field: str, value: str) -> tuple[str, bool]:
    """
    Set ``block.<...>.field`` to ``"value"`` in YAML-like ``text``.

    The block ends at the first non-blank, non-comment line indented at or
    above the block key. Formatting, comments and every other line are
    preserved byte for byte.

    Returns
    -------
    tuple[str, bool]
        The new text and whether anything changed.

    Raises
    ------
    DeployConfigError
        If the block or the field cannot be found.
    """
    lines = text.splitlines(keepends=True)
    block_indent: Optional[int] = None

    for idx, raw in enumerate(lines):
        line = raw.rstrip("\r\n")
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        if block_indent is None:
            m = _KEY_RE.match(line)
            if m and m.group("key") == block and not m.group("rest").strip(" ").split("#")[0]:
                block_indent = _indent_of(line)
            continue

        if _indent_of(line) <= block_indent:
            break

        m = _KEY_RE.match(line)
        if not m or m.group("key") != field:
            continue

        v = _VALUE_RE.match(m.group("rest"))
        if not v:
            raise DeployConfigError(f"Cannot parse value of '{block}.{field}': {line!r}")
        if _unquote(v.group("value")) == value:
            return text, False

        space = v.group("space") or " "
        newline = raw[len(line):]
        lines[idx] = f"{m.group('indent')}{field}:{space}\"{value}\"{v.group('tail')}{newline}"
        return "".join(lines), True

    if block_indent is None:
        raise DeployConfigError(f"Block '{block}' not found")
    raise DeployConfigError(f"Field '{field}' not found in block '{block}'")


def commit_message(version: str, build_number: str) -> str:
    return DEPLOY_COMMIT_TEMPLATE.format(version=version, build_number=build_number)


@dataclass
class DeployUpdate:
    changed: bool
    commit_sha: str = ""
    message: str = ""


class GitAgent:
    """
    Agent responsible for the deployment-configuration repository of one run.
    """

    def __init__(
        self,
        repo_url: str,
        file_path: str,
        block: str,
        field: str,
        branch: str = "main",
        author_name: str = "delivery-pipeline",
        author_email: str = "delivery-pipeline@localhost",
    ) -> None:
        self.repo_url = repo_url
        self.file_path = file_path
        self.block = block
        self.field = field
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email

    def _git(self, workspace_path: str, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", *args],
            cwd=workspace_path,
            check=True,
            capture_output=True,
            text=True,
        )

    def clone(self, dest_path: str, token: str = "") -> str:
        if not self.repo_url:
            raise DeployConfigError("Deployment-config repository URL is not configured")
        path = clone_repository(self.repo_url, dest_path, token=token, branch=self.branch)
        self._git(path, "config", "user.name", self.author_name)
        self._git(path, "config", "user.email", self.author_email)
        return path

    def update(self, workspace_path: str, version: str, build_number: str) -> DeployUpdate:
        """
        Rewrite the tag in the clone at ``workspace_path``; commit and push
        if the text changed.
        """
        abs_path = os.path.normpath(os.path.join(workspace_path, self.file_path))
        if not abs_path.startswith(os.path.abspath(workspace_path)):
            raise DeployConfigError(f"Refusing to write outside the clone: {self.file_path}")

        with open(abs_path, "r", encoding="utf-8") as f:
            original = f.read()

        updated, changed = rewrite_block_field(original, self.block, self.field, version)
        if not changed:
            logger.info("%s already at %s, nothing to deploy", self.file_path, version)
            return DeployUpdate(changed=False)

        with open(abs_path, "w", encoding="utf-8") as f:
            f.write(updated)

        self._git(workspace_path, "add", self.file_path)

        diff_check = subprocess.run(
            ["git", "diff", "--cached", "--quiet"],
            cwd=workspace_path,
            capture_output=True,
            text=True,
        )
        if diff_check.returncode == 0:
            logger.warning("Rewrite of %s produced no staged diff, skipping commit", self.file_path)
            return DeployUpdate(changed=False)

        message = commit_message(version, build_number)
        self._git(workspace_path, "commit", "-m", message)
        sha = self.get_last_commit_sha(workspace_path)
        logger.info("Committed %s (%s)", message, sha[:12])

        try:
            self._git(workspace_path, "push", "origin", f"HEAD:{self.branch}")
        except subprocess.CalledProcessError as e:
            logger.error("Push of deployment config failed: %s", e.stderr)
            raise DeployConfigError(f"Push failed: {e.stderr.strip()}") from e

        logger.info("Pushed deployment config to %s", self.branch)
        return DeployUpdate(changed=True, commit_sha=sha, message=message)

    def get_last_commit_sha(self, workspace_path: str) -> str:
        """Get the SHA of the HEAD commit."""
        try:
            res = self._git(workspace_path, "rev-parse", "HEAD")
            return res.stdout.strip()
        except subprocess.CalledProcessError:
            return ""
