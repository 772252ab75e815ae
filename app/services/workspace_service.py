"""
Workspace Service
=================
Manages isolated per-run workspaces and git clones on the host machine.

Philosophy:
    - One directory per run: WORKSPACE_ROOT/run-<build>-<uuid>/
    - Concurrent runs never share a checkout or an artifact directory.
    - The finalizer removes the directory when the run ends.
"""
import os
import uuid
import shutil
import subprocess
import logging

from app.core.config import WORKSPACE_ROOT

logger = logging.getLogger(__name__)


def create_workspace(run_id: int, root: str = WORKSPACE_ROOT) -> str:
    """Create and return a fresh, empty workspace for ``run_id``."""
    os.makedirs(root, exist_ok=True)
    path = os.path.abspath(os.path.join(root, f"run-{run_id}-{uuid.uuid4().hex[:8]}"))
    os.makedirs(path)
    logger.info("Created workspace for run #%s at %s", run_id, path)
    return path


def release_workspace(path: str) -> None:
    """Remove a run workspace. Missing directories are ignored."""
    if path and os.path.exists(path):
        shutil.rmtree(path)
        logger.info("Released workspace %s", path)


def authenticated_url(repo_url: str, token: str = "") -> str:
    """Insert a token into an https git URL."""
    if token and repo_url.startswith("https://"):
        return repo_url.replace("https://", f"https://x-access-token:{token}@", 1)
    return repo_url


def clone_repository(
    repo_url: str,
    dest_path: str,
    token: str = "",
    branch: str = "",
    depth: int = 1,
) -> str:
    """
    Clone a repository into ``dest_path`` (which must not exist yet).

    Returns
    -------
    str
        Absolute path to the clone.
    """
    dest_path = os.path.abspath(dest_path)
    cmd = ["git", "clone"]
    if depth:
        cmd += ["--depth", str(depth)]
    if branch:
        cmd += ["--branch", branch]
    cmd += [authenticated_url(repo_url, token), dest_path]

    logger.info("Cloning %s into %s", repo_url, dest_path)
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        logger.error("Failed to clone repository: %s", e.stderr)
        raise RuntimeError(f"Cloning failed: {e.stderr}")

    return dest_path


def checkout_commit(workspace_path: str, commit_sha: str) -> None:
    """Fetch and check out an exact commit in an existing clone."""
    subprocess.run(
        ["git", "fetch", "--depth", "1", "origin", commit_sha],
        cwd=workspace_path, check=True, capture_output=True, text=True,
    )
    subprocess.run(
        ["git", "checkout", "--detach", commit_sha],
        cwd=workspace_path, check=True, capture_output=True, text=True,
    )
