"""
Action Catalog
==============
Named actions a pipeline definition can reference, bound to the external
collaborators (Docker, registries, e2e runner, version tool, deploy repo).

Each catalog entry declares whether the call is safe to repeat. The
definition loader refuses ``attempts > 1`` on entries that are not.

Blocking actions are plain methods; the guarded runner moves them to a
worker thread so their timeouts can fire. ``run_e2e_tests`` is a coroutine.
"""
import os
import json
import glob
import shutil
import inspect
import logging
from typing import Any, Callable, Optional

import httpx

from app.core import config
from app.core.constants import IMAGES, LATEST_TAG, SEMANTIC_VERSION
from app.core.errors import ActionFailure, PipelineDefinitionError
from app.executor.build_executor import ImageBuilder, run_in_container
from app.agents.e2e_runner import E2ETestRunner
from app.agents.git_agent import GitAgent
from app.pipeline.guarded_action import GuardedAction
from app.pipeline.variables import registry_address, image_ref
from app.services.registry_client import RegistryClient
from app.services.version_resolver import VersionResolver
from app.services.workspace_service import clone_repository, checkout_commit

logger = logging.getLogger(__name__)

_E2E_RESULT_FILE = "e2e-result.json"

# name → (method, repeatable)
_ENTRIES: dict[str, tuple[str, bool]] = {
    "checkout_source":        ("checkout_source", False),
    "run_unit_tests":         ("run_unit_tests", True),
    "archive_unit_reports":   ("archive_unit_reports", True),
    "build_images":           ("build_images", True),
    "registry_login":         ("registry_login", True),
    "push_images":            ("push_images", True),
    "run_e2e_tests":          ("run_e2e_tests", False),
    "archive_e2e_report":     ("archive_e2e_report", True),
    "resolve_version":        ("resolve_version", False),
    "promote_images":         ("promote_images", True),
    "update_deploy_config":   ("update_deploy_config", False),
}


class ActionCatalog:
    """Binds action names from the pipeline definition to callables."""

    def __init__(
        self,
        builder: Optional[ImageBuilder] = None,
        registry: Optional[RegistryClient] = None,
        e2e_runner: Optional[E2ETestRunner] = None,
        version_resolver: Optional[VersionResolver] = None,
        git_agent: Optional[GitAgent] = None,
        executor: Callable[..., Any] = run_in_container,
    ) -> None:
        self.builder = builder or ImageBuilder()
        self.registry = registry or RegistryClient()
        self.e2e_runner = e2e_runner or E2ETestRunner(
            config.E2E_RUNNER_URL, poll_timeout=config.E2E_POLL_TIMEOUT
        )
        self.version_resolver = version_resolver or VersionResolver(config.VERSION_COMMAND)
        self.git_agent = git_agent or GitAgent(
            repo_url=config.DEPLOY_CONFIG_REPO,
            file_path=config.DEPLOY_CONFIG_FILE,
            block=config.DEPLOY_CONFIG_BLOCK,
            field=config.DEPLOY_CONFIG_FIELD,
            branch=config.DEPLOY_CONFIG_BRANCH,
            author_name=config.GIT_AUTHOR_NAME,
            author_email=config.GIT_AUTHOR_EMAIL,
        )
        self.executor = executor

    @staticmethod
    def names() -> list[str]:
        return sorted(_ENTRIES)

    @staticmethod
    def is_repeatable(name: str) -> bool:
        return _ENTRIES[name][1]

    def bind(
        self,
        name: str,
        params: Optional[dict] = None,
        attempts: int = 1,
        timeout: Optional[float] = None,
        label: str = "",
    ) -> GuardedAction:
        if name not in _ENTRIES:
            raise PipelineDefinitionError(
                f"Unknown action '{name}'. Known: {', '.join(self.names())}"
            )
        method_name, repeatable = _ENTRIES[name]
        method = getattr(self, method_name)
        params = dict(params or {})
        try:
            inspect.signature(method).bind(None, **params)
        except TypeError as e:
            raise PipelineDefinitionError(f"Bad parameters for '{name}': {e}") from e

        if inspect.iscoroutinefunction(method):
            async def call(ctx):
                return await method(ctx, **params)
        else:
            def call(ctx):
                return method(ctx, **params)

        try:
            return GuardedAction(
                name=label or name,
                fn=call,
                attempts=attempts,
                timeout=timeout,
                repeatable=repeatable,
            )
        except ValueError as e:
            raise PipelineDefinitionError(str(e)) from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _registry(ctx, target: str) -> str:
        path = {
            "staging": config.STAGING_REGISTRY_PATH,
            "production": config.PRODUCTION_REGISTRY_PATH,
        }.get(target)
        if path is None:
            raise ActionFailure(f"registry:{target}", "unknown registry target")
        return registry_address(ctx.variables["AWS_ACCOUNT_ID"], ctx.variables["AWS_REGION"], path)

    @staticmethod
    def _local_tag(image: str, ctx) -> str:
        return f"{image}:{ctx.build_number}"

    # ------------------------------------------------------------------
    # Source
    # ------------------------------------------------------------------
    def checkout_source(self, ctx) -> str:
        event = ctx.run.trigger_event
        repo_url = event.repository or config.SOURCE_REPO_URL
        if not repo_url:
            raise ActionFailure("checkout_source", "no source repository URL")
        clone_repository(
            repo_url, ctx.source_dir, token=ctx.variables.get("GIT_TOKEN", ""), branch=ctx.branch,
        )
        if event.after:
            checkout_commit(ctx.source_dir, event.after)
        return ctx.source_dir

    # ------------------------------------------------------------------
    # Unit tests
    # ------------------------------------------------------------------
    def run_unit_tests(self, ctx, image: str = "", command: str = "", timeout: int = 1800) -> None:
        result = self.executor(
            workspace_path=ctx.source_dir,
            command=command or config.UNIT_TEST_COMMAND,
            image=image or config.UNIT_TEST_IMAGE,
            timeout_seconds=timeout,
            name=f"pipeline-unit-{ctx.build_number}",
        )
        with open(os.path.join(ctx.artifacts_dir, "unit-tests.log"), "w", encoding="utf-8") as f:
            f.write(result.full_log)
        if not result.passed:
            raise ActionFailure(
                "run_unit_tests",
                result.error or f"exit code {result.exit_code}\n{result.log_excerpt}",
            )

    def archive_unit_reports(self, ctx, pattern: str = "reports/*.xml") -> list[str]:
        dest = os.path.join(ctx.artifacts_dir, "unit")
        os.makedirs(dest, exist_ok=True)
        archived = []
        for path in sorted(glob.glob(os.path.join(ctx.source_dir, pattern))):
            shutil.copy2(path, dest)
            archived.append(os.path.join(dest, os.path.basename(path)))
        logger.info("[run #%s] Archived %d unit report(s)", ctx.run.run_id, len(archived))
        return archived

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def build_images(self, ctx, images: tuple = IMAGES, dockerfile: str = "{image}/Dockerfile") -> list[str]:
        built = []
        for image in images:
            tag = self._local_tag(image, ctx)
            self.builder.build(
                context_path=ctx.source_dir,
                dockerfile=dockerfile.format(image=image),
                tag=tag,
                build_args={"BUILD_NUMBER": ctx.build_number},
            )
            if tag not in ctx.built_images:
                ctx.built_images.append(tag)
            built.append(tag)
        return built

    def registry_login(self, ctx, target: str = "staging") -> None:
        self.registry.login(
            self._registry(ctx, target),
            ctx.variables["REGISTRY_USERNAME"],
            ctx.variables["REGISTRY_PASSWORD"],
        )

    def push_images(self, ctx, target: str = "staging", images: tuple = IMAGES) -> list[str]:
        address = self._registry(ctx, target)
        pushed = []
        for image in images:
            ref = self.registry.tag(self._local_tag(image, ctx), address, image, ctx.build_number)
            if ref not in ctx.built_images:
                ctx.built_images.append(ref)
            pushed.append(self.registry.push(address, image, ctx.build_number))
        return pushed

    def promote_images(self, ctx, source: str = "staging", target: str = "production",
                       images: tuple = IMAGES) -> list[str]:
        """Pull each staged image and push it as <version> and latest."""
        version = ctx.semantic_version
        source_address = self._registry(ctx, source)
        target_address = self._registry(ctx, target)
        pushed = []
        for image in images:
            staged = self.registry.pull(source_address, image, ctx.build_number)
            if staged not in ctx.built_images:
                ctx.built_images.append(staged)
            for tag in (version, LATEST_TAG):
                ref = self.registry.tag(staged, target_address, image, tag)
                if ref not in ctx.built_images:
                    ctx.built_images.append(ref)
                pushed.append(self.registry.push(target_address, image, tag))
        return pushed

    # ------------------------------------------------------------------
    # End-to-end tests
    # ------------------------------------------------------------------
    async def run_e2e_tests(self, ctx, target: str = "staging") -> None:
        address = self._registry(ctx, target)
        refs = {image: image_ref(address, image, ctx.build_number) for image in IMAGES}
        result = await self.e2e_runner.run_suite(
            backend_image=refs["backend"],
            frontend_image=refs["frontend"],
            worker_image=refs["worker"],
            notify_address=config.NOTIFY_RECIPIENT,
        )
        with open(os.path.join(ctx.artifacts_dir, _E2E_RESULT_FILE), "w", encoding="utf-8") as f:
            json.dump({
                "status": result.status,
                "runner_run_id": result.runner_run_id,
                "report_url": result.report_url,
                "duration": result.duration,
                "timeline": result.timeline,
            }, f, indent=2)
        if not result.passed:
            raise ActionFailure("run_e2e_tests", f"suite {result.runner_run_id or '?'}: {result.status}")

    def archive_e2e_report(self, ctx) -> Optional[str]:
        result_file = os.path.join(ctx.artifacts_dir, _E2E_RESULT_FILE)
        if not os.path.exists(result_file):
            logger.info("[run #%s] No e2e result to archive", ctx.run.run_id)
            return None
        with open(result_file, "r", encoding="utf-8") as f:
            report_url = json.load(f).get("report_url")
        if not report_url:
            return None
        response = httpx.get(report_url, timeout=30.0, follow_redirects=True)
        response.raise_for_status()
        dest = os.path.join(ctx.artifacts_dir, "e2e-report.html")
        with open(dest, "wb") as f:
            f.write(response.content)
        logger.info("[run #%s] Archived e2e report to %s", ctx.run.run_id, dest)
        return dest

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------
    def resolve_version(self, ctx) -> str:
        version = self.version_resolver.resolve(ctx.source_dir)
        ctx.publish(SEMANTIC_VERSION, version)
        return version

    def update_deploy_config(self, ctx) -> bool:
        version = ctx.semantic_version
        dest = os.path.join(ctx.workspace_path, "deploy-config")
        ctx.cloned_paths.append(dest)
        path = self.git_agent.clone(dest, token=ctx.variables.get("GIT_TOKEN", ""))
        update = self.git_agent.update(path, version, ctx.build_number)
        return update.changed
