"""
Finalizer
=========
Always-run epilogue of a pipeline run.

Steps, in order, each best-effort (a failing step is logged as a
FinalizerStepFailure and the next step still runs):
    (a) remove locally built images
    (b) prune dangling images and stopped pipeline containers
    (c) remove locally cloned auxiliary repositories
    (d) send exactly one notification with the final status, duration and
        a link back to the run
    (e) release the run workspace and forget the run's secrets

``finalize`` runs once per run; later calls are logged no-ops. It never
raises.
"""
import os
import shutil
import asyncio
import logging
from datetime import datetime, timezone

from app.core.config import NOTIFY_RECIPIENT, PUBLIC_BASE_URL
from app.core.constants import FAILURE, SUCCESS, PENDING, RUNNING, FINALIZED
from app.core.errors import FinalizerStepFailure
from app.services.notifier import Notifier, build_notification
from app.services.workspace_service import release_workspace
from app.utils.logging_config import secret_filter

logger = logging.getLogger(__name__)


def run_link(run_id: int, base_url: str = PUBLIC_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/runs/{run_id}"


class Finalizer:

    def __init__(
        self,
        builder,
        notifier: Notifier,
        recipient: str = NOTIFY_RECIPIENT,
        base_url: str = PUBLIC_BASE_URL,
        mask_filter=secret_filter,
    ) -> None:
        self.builder = builder
        self.notifier = notifier
        self.recipient = recipient
        self.base_url = base_url
        self.mask_filter = mask_filter

    async def finalize(self, context) -> None:
        run = context.run
        if context.finalizing or run.is_finalized:
            logger.warning("[run #%s] finalize called again, ignoring", run.run_id)
            return
        context.finalizing = True

        # Default to success unless some stage recorded a failure
        status = FAILURE if run.result == FAILURE else SUCCESS
        if run.state == PENDING:
            run.transition(RUNNING if status == SUCCESS else FAILURE)
        if run.state == RUNNING:
            run.transition(status)
        run.result = status

        steps = (
            ("remove-images", self._remove_images),
            ("prune", self._prune),
            ("remove-clones", self._remove_clones),
            ("notify", self._notify),
            ("release-workspace", self._release_workspace),
        )
        for name, step in steps:
            try:
                await step(context)
            except Exception as exc:
                failure = FinalizerStepFailure(name, exc)
                context.finalizer_errors.append(str(failure))
                logger.warning("[run #%s] %s (ignored)", run.run_id, failure)

        run.transition(FINALIZED)
        logger.info(
            "[run #%s] Finalized: %s in %.1fs", run.run_id, run.result, run.duration_seconds,
        )

    async def _remove_images(self, context) -> None:
        errors = []
        for tag in list(context.built_images):
            try:
                await asyncio.to_thread(self.builder.remove, tag)
                context.built_images.remove(tag)
            except Exception as exc:
                errors.append(f"{tag}: {exc}")
        if errors:
            raise RuntimeError("; ".join(errors))

    async def _prune(self, context) -> None:
        await asyncio.to_thread(self.builder.prune)

    async def _remove_clones(self, context) -> None:
        for path in list(context.cloned_paths):
            if os.path.exists(path):
                await asyncio.to_thread(shutil.rmtree, path)
                logger.info("[run #%s] Removed clone %s", context.run.run_id, path)
            context.cloned_paths.remove(path)

    async def _notify(self, context) -> None:
        run = context.run
        run.duration_seconds = round(context.elapsed(), 3)
        run.finished_at = datetime.now(timezone.utc)
        run.link = run_link(run.run_id, self.base_url)
        notification = build_notification(
            recipient=self.recipient,
            status=run.result,
            build_number=run.run_id,
            branch=run.branch,
            duration_seconds=run.duration_seconds,
            link=run.link,
        )
        await self.notifier.send(notification)
        run.notification_sent = True

    async def _release_workspace(self, context) -> None:
        self.mask_filter.forget(context.variables.secret_values())
        await asyncio.to_thread(release_workspace, context.workspace_path)
