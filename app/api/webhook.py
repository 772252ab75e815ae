"""
POST /webhook/push
==================
Receives a source-control push event and starts a pipeline run.

Safety:
    - If WEBHOOK_SECRET is set, the X-Hub-Signature-256 header must carry a
      valid HMAC-SHA256 of the raw body.
    - Tag pushes and branch deletions are acknowledged and ignored.

The run itself executes as a background task; the response returns the
build number immediately.
"""
import hmac
import hashlib
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from pydantic import BaseModel, ValidationError

from app.agents.orchestrator import Orchestrator
from app.api.deps import get_orchestrator
from app.core import config
from app.models.push_event import PushEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Trigger"])


class TriggerResponse(BaseModel):
    accepted: bool
    ignored: bool = False
    run_id: Optional[int] = None
    branch: str = ""
    link: str = ""
    reason: str = ""


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


def _repository_url(payload: dict) -> str:
    repo = payload.get("repository")
    if isinstance(repo, dict):
        return repo.get("clone_url") or repo.get("html_url") or ""
    return repo or ""


def _pusher(payload: dict) -> Optional[str]:
    pusher = payload.get("pusher")
    if isinstance(pusher, dict):
        return pusher.get("name")
    return pusher


@router.post("/push", response_model=TriggerResponse, status_code=202)
async def push_event(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: Optional[str] = Header(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    body = await request.body()
    if config.WEBHOOK_SECRET and not verify_signature(config.WEBHOOK_SECRET, body, x_hub_signature_256):
        logger.warning("[WEBHOOK] Rejected push with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
        event = PushEvent(
            ref=payload.get("ref", ""),
            branch=payload.get("branch", ""),
            after=payload.get("after", ""),
            repository=_repository_url(payload),
            pusher=_pusher(payload),
            deleted=bool(payload.get("deleted", False)),
        )
    except (ValueError, ValidationError, AttributeError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid push payload: {exc}")

    if not event.is_branch_push:
        logger.info("[WEBHOOK] Ignoring non-branch push: %s", event.ref)
        return TriggerResponse(accepted=False, ignored=True, reason=f"not a branch push: {event.ref}")

    run = orchestrator.create_run(event)
    background_tasks.add_task(orchestrator.execute, run)
    logger.info("[WEBHOOK] Scheduled run #%s for %s", run.run_id, run.branch)

    return TriggerResponse(
        accepted=True,
        run_id=run.run_id,
        branch=run.branch,
        link=f"{config.PUBLIC_BASE_URL.rstrip('/')}/runs/{run.run_id}",
    )
