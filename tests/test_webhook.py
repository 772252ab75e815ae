"""
API Tests
=========
Push webhook and run views, with the orchestrator replaced by a stub.
"""
import hmac
import json
import hashlib
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.testclient import TestClient

from main import app
from app.api.deps import get_orchestrator
from app.api.webhook import verify_signature
from app.models.push_event import PushEvent
from app.state.run_registry import RunRegistry


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.registry = RunRegistry(start_at=7)
    orch.create_run.side_effect = orch.registry.create
    orch.execute = AsyncMock()
    return orch


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


PUSH = {
    "ref": "refs/heads/main",
    "after": "b" * 40,
    "repository": {"clone_url": "https://git.example.com/app.git"},
    "pusher": {"name": "dev"},
}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_branch_push_schedules_run(client, orchestrator):
    response = client.post("/webhook/push", json=PUSH)

    assert response.status_code == 202
    body = response.json()
    assert body["accepted"] is True
    assert body["run_id"] == 7
    assert body["branch"] == "main"
    event = orchestrator.create_run.call_args.args[0]
    assert event.repository == "https://git.example.com/app.git"
    assert event.pusher == "dev"
    orchestrator.execute.assert_called_once()


def test_tag_push_is_ignored(client, orchestrator):
    response = client.post("/webhook/push", json={**PUSH, "ref": "refs/tags/v1.0.0"})

    assert response.status_code == 202
    assert response.json()["ignored"] is True
    orchestrator.create_run.assert_not_called()


def test_branch_deletion_is_ignored(client, orchestrator):
    response = client.post("/webhook/push", json={**PUSH, "deleted": True, "after": "0" * 40})
    assert response.json()["ignored"] is True
    orchestrator.execute.assert_not_called()


def test_invalid_signature_rejected(client, orchestrator):
    with patch("app.core.config.WEBHOOK_SECRET", "s3cret"):
        response = client.post(
            "/webhook/push", json=PUSH, headers={"X-Hub-Signature-256": "sha256=deadbeef"},
        )
    assert response.status_code == 401
    orchestrator.create_run.assert_not_called()


def test_valid_signature_accepted(client):
    body = json.dumps(PUSH).encode()
    digest = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    with patch("app.core.config.WEBHOOK_SECRET", "s3cret"):
        response = client.post(
            "/webhook/push",
            content=body,
            headers={"X-Hub-Signature-256": f"sha256={digest}", "Content-Type": "application/json"},
        )
    assert response.status_code == 202
    assert response.json()["accepted"] is True


def test_verify_signature_requires_prefix():
    assert not verify_signature("k", b"{}", None)
    assert not verify_signature("k", b"{}", "md5=abc")


def test_runs_listing_and_lookup(client, orchestrator):
    orchestrator.registry.create(PushEvent(branch="main"))
    orchestrator.registry.create(PushEvent(branch="feature/x"))

    listing = client.get("/runs").json()
    assert [r["run_id"] for r in listing] == [8, 7]

    run = client.get("/runs/8").json()
    assert run["branch"] == "feature/x"
    assert run["state"] == "pending"

    assert client.get("/runs/99").status_code == 404
