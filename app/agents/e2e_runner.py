"""
E2E Test Runner Client
======================
Triggers the external end-to-end test runner for a set of staged images
and polls it until the suite completes.

Contract:
    POST {base}/runs  {backendImageRef, frontendImageRef, workerImageRef, notifyAddress}
        → {"id": "...", "status": "queued"}
    GET  {base}/runs/{id}
        → {"status": "queued|in_progress|completed", "conclusion": "passed|failed",
           "report_url": "..."}

A completed suite counts as passed only when its conclusion is "passed" or
"success"; a missing or unrecognised conclusion is a failure.
"""
import time
import asyncio
import logging
from datetime import datetime, timezone
from typing import Literal, List, Dict, Any
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

E2EStatus = Literal[
    "passed",
    "failed",
    "runner_error",
    "unknown_timeout",
]

_FAILED_CONCLUSIONS = ("failed", "failure", "error", "cancelled", "timed_out")
_PASSED_CONCLUSIONS = ("passed", "success")


@dataclass
class E2EResult:
    status: E2EStatus
    runner_run_id: str = ""
    report_url: str = ""
    duration: float = 0.0
    timeline: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "passed"


def _timeline_event(runner_run_id: str, status: str, duration: float = 0.0) -> Dict[str, Any]:
    return {
        "runner_run_id": runner_run_id,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "duration": round(duration, 2),
    }


class E2ETestRunner:
    """Client for the external end-to-end test runner. Holds no per-suite state."""

    def __init__(self, base_url: str, token: str = "", poll_timeout: int = 1800) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self.headers = {
            "Accept": "application/json",
            "User-Agent": "delivery-pipeline",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def run_suite(
        self,
        backend_image: str,
        frontend_image: str,
        worker_image: str,
        notify_address: str,
    ) -> E2EResult:
        """Start the suite and block until it completes or the poll times out."""
        payload = {
            "backendImageRef": backend_image,
            "frontendImageRef": frontend_image,
            "workerImageRef": worker_image,
            "notifyAddress": notify_address,
        }
        async with httpx.AsyncClient(headers=self.headers, timeout=20.0) as client:
            response = await client.post(f"{self.base_url}/runs", json=payload)
            response.raise_for_status()
            runner_run_id = str(response.json().get("id", ""))
            if not runner_run_id:
                logger.error("E2E runner did not return a run id")
                return E2EResult(status="runner_error")

            logger.info("E2E suite started: %s", runner_run_id)
            return await self._poll(client, runner_run_id)

    async def _poll(self, client: httpx.AsyncClient, runner_run_id: str) -> E2EResult:
        """Polling with exponential backoff; 4xx aborts, 5xx retries."""
        url = f"{self.base_url}/runs/{runner_run_id}"
        start_time = time.time()
        backoff = 5.0
        last_status = ""
        timeline: List[Dict[str, Any]] = []

        while (time.time() - start_time) < self.poll_timeout:
            try:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
                status = data.get("status", "queued")

                if status == "completed":
                    # Only an explicit pass verdict gates promotion
                    conclusion = str(data.get("conclusion") or "").lower()
                    final: E2EStatus = "passed" if conclusion in _PASSED_CONCLUSIONS else "failed"
                    if final == "failed" and conclusion not in _FAILED_CONCLUSIONS:
                        logger.warning(
                            "E2E suite %s completed with unrecognised conclusion %r",
                            runner_run_id, data.get("conclusion"),
                        )
                    elapsed = time.time() - start_time
                    timeline.append(_timeline_event(runner_run_id, final, elapsed))
                    logger.info("E2E suite %s finished: %s", runner_run_id, final)
                    return E2EResult(
                        status=final,
                        runner_run_id=runner_run_id,
                        report_url=data.get("report_url", ""),
                        duration=round(elapsed, 2),
                        timeline=timeline,
                    )

                if status != last_status:
                    logger.info("E2E suite %s status: %s", runner_run_id, status)
                    timeline.append(_timeline_event(runner_run_id, status, time.time() - start_time))
                    last_status = status

                await asyncio.sleep(backoff)
                backoff = min(backoff * 1.5, 30.0)

            except httpx.HTTPStatusError as http_err:
                status_code = http_err.response.status_code
                if 400 <= status_code < 500:
                    logger.error("E2E polling aborted (HTTP %d): %s", status_code, http_err)
                    timeline.append(_timeline_event(runner_run_id, "runner_error", time.time() - start_time))
                    return E2EResult(status="runner_error", runner_run_id=runner_run_id, timeline=timeline)
                logger.error("E2E polling server error (HTTP %d), retrying: %s", status_code, http_err)
                await asyncio.sleep(10)
            except httpx.TransportError as e:
                logger.error("Error polling E2E runner: %s", e)
                await asyncio.sleep(10)

        elapsed = time.time() - start_time
        timeline.append(_timeline_event(runner_run_id, "unknown_timeout", elapsed))
        return E2EResult(
            status="unknown_timeout",
            runner_run_id=runner_run_id,
            duration=round(elapsed, 2),
            timeline=timeline,
        )
