"""
Notifier
========
Sends the single end-of-run notification to a fixed recipient through an
HTTP relay (mail gateway, chat webhook, ...).

Payload:
    {"to": ..., "subject": ..., "status": ..., "build_number": ...,
     "branch": ..., "duration_seconds": ..., "duration": "1m 05s",
     "link": ..., "body": ...}
"""
import logging
from dataclasses import dataclass, asdict

import httpx

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs:02d}s"


@dataclass
class Notification:
    to: str
    subject: str
    status: str
    build_number: int
    branch: str
    duration_seconds: float
    duration: str
    link: str
    body: str


def build_notification(
    recipient: str,
    status: str,
    build_number: int,
    branch: str,
    duration_seconds: float,
    link: str,
) -> Notification:
    duration = format_duration(duration_seconds)
    subject = f"[{status.upper()}] Pipeline build #{build_number} ({branch})"
    body = (
        f"Build #{build_number} on {branch} finished with status {status.upper()} "
        f"after {duration}.\nDetails: {link}"
    )
    return Notification(
        to=recipient,
        subject=subject,
        status=status,
        build_number=build_number,
        branch=branch,
        duration_seconds=round(duration_seconds, 3),
        duration=duration,
        link=link,
        body=body,
    )


class Notifier:

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(self, notification: Notification) -> None:
        """POST the notification. Raises on transport or HTTP errors."""
        if not self.webhook_url:
            raise RuntimeError("NOTIFY_WEBHOOK_URL is not configured")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.webhook_url, json=asdict(notification))
            response.raise_for_status()
        logger.info("Notification sent to %s: %s", notification.to, notification.subject)
