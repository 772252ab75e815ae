"""
Run Registry
============
Process-wide, thread-safe store of runs and the monotonic build counter.

This is the only mutable state shared between concurrent runs. It is not
persisted; the deployment-config repository history is the audit trail.
"""
import threading
from typing import Dict, List, Optional

from app.models.push_event import PushEvent
from app.models.run import Run


class RunRegistry:

    def __init__(self, start_at: int = 1) -> None:
        self._lock = threading.Lock()
        self._next = start_at
        self._runs: Dict[int, Run] = {}

    def create(self, event: PushEvent) -> Run:
        """Allocate the next build number and register a pending run."""
        with self._lock:
            run_id = self._next
            self._next += 1
            run = Run(run_id=run_id, branch=event.branch, trigger_event=event)
            self._runs[run_id] = run
        return run

    def get(self, run_id: int) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def list(self, limit: int = 50) -> List[Run]:
        with self._lock:
            runs = sorted(self._runs.values(), key=lambda r: r.run_id, reverse=True)
        return runs[:limit]
