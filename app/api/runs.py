"""
GET /runs, GET /runs/{run_id}
Read-only view of the runs known to this process.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.agents.orchestrator import Orchestrator
from app.api.deps import get_orchestrator
from app.models.run import Run

router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("", response_model=List[Run])
async def list_runs(limit: int = 50, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.registry.list(limit=limit)


@router.get("/{run_id}", response_model=Run)
async def get_run(run_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    run = orchestrator.registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run #{run_id} not found")
    return run
