"""Run endpoints: create, list, get."""

from fastapi import APIRouter

from backend import orchestrator, storage

from .models import CreateRunBody

router = APIRouter()


@router.post("/runs", status_code=201)
async def create_run(body: CreateRunBody):
    """Start a run; COMBAT runs spawn enemies from the catalog."""
    return orchestrator.create_run(
        seed=body.seed,
        node_type=body.node_type,
        enemies=body.enemies,
        player_stats=body.player_stats,
    )


@router.get("/runs")
async def list_runs():
    """List all runs, newest first."""
    return [orchestrator.run_view(r) for r in storage.list_runs()]


@router.get("/runs/{run_id}")
async def get_run(run_id: str):
    """Get a run with its run state and battle state."""
    return orchestrator.get_run(run_id)
