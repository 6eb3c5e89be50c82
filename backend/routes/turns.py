"""Turn submission and turn detail endpoints."""

from fastapi import APIRouter

from backend import orchestrator, storage

from .models import SubmitTurnBody

router = APIRouter()


@router.post("/runs/{run_id}/turns")
async def submit_turn(run_id: str, body: SubmitTurnBody):
    """Submit one turn. Safe to retry with the same idempotency key."""
    return orchestrator.submit_turn(
        run_id,
        idempotency_key=body.idempotency_key,
        expected_next_turn_no=body.expected_next_turn_no,
        input_type=body.input.type,
        text=body.input.text,
        choice_id=body.input.choice_id,
        skip_llm=body.options.skip_llm,
    )


@router.get("/runs/{run_id}/turns")
async def list_turns(run_id: str):
    """Turn numbers with their narration status, oldest first."""
    orchestrator.get_run(run_id)
    return [
        {"turn_no": t["turn_no"], "input_type": t["input_type"], "llm_status": t["llm_status"]}
        for t in storage.list_turns(run_id)
    ]


@router.get("/runs/{run_id}/turns/{turn_no}")
async def get_turn(run_id: str, turn_no: int, include_debug: bool = False):
    """Get one turn: server result, narration, and optionally pipeline artifacts."""
    return orchestrator.get_turn_detail(run_id, turn_no, include_debug)
