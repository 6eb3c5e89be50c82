"""Run rows: create, read, list."""

import uuid
from typing import Any

from sqlalchemy import select

from rpg_turns.models import BattleState, NodeType, RunState, StatBlock

from .core import engine, utcnow
from .schema import runs


def create_run(
    seed: str,
    node_type: NodeType,
    player_stats: StatBlock,
    run_state: RunState,
    battle_state: BattleState | None = None,
) -> dict[str, Any]:
    now = utcnow()
    row = {
        "id": uuid.uuid4().hex,
        "seed": seed,
        "status": "RUN_ACTIVE",
        "node_type": node_type,
        "node_state": "NODE_ACTIVE",
        "current_turn_no": 0,
        "player_stats": player_stats.model_dump(mode="json"),
        "run_state": run_state.model_dump(mode="json"),
        "battle_state": battle_state.model_dump(mode="json") if battle_state else None,
        "created_at": now,
        "updated_at": now,
    }
    with engine().begin() as conn:
        conn.execute(runs.insert().values(**row))
    return row


def get_run(run_id: str) -> dict[str, Any] | None:
    with engine().connect() as conn:
        row = conn.execute(select(runs).where(runs.c.id == run_id)).first()
    return dict(row._mapping) if row else None


def list_runs() -> list[dict[str, Any]]:
    """All runs, newest first."""
    with engine().connect() as conn:
        rows = conn.execute(select(runs).order_by(runs.c.created_at.desc())).all()
    return [dict(r._mapping) for r in rows]
