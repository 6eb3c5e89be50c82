"""Turn rows: atomic commit on the request path, leased narration writes.

Two disjoint groups of columns with one writer each:

  request path   everything set by commit_turn(); written once, never updated
  lease holder   llm_* columns; every write is conditional on llm_lock_owner

Narration status lifecycle:

  PENDING -> LEASED -> DONE | ERROR
  SKIPPED at insert, never leased
  LEASED  -> PENDING when the lease expires (release_expired_leases)

The holder renews the lease before every provider attempt, so a lease only
expires when its worker has stopped making progress.
"""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from rpg_turns.errors import TurnConflictError

from .core import engine, utcnow
from .schema import runs, turns


def _row(row) -> dict[str, Any] | None:
    return dict(row._mapping) if row else None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_turn(run_id: str, turn_no: int) -> dict[str, Any] | None:
    with engine().connect() as conn:
        row = conn.execute(
            select(turns).where(turns.c.run_id == run_id, turns.c.turn_no == turn_no)
        ).first()
    return _row(row)


def get_turn_by_id(turn_id: int) -> dict[str, Any] | None:
    with engine().connect() as conn:
        row = conn.execute(select(turns).where(turns.c.id == turn_id)).first()
    return _row(row)


def find_turn_by_idempotency_key(run_id: str, key: str) -> dict[str, Any] | None:
    with engine().connect() as conn:
        row = conn.execute(
            select(turns).where(turns.c.run_id == run_id, turns.c.idempotency_key == key)
        ).first()
    return _row(row)


def list_turns(run_id: str) -> list[dict[str, Any]]:
    with engine().connect() as conn:
        rows = conn.execute(
            select(turns).where(turns.c.run_id == run_id).order_by(turns.c.turn_no)
        ).all()
    return [dict(r._mapping) for r in rows]


# ---------------------------------------------------------------------------
# Commit (request path)
# ---------------------------------------------------------------------------

def commit_turn(turn: dict[str, Any], run_fields: dict[str, Any]) -> dict[str, Any]:
    """Insert the turn and advance its run in one transaction.

    The run update is guarded by `current_turn_no = turn_no - 1`; if another
    writer advanced the run first, or either unique constraint on turns is
    violated, nothing is written and TurnConflictError is raised.
    """
    now = utcnow()
    values = {**turn, "created_at": now}
    run_id, turn_no = turn["run_id"], turn["turn_no"]
    try:
        with engine().begin() as conn:
            result = conn.execute(turns.insert().values(**values))
            values["id"] = result.inserted_primary_key[0]
            advanced = conn.execute(
                update(runs)
                .where(runs.c.id == run_id, runs.c.current_turn_no == turn_no - 1)
                .values(current_turn_no=turn_no, updated_at=now, **run_fields)
            )
            if advanced.rowcount != 1:
                raise TurnConflictError(
                    "TURN_CONFLICT",
                    "Run advanced concurrently",
                    {"run_id": run_id, "turn_no": turn_no},
                )
    except IntegrityError as e:
        raise TurnConflictError(
            "TURN_CONFLICT",
            "Turn already committed",
            {"run_id": run_id, "turn_no": turn_no},
        ) from e
    return values


# ---------------------------------------------------------------------------
# Narration lease (worker path)
# ---------------------------------------------------------------------------

def _claimable(cutoff: datetime):
    return or_(
        turns.c.llm_status == "PENDING",
        and_(turns.c.llm_status == "LEASED", turns.c.llm_locked_at < cutoff),
    )


def release_expired_leases(now: datetime, lease_seconds: float) -> int:
    """Return LEASED rows whose lease has expired to PENDING."""
    cutoff = now - timedelta(seconds=lease_seconds)
    with engine().begin() as conn:
        result = conn.execute(
            update(turns)
            .where(turns.c.llm_status == "LEASED", turns.c.llm_locked_at < cutoff)
            .values(llm_status="PENDING", llm_locked_at=None, llm_lock_owner=None)
        )
    return result.rowcount


def find_claimable_turn(now: datetime, lease_seconds: float) -> dict[str, Any] | None:
    """Oldest turn that is pending, or whose lease has expired."""
    cutoff = now - timedelta(seconds=lease_seconds)
    with engine().connect() as conn:
        row = conn.execute(
            select(turns).where(_claimable(cutoff)).order_by(turns.c.created_at, turns.c.id).limit(1)
        ).first()
    return _row(row)


def claim_narration(turn_id: int, owner: str, now: datetime, lease_seconds: float) -> bool:
    """Take the lease on one turn. True only for the single winning claim."""
    cutoff = now - timedelta(seconds=lease_seconds)
    with engine().begin() as conn:
        result = conn.execute(
            update(turns)
            .where(turns.c.id == turn_id, _claimable(cutoff))
            .values(llm_status="LEASED", llm_locked_at=now, llm_lock_owner=owner)
        )
    return result.rowcount == 1


def _held_by(turn_id: int, owner: str):
    return and_(
        turns.c.id == turn_id,
        turns.c.llm_status == "LEASED",
        turns.c.llm_lock_owner == owner,
    )


def renew_narration_lease(turn_id: int, owner: str, now: datetime, attempts: int) -> bool:
    """Restart the lease clock before an attempt and record the attempt count.

    False means the lease has moved to another worker; the caller must stop.
    """
    with engine().begin() as conn:
        result = conn.execute(
            update(turns).where(_held_by(turn_id, owner)).values(
                llm_locked_at=now, llm_attempts=attempts,
            )
        )
    return result.rowcount == 1


def complete_narration(
    turn_id: int,
    owner: str,
    output: str,
    model_used: str,
    token_stats: dict[str, Any],
    attempts: int,
) -> bool:
    """Store the narration and release the lease."""
    with engine().begin() as conn:
        result = conn.execute(
            update(turns).where(_held_by(turn_id, owner)).values(
                llm_status="DONE",
                llm_output=output,
                llm_error=None,
                llm_model_used=model_used,
                llm_token_stats=token_stats,
                llm_attempts=attempts,
                llm_completed_at=utcnow(),
                llm_locked_at=None,
                llm_lock_owner=None,
            )
        )
    return result.rowcount == 1


def fail_narration(turn_id: int, owner: str, error: dict[str, Any], attempts: int) -> bool:
    """Mark narration as terminally failed and release the lease."""
    with engine().begin() as conn:
        result = conn.execute(
            update(turns).where(_held_by(turn_id, owner)).values(
                llm_status="ERROR",
                llm_error=error,
                llm_attempts=attempts,
                llm_completed_at=utcnow(),
                llm_locked_at=None,
                llm_lock_owner=None,
            )
        )
    return result.rowcount == 1
