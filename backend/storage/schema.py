"""Table definitions.

Two tables:
  runs    One row per run: node context, turn counter, player and battle state.
  turns   One row per committed turn. The authoritative result is written
          once at insert; the llm_* columns belong to the narration worker
          holding the lease.

The two unique constraints on turns are the only concurrency control on
submission: a losing concurrent writer gets an IntegrityError.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

runs = Table(
    "runs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("seed", String(64), nullable=False),
    Column("status", String(16), nullable=False, default="RUN_ACTIVE"),
    Column("node_type", String(16), nullable=False),
    Column("node_state", String(16), nullable=False, default="NODE_ACTIVE"),
    # Last committed turn; the next expected turn is current_turn_no + 1.
    Column("current_turn_no", Integer, nullable=False, default=0),
    Column("player_stats", JSON, nullable=False),
    Column("run_state", JSON, nullable=False),
    Column("battle_state", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

turns = Table(
    "turns",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("run_id", String(32), ForeignKey("runs.id"), nullable=False),
    Column("turn_no", Integer, nullable=False),
    Column("node_type", String(16), nullable=False),
    Column("input_type", String(16), nullable=False),
    Column("raw_input", Text, nullable=False, default=""),
    Column("idempotency_key", String(80), nullable=False),
    Column("parsed_by", String(16), nullable=True),
    Column("confidence", Float, nullable=True),
    Column("parsed_intent", JSON, nullable=True),
    Column("policy_result", String(16), nullable=False, default="ALLOW"),
    Column("transformed_intent", JSON, nullable=True),
    Column("action_plan", JSON, nullable=True),
    Column("server_result", JSON, nullable=False),
    Column("llm_status", String(16), nullable=False, default="PENDING"),
    Column("llm_output", Text, nullable=True),
    Column("llm_error", JSON, nullable=True),
    Column("llm_attempts", Integer, nullable=False, default=0),
    Column("llm_locked_at", DateTime, nullable=True),
    Column("llm_lock_owner", String(80), nullable=True),
    Column("llm_model_used", String(120), nullable=True),
    Column("llm_token_stats", JSON, nullable=True),
    Column("llm_completed_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("run_id", "turn_no", name="uq_turns_run_turn_no"),
    UniqueConstraint("run_id", "idempotency_key", name="uq_turns_run_idempotency_key"),
    Index("ix_turns_llm_status", "llm_status"),
)
