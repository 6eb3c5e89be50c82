"""Persistence: SQLAlchemy Core over SQLite (or $DATABASE_URL).

Data layout:
  data/
    game.db              runs + turns tables (see schema.py)
    llm-settings.json    Runtime-tunable LLM settings (no secrets)

Turn commit is one transaction: insert the turn, advance the run's counter
guarded on its previous value. Uniqueness of (run_id, turn_no) and
(run_id, idempotency_key) is enforced by the database; a violation
surfaces as TurnConflictError.

Narration writes are conditional UPDATEs keyed on the lease owner, so only
the worker currently holding a turn's lease can change its llm_* columns.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    engine,
    init_storage,
    utcnow,
)

from .runs import (  # noqa: F401
    create_run,
    get_run,
    list_runs,
)

from .turns import (  # noqa: F401
    claim_narration,
    commit_turn,
    complete_narration,
    fail_narration,
    find_claimable_turn,
    find_turn_by_idempotency_key,
    get_turn,
    get_turn_by_id,
    list_turns,
    release_expired_leases,
    renew_narration_lease,
)

from .config import (  # noqa: F401
    PROVIDER_NAMES,
    LlmConfig,
    get_llm_config,
    provider_available,
    public_llm_config,
    update_llm_config,
)
