"""Turn orchestrator — submits one player turn end-to-end.

Submission flow:
  1. Idempotency: a turn already stored under (run_id, idempotency_key) is
     returned unchanged. No Rng draw, no counter advance.
  2. Run checks: the run must exist and be active, and expected_next_turn_no
     must equal current_turn_no + 1 (else TURN_NO_MISMATCH, nothing written).
  3. Resolve: parse -> policy -> action plan -> combat or non-combat
     resolution. Pure; the run row is not touched yet.
  4. Commit: insert the turn and advance the run in one transaction. If a
     concurrent writer wins, re-read by idempotency key: the same request
     racing itself becomes a replay, anything else is TURN_CONFLICT.

Narration is not awaited here. The turn is stored with llm_status PENDING
(or SKIPPED) and picked up later by the narration worker.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from backend import content, storage
from rpg_turns.engine.resolver import (
    resolve_combat_turn,
    resolve_noncombat_turn,
    system_result,
)
from rpg_turns.errors import (
    InvalidInputError,
    NotFoundError,
    PolicyDenyError,
    TurnConflictError,
)
from rpg_turns.input.action_plan import build_plan, plan_for_choice
from rpg_turns.input.parser import parse
from rpg_turns.input.policy import check_policy
from rpg_turns.models import (
    ActionPlan,
    BattleState,
    Choice,
    EnemyState,
    InputType,
    NodeType,
    ParsedIntent,
    PlayerCombatState,
    RngState,
    RunState,
    ServerResult,
    StatBlock,
)

logger = logging.getLogger(__name__)

DEFAULT_ENEMIES = ["bandit", "bandit_archer"]


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def create_run(
    seed: str | None = None,
    node_type: NodeType = "COMBAT",
    enemies: list[str] | None = None,
    player_stats: StatBlock | None = None,
) -> dict[str, Any]:
    """Start a run. COMBAT nodes get a fresh battle state at cursor 0."""
    seed = seed or uuid.uuid4().hex
    stats = player_stats or content.DEFAULT_PLAYER_STATS
    run_state = RunState(
        hp=stats.max_hp, max_hp=stats.max_hp,
        stamina=stats.max_stamina, max_stamina=stats.max_stamina,
    )

    battle = None
    if node_type == "COMBAT":
        refs = enemies if enemies is not None else DEFAULT_ENEMIES
        spawned = []
        for i, ref in enumerate(refs, start=1):
            enemy_def = content.get_enemy(ref)
            if enemy_def is None:
                raise InvalidInputError(f"Unknown enemy: {ref}", {"enemy": ref})
            spawned.append(EnemyState(
                id=f"enemy_{i:02d}",
                name=enemy_def.name,
                ref=ref,
                hp=enemy_def.stats.max_hp,
                max_hp=enemy_def.stats.max_hp,
                personality=enemy_def.personality,
            ))
        if not spawned:
            raise InvalidInputError("A combat node needs at least one enemy")
        battle = BattleState(
            rng=RngState(seed=seed, cursor=0),
            player=PlayerCombatState(hp=run_state.hp, stamina=run_state.stamina),
            enemies=spawned,
        )

    run = storage.create_run(seed, node_type, stats, run_state, battle)
    logger.info("run created id=%s node=%s enemies=%d", run["id"], node_type,
                len(battle.enemies) if battle else 0)
    return run_view(run)


def run_view(run: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": run["id"],
        "seed": run["seed"],
        "status": run["status"],
        "node_type": run["node_type"],
        "node_state": run["node_state"],
        "current_turn_no": run["current_turn_no"],
        "next_turn_no": run["current_turn_no"] + 1,
        "run_state": run["run_state"],
        "battle_state": run["battle_state"],
    }


def get_run(run_id: str) -> dict[str, Any]:
    run = storage.get_run(run_id)
    if run is None:
        raise NotFoundError("Run not found", {"run_id": run_id})
    return run_view(run)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def _response(turn: dict[str, Any], replay: bool) -> dict[str, Any]:
    return {
        "accepted": True,
        "replay": replay,
        "run_id": turn["run_id"],
        "turn_no": turn["turn_no"],
        "server_result": turn["server_result"],
        "llm": {"status": turn["llm_status"], "narrative": turn.get("llm_output")},
    }


def _combat_choices(battle: BattleState, bonus: bool) -> list[Choice]:
    choices: list[Choice] = []
    for enemy in battle.enemies:
        if enemy.hp <= 0:
            continue
        name = enemy.name or enemy.id
        choices.append(Choice(id=f"attack_melee_{enemy.id}", label=f"Attack {name}"))
        if bonus:
            choices.append(Choice(
                id=f"combo_double_attack_{enemy.id}", label=f"Strike {name} twice",
                hint="2 stamina",
            ))
        choices.append(Choice(
            id=f"combo_attack_defend_{enemy.id}", label=f"Attack {name}, then guard",
            hint="2 stamina",
        ))
    choices += [
        Choice(id="defend", label="Defend"),
        Choice(id="evade", label="Evade"),
        Choice(id="move_forward", label="Move forward"),
        Choice(id="move_back", label="Fall back"),
        Choice(id="flee", label="Flee"),
    ]
    return choices


def _previous_result(run: dict[str, Any]) -> dict[str, Any] | None:
    if run["current_turn_no"] == 0:
        return None
    prev = storage.get_turn(run["id"], run["current_turn_no"])
    return prev["server_result"] if prev else None


def _enemy_stats(battle: BattleState) -> dict[str, StatBlock]:
    stats: dict[str, StatBlock] = {}
    for enemy in battle.enemies:
        enemy_def = content.get_enemy(enemy.ref) if enemy.ref else None
        if enemy_def is not None:
            stats[enemy.id] = enemy_def.stats
    return stats


def submit_turn(
    run_id: str,
    idempotency_key: str,
    expected_next_turn_no: int,
    input_type: InputType,
    text: str | None = None,
    choice_id: str | None = None,
    skip_llm: bool = False,
) -> dict[str, Any]:
    existing = storage.find_turn_by_idempotency_key(run_id, idempotency_key)
    if existing is not None:
        logger.info("idempotent replay run=%s turn=%d", run_id, existing["turn_no"])
        return _response(existing, replay=True)

    run = storage.get_run(run_id)
    if run is None:
        raise NotFoundError("Run not found", {"run_id": run_id})
    if run["status"] != "RUN_ACTIVE":
        raise InvalidInputError("Run is not active", {"status": run["status"]})

    expected = run["current_turn_no"] + 1
    if expected_next_turn_no != expected:
        raise TurnConflictError(
            "TURN_NO_MISMATCH",
            f"Expected turn {expected}, got {expected_next_turn_no}",
            {"expected": expected, "received": expected_next_turn_no},
        )

    if input_type == "ACTION" and not (text and text.strip()):
        raise InvalidInputError("ACTION input requires text")
    if input_type == "CHOICE" and not choice_id:
        raise InvalidInputError("CHOICE input requires choice_id")

    turn_no = expected
    node_type: NodeType = run["node_type"]
    node_state = run["node_state"]
    run_state = RunState(**run["run_state"])
    player_stats = StatBlock(**run["player_stats"])
    battle = BattleState(**run["battle_state"]) if run["battle_state"] else None
    prev = _previous_result(run)

    raw_input = text or choice_id or ""
    if input_type == "CHOICE" and prev:
        label = next((c["label"] for c in prev.get("choices", []) if c["id"] == choice_id), None)
        raw_input = label or raw_input

    parsed: ParsedIntent | None = None
    transformed: ParsedIntent | None = None
    plan: ActionPlan | None = None
    policy_result = "ALLOW"
    note: str | None = None

    if input_type == "ACTION":
        parsed = parse(text or "")
        decision = check_policy(parsed, node_type, node_state)
        policy_result = decision.result
        if decision.result == "DENY":
            logger.info("policy deny run=%s turn=%d: %s", run_id, turn_no, decision.reason)
            raise PolicyDenyError(decision.reason or "Policy denied", {"reason": decision.reason})
        transformed = decision.intent
        if decision.result == "TRANSFORM":
            note = decision.reason
        stamina = battle.player.stamina if battle else run_state.stamina
        bonus = bool(prev and prev.get("flags", {}).get("bonus_slot"))
        plan = build_plan(transformed or parsed, decision.result, stamina, bonus)
    elif input_type == "CHOICE":
        if node_state == "NODE_ENDED":
            raise InvalidInputError("Node already ended")
        if node_type == "COMBAT":
            plan = plan_for_choice(choice_id or "")
        else:
            plan = build_plan(
                ParsedIntent(input_text=raw_input, intents=["OBSERVE"], confidence=1.0),
                "ALLOW", run_state.stamina,
            )

    run_fields: dict[str, Any] = {}
    if input_type == "SYSTEM":
        result = system_result(
            turn_no, node_type, node_state, run_state.hp, run_state.stamina,
            text or "System turn",
        )
    elif node_type == "COMBAT" and battle is not None and node_state == "NODE_ACTIVE":
        outcome = resolve_combat_turn(turn_no, plan, battle, player_stats, _enemy_stats(battle))
        result = outcome.result
        if outcome.outcome == "ONGOING":
            result.choices = _combat_choices(outcome.battle, result.flags.bonus_slot)
        run_state = run_state.model_copy(update={
            "hp": outcome.battle.player.hp,
            "stamina": outcome.battle.player.stamina,
        })
        run_fields = {
            "battle_state": outcome.battle.model_dump(mode="json"),
            "run_state": run_state.model_dump(mode="json"),
            "node_state": result.node.state,
        }
        if outcome.outcome == "DEFEAT":
            run_fields["status"] = "RUN_ENDED"
    else:
        result = resolve_noncombat_turn(
            turn_no, node_type, plan, run_state.hp, run_state.stamina, note,
        )

    turn = {
        "run_id": run_id,
        "turn_no": turn_no,
        "node_type": node_type,
        "input_type": input_type,
        "raw_input": raw_input,
        "idempotency_key": idempotency_key,
        "parsed_by": parsed.source if parsed else None,
        "confidence": parsed.confidence if parsed else None,
        "parsed_intent": parsed.model_dump(mode="json") if parsed else None,
        "policy_result": policy_result,
        "transformed_intent": transformed.model_dump(mode="json") if transformed else None,
        "action_plan": plan.model_dump(mode="json") if plan else None,
        "server_result": result.model_dump(mode="json"),
        "llm_status": "SKIPPED" if skip_llm else "PENDING",
    }

    try:
        stored = storage.commit_turn(turn, run_fields)
    except TurnConflictError:
        winner = storage.find_turn_by_idempotency_key(run_id, idempotency_key)
        if winner is not None:
            logger.warning("lost commit race to own retry run=%s turn=%d", run_id, winner["turn_no"])
            return _response(winner, replay=True)
        raise

    logger.info(
        "turn committed run=%s turn=%d input=%s policy=%s llm=%s",
        run_id, turn_no, input_type, policy_result, stored["llm_status"],
    )
    return _response(stored, replay=False)


# ---------------------------------------------------------------------------
# Turn detail
# ---------------------------------------------------------------------------

def get_turn_detail(run_id: str, turn_no: int, include_debug: bool = False) -> dict[str, Any]:
    run = storage.get_run(run_id)
    if run is None:
        raise NotFoundError("Run not found", {"run_id": run_id})
    turn = storage.get_turn(run_id, turn_no)
    if turn is None:
        raise NotFoundError("Turn not found", {"run_id": run_id, "turn_no": turn_no})

    detail: dict[str, Any] = {
        "run": {
            "id": run["id"],
            "status": run["status"],
            "current_turn_no": run["current_turn_no"],
        },
        "turn": {
            "turn_no": turn["turn_no"],
            "node_type": turn["node_type"],
            "input_type": turn["input_type"],
            "raw_input": turn["raw_input"],
            "created_at": turn["created_at"],
        },
        "server_result": ServerResult(**turn["server_result"]).model_dump(mode="json"),
        "llm": {
            "status": turn["llm_status"],
            "output": turn["llm_output"],
            "model_used": turn["llm_model_used"],
            "attempts": turn["llm_attempts"],
            "completed_at": turn["llm_completed_at"],
            "error": turn["llm_error"],
        },
    }
    if include_debug:
        detail["debug"] = {
            "parsed_by": turn["parsed_by"],
            "confidence": turn["confidence"],
            "parsed_intent": turn["parsed_intent"],
            "policy_result": turn["policy_result"],
            "transformed_intent": turn["transformed_intent"],
            "action_plan": turn["action_plan"],
            "idempotency_key": turn["idempotency_key"],
            "llm_token_stats": turn["llm_token_stats"],
        }
    return detail
