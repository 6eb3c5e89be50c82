"""ParsedIntent -> ActionPlan, and choice ids -> ActionPlan.

Slot budget: two base slots at 1 stamina each, plus one bonus slot at 2
stamina. The bonus slot needs all three of: a bonus granted by the last
turn, a third combat action in the intent, and stamina left for it.
"""

from __future__ import annotations

from rpg_turns.models import (
    COMBAT_ACTIONS,
    ActionPlan,
    ActionUnit,
    ParsedIntent,
    PolicyResult,
)

BASE_SLOTS = 2
BASE_COST = 1
BONUS_COST = 2


def build_plan(
    intent: ParsedIntent,
    policy_result: PolicyResult,
    stamina: int,
    bonus_available: bool = False,
) -> ActionPlan:
    combat = [i for i in intent.intents if i in COMBAT_ACTIONS]
    target = intent.targets[0] if intent.targets else None

    def unit(action: str) -> ActionUnit:
        return ActionUnit(type=action, target_id=target, direction=intent.direction)

    units = [unit(a) for a in combat[:BASE_SLOTS]]
    cost = BASE_COST * len(units)

    bonus_used = False
    if bonus_available and len(combat) > BASE_SLOTS and stamina >= cost + BONUS_COST:
        units.append(unit(combat[BASE_SLOTS]))
        cost += BONUS_COST
        bonus_used = True

    if not units and intent.intents:
        # Non-combat intent still yields exactly one unit, tagged for narration.
        units = [ActionUnit(type="INTERACT", meta={"original_intent": intent.intents[0]})]
        cost = 0

    return ActionPlan(
        units=units,
        slots_used=min(len(units), BASE_SLOTS),
        bonus_slot_used=bonus_used,
        stamina_cost=cost,
        policy_result=policy_result,
        source=intent.source,
    )


# ---------------------------------------------------------------------------
# Combat choices
# ---------------------------------------------------------------------------

def _plan(*units: ActionUnit) -> ActionPlan:
    return ActionPlan(
        units=list(units),
        slots_used=len(units),
        stamina_cost=BASE_COST * len(units),
    )


def _choice_unit(choice_id: str) -> ActionUnit:
    if choice_id.startswith("attack_melee_"):
        return ActionUnit(type="ATTACK_MELEE", target_id=choice_id.removeprefix("attack_melee_"))
    if choice_id.startswith("use_item_"):
        return ActionUnit(type="USE_ITEM", meta={"item_hint": choice_id.removeprefix("use_item_")})
    simple = {
        "defend": ActionUnit(type="DEFEND"),
        "evade": ActionUnit(type="EVADE"),
        "flee": ActionUnit(type="FLEE"),
        "move_forward": ActionUnit(type="MOVE", direction="FORWARD"),
        "move_back": ActionUnit(type="MOVE", direction="BACK"),
    }
    return simple.get(choice_id, ActionUnit(type="DEFEND"))


def plan_for_choice(choice_id: str) -> ActionPlan:
    """Map a combat choice id to its plan. Unknown ids fall back to DEFEND."""
    if choice_id.startswith("combo_double_attack_"):
        target = choice_id.removeprefix("combo_double_attack_")
        return _plan(
            ActionUnit(type="ATTACK_MELEE", target_id=target),
            ActionUnit(type="ATTACK_MELEE", target_id=target),
        )
    if choice_id.startswith("combo_attack_defend_"):
        target = choice_id.removeprefix("combo_attack_defend_")
        return _plan(ActionUnit(type="ATTACK_MELEE", target_id=target), ActionUnit(type="DEFEND"))
    if choice_id == "env_action":
        return _plan(ActionUnit(type="INTERACT", meta={"env_action": True}))
    if choice_id == "combat_avoid":
        return _plan(ActionUnit(type="FLEE", meta={"avoid": True}))
    return _plan(_choice_unit(choice_id))
