"""Combat-turn resolution.

`resolve_combat_turn` is the single entry point that turns an ActionPlan and
the persisted BattleState into the next BattleState plus the authoritative
ServerResult. It is synchronous and pure apart from the Rng it builds from
`battle.rng`; the advanced `{seed, cursor}` is written into the returned
state, the input state is never mutated.

Order within one turn:

    stamina cost -> player units -> bonus check -> victory / flee
    -> enemy units (speed order) -> downed check -> end-of-turn cleanup

Outside combat, `resolve_noncombat_turn` and `system_result` build the
ServerResult for exploration and SYSTEM inputs; they change no state and
make no Rng draws.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rpg_turns.engine import combat, enemy_ai
from rpg_turns.engine.rng import Rng
from rpg_turns.engine.stats import build_snapshot, position_modifiers
from rpg_turns.models import (
    ATTACK_ACTIONS,
    DISTANCE_ORDER,
    ActionPlan,
    ActionSlots,
    ActionUnit,
    BattleMeta,
    BattleState,
    CombatOutcome,
    Diff,
    Distance,
    EnemyDiff,
    EnemyState,
    Event,
    NodeState,
    NodeSummary,
    NodeType,
    PlayerDiff,
    ResultFlags,
    ServerResult,
    StatBlock,
    StatSnapshot,
    Summary,
    TargetLabel,
    UIBundle,
    ValueDelta,
)

logger = logging.getLogger(__name__)

MAX_UNITS = 3
BONUS_HP_RATIO = 0.3
FLEE_BASE = 12
FLEE_PER_ENGAGED = 2
DOWNED_RESIST_TARGET = 15

# Used when an enemy has no catalog entry.
FALLBACK_ENEMY_STATS = StatBlock(
    max_hp=100, max_stamina=5, attack=10, defense=10, accuracy=5, evasion=3,
    crit_chance=5, crit_multiplier=150, resistance=5, speed=5,
)

COMBAT_AVAILABLE_ACTIONS = [
    "ATTACK_MELEE", "ATTACK_RANGED", "DEFEND", "EVADE", "MOVE", "USE_ITEM", "FLEE",
]

OUTCOME_TEXT = {
    "VICTORY": "victory",
    "DEFEAT": "defeat",
    "FLEE_SUCCESS": "escaped",
}


@dataclass
class CombatTurnResult:
    battle: BattleState
    result: ServerResult
    outcome: CombatOutcome
    rng_consumed: int


def _shift(distance: Distance, step: int) -> Distance:
    idx = DISTANCE_ORDER.index(distance) + step
    return DISTANCE_ORDER[max(0, min(len(DISTANCE_ORDER) - 1, idx))]  # type: ignore[return-value]


@dataclass
class _Speed:
    id: str
    speed: int


class _Turn:
    """Mutable scratch state for one resolution."""

    def __init__(
        self,
        turn_no: int,
        battle: BattleState,
        player_stats: StatBlock,
        enemy_stats: dict[str, StatBlock],
    ) -> None:
        self.turn_no = turn_no
        self.rng = Rng.from_state(battle.rng)
        self.state = battle.model_copy(deep=True)
        self.state.phase = "TURN"
        self.player = build_snapshot(player_stats, [])
        self.enemy_stats = enemy_stats
        self.events: list[Event] = []
        self.hp_before = {e.id: e.hp for e in self.state.enemies}

    def name(self, enemy: EnemyState) -> str:
        return enemy.name or enemy.id

    def enemy(self, enemy_id: str) -> EnemyState | None:
        return next((e for e in self.state.enemies if e.id == enemy_id), None)

    def live_enemies(self) -> list[EnemyState]:
        return [e for e in self.state.enemies if e.hp > 0]

    def enemy_snapshot(self, enemy: EnemyState, with_position: bool = False) -> StatSnapshot:
        base = self.enemy_stats.get(enemy.id, FALLBACK_ENEMY_STATS)
        mods = position_modifiers(enemy.angle) if with_position else []
        return build_snapshot(base, mods)

    def emit(self, prefix: str, kind, text: str, tags: list[str], data: dict | None = None) -> None:
        self.events.append(Event(
            id=f"{prefix}_{self.rng.cursor}", kind=kind, text=text, tags=tags, data=data,
        ))

    # -- player ------------------------------------------------------------

    def player_unit(self, unit: ActionUnit, forced: bool) -> None:
        if unit.type in ATTACK_ACTIONS:
            self.player_attack(unit, forced)
        elif unit.type == "DEFEND":
            self.state.player.stamina = min(self.player.max_stamina, self.state.player.stamina + 1)
            self.emit("defend", "BATTLE", "You take a defensive stance.", ["DEFEND"])
        elif unit.type == "EVADE":
            self.emit("evade", "MOVE", "You move to evade.", ["EVADE"])
        elif unit.type == "MOVE":
            direction = unit.direction or "FORWARD"
            step = -1 if direction in ("FORWARD", "LEFT") else 1
            for enemy in self.live_enemies():
                enemy.distance = _shift(enemy.distance, step)
            self.emit("move", "MOVE", f"You move {direction.lower()}.", ["MOVE"])
        elif unit.type == "USE_ITEM":
            self.emit("item", "BATTLE", "You use an item.", ["USE_ITEM"])
        elif unit.type == "INTERACT":
            self.emit("interact", "BATTLE", "You interact with your surroundings.", ["INTERACT"])
        # FLEE is checked once after all units.

    def player_attack(self, unit: ActionUnit, forced: bool) -> None:
        if unit.target_id:
            target = self.enemy(unit.target_id)
        else:
            target = next(iter(self.live_enemies()), None)
        if target is None or target.hp <= 0:
            return

        defender = self.enemy_snapshot(target, with_position=True)
        hit = combat.roll_hit(self.rng, self.player, defender, forced)
        if not hit.hit:
            self.emit(f"miss_{target.id}", "BATTLE",
                      f"Your attack on {self.name(target)} misses.", ["MISS"])
            return

        dmg = combat.roll_damage(self.rng, self.player, defender, forced)
        target.hp = max(0, target.hp - dmg.damage)
        crit = " (critical!)" if dmg.is_crit else ""
        self.emit(
            f"dmg_{target.id}", "DAMAGE",
            f"You deal {dmg.damage} damage to {self.name(target)}{crit}.",
            ["CRIT"] if dmg.is_crit else [],
            {"damage": dmg.damage, "is_crit": dmg.is_crit, "target_id": target.id},
        )

    def flee_succeeds(self) -> bool:
        roll = self.rng.d20()
        engaged = sum(1 for e in self.live_enemies() if e.distance == "ENGAGED")
        return roll + self.player.speed >= FLEE_BASE + engaged * FLEE_PER_ENGAGED

    # -- enemies -----------------------------------------------------------

    def enemy_phase(self) -> None:
        live = self.live_enemies()
        speeds = [
            _Speed(e.id, self.enemy_stats.get(e.id, FALLBACK_ENEMY_STATS).speed) for e in live
        ]
        for enemy_id in enemy_ai.sort_by_speed(speeds):
            enemy = self.enemy(enemy_id)
            if enemy is None or enemy.hp <= 0:
                continue
            snap = self.enemy_snapshot(enemy)
            for unit in enemy_ai.select_actions(enemy):
                self.enemy_unit(enemy, unit, snap)

    def enemy_unit(self, enemy: EnemyState, unit: ActionUnit, snap: StatSnapshot) -> None:
        name = self.name(enemy)
        if unit.type in ATTACK_ACTIONS:
            hit = combat.roll_hit(self.rng, snap, self.player)
            if not hit.hit:
                self.emit(f"enemy_miss_{enemy.id}", "BATTLE",
                          f"{name}'s attack misses.", ["ENEMY_MISS"])
                return
            dmg = combat.roll_damage(self.rng, snap, self.player)
            self.state.player.hp = max(0, self.state.player.hp - dmg.damage)
            crit = " (critical!)" if dmg.is_crit else ""
            self.emit(
                f"enemy_dmg_{enemy.id}", "DAMAGE",
                f"{name} deals {dmg.damage} damage to you{crit}.",
                ["ENEMY_ATTACK"] + (["CRIT"] if dmg.is_crit else []),
                {"damage": dmg.damage, "is_crit": dmg.is_crit, "source_id": enemy.id},
            )
        elif unit.type == "MOVE":
            direction = unit.direction or "FORWARD"
            enemy.distance = _shift(enemy.distance, -1 if direction == "FORWARD" else 1)
            self.emit(f"enemy_move_{enemy.id}", "MOVE",
                      f"{name} moves {direction.lower()}.", ["ENEMY_MOVE"])
        elif unit.type == "DEFEND":
            self.emit(f"enemy_defend_{enemy.id}", "BATTLE",
                      f"{name} takes a defensive stance.", ["ENEMY_DEFEND"])


def resolve_combat_turn(
    turn_no: int,
    plan: ActionPlan,
    battle: BattleState,
    player_stats: StatBlock,
    enemy_stats: dict[str, StatBlock] | None = None,
) -> CombatTurnResult:
    t = _Turn(turn_no, battle, player_stats, enemy_stats or {})
    state = t.state

    hp_before = state.player.hp
    stamina_before = state.player.stamina
    forced = stamina_before == 0 and plan.stamina_cost > 0
    state.player.stamina = max(0, stamina_before - plan.stamina_cost)

    units = plan.units[:MAX_UNITS]
    attacked = False
    for unit in units:
        t.player_unit(unit, forced)
        if unit.type in ATTACK_ACTIONS:
            attacked = True

    bonus = attacked and any(
        e.hp / max(1, e.max_hp) <= BONUS_HP_RATIO for e in t.live_enemies()
    )

    outcome: CombatOutcome = "ONGOING"
    if all(e.hp <= 0 for e in state.enemies):
        outcome = "VICTORY"

    if outcome == "ONGOING" and any(u.type == "FLEE" for u in plan.units):
        if t.flee_succeeds():
            outcome = "FLEE_SUCCESS"
            t.emit("flee", "BATTLE", "You escape the fight.", ["FLEE"])
        else:
            t.emit("flee_fail", "BATTLE", "You fail to escape.", ["FLEE_FAIL"])

    if outcome == "ONGOING":
        t.enemy_phase()

    downed = False
    if outcome == "ONGOING" and state.player.hp <= 0:
        if t.rng.d20() + t.player.resistance >= DOWNED_RESIST_TARGET:
            state.player.hp = 1
            t.emit("downed_resist", "BATTLE", "You stay on your feet.", ["DOWNED_RESIST"])
        else:
            downed = True
            outcome = "DEFEAT"
            t.emit("downed", "BATTLE", "You fall.", ["DOWNED"])

    if outcome in ("ONGOING", "VICTORY"):
        for enemy in state.enemies:
            if enemy.angle == "BACK":
                enemy.angle = "FRONT"

    ended = outcome != "ONGOING"
    if ended:
        state.phase = "END"
        t.emit("combat_end", "BATTLE", f"Combat over: {OUTCOME_TEXT[outcome]}.",
               ["COMBAT_END", outcome])

    state.rng = t.rng.get_state()
    state.last_resolved_turn_no = turn_no

    summary = ", ".join([u.type for u in units] + ([outcome] if ended else []))
    result = ServerResult(
        turn_no=turn_no,
        node=NodeSummary(type="COMBAT", state="NODE_ENDED" if ended else "NODE_ACTIVE"),
        summary=Summary(short=summary, display=summary),
        events=t.events,
        diff=Diff(
            player=PlayerDiff(
                hp=ValueDelta.of(hp_before, state.player.hp),
                stamina=ValueDelta.of(stamina_before, state.player.stamina),
            ),
            enemies=[
                EnemyDiff(
                    enemy_id=e.id,
                    hp=ValueDelta.of(t.hp_before[e.id], e.hp),
                    distance=e.distance,
                    angle=e.angle,
                )
                for e in state.enemies
            ],
            battle=BattleMeta(phase="END" if ended else "TURN", rng_consumed=t.rng.consumed),
            env=list(state.env),
        ),
        ui=UIBundle(
            available_actions=[] if ended else list(COMBAT_AVAILABLE_ACTIONS),
            target_labels=[
                TargetLabel(id=e.id, name=t.name(e), hint=f"HP: {e.hp}")
                for e in t.live_enemies()
            ],
            action_slots=ActionSlots(bonus_available=bonus),
            tone_hint="danger" if downed else "triumph" if ended else "tense",
        ),
        flags=ResultFlags(bonus_slot=bonus, downed=downed, battle_ended=ended, node_transition=ended),
    )

    logger.debug(
        "combat turn %d resolved: outcome=%s rng_consumed=%d events=%d",
        turn_no, outcome, t.rng.consumed, len(t.events),
    )
    return CombatTurnResult(battle=state, result=result, outcome=outcome, rng_consumed=t.rng.consumed)


# ---------------------------------------------------------------------------
# Non-combat and system results (no Rng draws)
# ---------------------------------------------------------------------------

NONCOMBAT_AVAILABLE_ACTIONS = ["TALK", "SEARCH", "OBSERVE"]

NONCOMBAT_TEXT = {
    "TALK": "You strike up a conversation.",
    "SEARCH": "You search the area.",
    "OBSERVE": "You take in your surroundings.",
}


def _unchanged(hp: int, stamina: int) -> PlayerDiff:
    return PlayerDiff(hp=ValueDelta.of(hp, hp), stamina=ValueDelta.of(stamina, stamina))


def resolve_noncombat_turn(
    turn_no: int,
    node_type: NodeType,
    plan: ActionPlan,
    hp: int,
    stamina: int,
    note: str | None = None,
) -> ServerResult:
    """Result for a turn outside combat. Deterministic; state is unchanged.

    `note` is a policy reason to surface, e.g. why a combat action was
    turned into observation.
    """
    events: list[Event] = []
    if note:
        events.append(Event(id=f"policy_{turn_no}", kind="SYSTEM", text=note, tags=["TRANSFORMED"]))

    labels = []
    for i, unit in enumerate(plan.units):
        action = (unit.meta or {}).get("original_intent", unit.type)
        labels.append(action)
        events.append(Event(
            id=f"action_{turn_no}_{i}",
            kind="UI",
            text=NONCOMBAT_TEXT.get(action, "You interact with your surroundings."),
            tags=[action],
        ))

    summary = ", ".join(labels) or "OBSERVE"
    return ServerResult(
        turn_no=turn_no,
        node=NodeSummary(type=node_type, state="NODE_ACTIVE"),
        summary=Summary(short=summary, display=summary),
        events=events,
        diff=Diff(player=_unchanged(hp, stamina)),
        ui=UIBundle(available_actions=list(NONCOMBAT_AVAILABLE_ACTIONS), tone_hint="calm"),
    )


def system_result(
    turn_no: int,
    node_type: NodeType,
    node_state: NodeState,
    hp: int,
    stamina: int,
    text: str,
) -> ServerResult:
    """Result for a SYSTEM input: one event, no state change."""
    return ServerResult(
        turn_no=turn_no,
        node=NodeSummary(type=node_type, state=node_state),
        summary=Summary(short="SYSTEM", display=text),
        events=[Event(id=f"system_{turn_no}", kind="SYSTEM", text=text, tags=["SYSTEM"])],
        diff=Diff(player=_unchanged(hp, stamina)),
    )
