"""Core domain models.

Every engine stage, the storage layer and the API operate on these types.
Pydantic is used for validation and serialisation at every data boundary;
persisted JSON columns hold `model_dump(mode="json")` output.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

NodeType = Literal["COMBAT", "EVENT", "REST", "SHOP", "EXIT", "HUB", "LOCATION"]
NodeState = Literal["NODE_ACTIVE", "NODE_ENDED"]
RunStatus = Literal["RUN_ACTIVE", "RUN_ENDED", "RUN_ABORTED"]
InputType = Literal["ACTION", "CHOICE", "SYSTEM"]
NarrationStatus = Literal["PENDING", "LEASED", "DONE", "ERROR", "SKIPPED"]
PolicyResult = Literal["ALLOW", "TRANSFORM", "PARTIAL", "DENY"]
ParsedBy = Literal["RULE", "LLM", "MERGED"]
RiskLevel = Literal["LOW", "MED", "HIGH"]
Angle = Literal["FRONT", "SIDE", "BACK"]
Direction = Literal["LEFT", "RIGHT", "FORWARD", "BACK"]
Personality = Literal["AGGRESSIVE", "TACTICAL", "COWARDLY", "BERSERK", "SNIPER"]
CombatOutcome = Literal["ONGOING", "VICTORY", "DEFEAT", "FLEE_SUCCESS"]
BattlePhase = Literal["START", "TURN", "END"]
ToneHint = Literal["neutral", "tense", "calm", "mysterious", "triumph", "danger"]
EventKind = Literal["BATTLE", "DAMAGE", "STATUS", "MOVE", "SYSTEM", "UI"]

Distance = Literal["ENGAGED", "CLOSE", "MID", "FAR", "OUT"]
# Closest first.
DISTANCE_ORDER: tuple[str, ...] = ("ENGAGED", "CLOSE", "MID", "FAR", "OUT")

CombatAction = Literal[
    "ATTACK_MELEE",
    "ATTACK_RANGED",
    "DEFEND",
    "EVADE",
    "MOVE",
    "USE_ITEM",
    "FLEE",
    "INTERACT",
]
NonCombatAction = Literal["TALK", "SEARCH", "OBSERVE"]

COMBAT_ACTIONS: frozenset[str] = frozenset({
    "ATTACK_MELEE", "ATTACK_RANGED", "DEFEND", "EVADE",
    "MOVE", "USE_ITEM", "FLEE", "INTERACT",
})
ATTACK_ACTIONS: frozenset[str] = frozenset({"ATTACK_MELEE", "ATTACK_RANGED"})


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class StatBlock(BaseModel):
    """Base combat stats of one actor, before any modifier."""

    max_hp: int = 100
    max_stamina: int = 5
    attack: int = 15
    defense: int = 10
    accuracy: int = 5
    evasion: int = 3
    crit_chance: int = 5  # percent
    crit_multiplier: int = 150  # 150 = x1.5
    resistance: int = 5
    speed: int = 5


class StatSnapshot(StatBlock):
    """Fully-resolved stats for one actor at one point in time."""

    damage_mult: float = 1.0
    hit_mult: float = 1.0
    taken_damage_mult: float = 1.0


StatField = Literal[
    "max_hp", "max_stamina", "attack", "defense", "accuracy", "evasion",
    "crit_chance", "crit_multiplier", "resistance", "speed",
    "damage_mult", "hit_mult", "taken_damage_mult",
]


class StatModifier(BaseModel):
    stat: StatField
    op: Literal["ADD", "SCALE"]
    value: float
    priority: int  # lower applies first
    source: str | None = None


# ---------------------------------------------------------------------------
# Input pipeline
# ---------------------------------------------------------------------------

class ParsedIntent(BaseModel):
    """Structured reading of one player input."""

    input_text: str
    intents: list[str]
    targets: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    risk_level: RiskLevel = "LOW"
    illegal_flags: list[str] = Field(default_factory=list)
    source: ParsedBy = "RULE"
    confidence: float = 0.0
    primary: str | None = None
    modifiers: list[str] = Field(default_factory=list)
    direction: Direction | None = None
    item_hint: str | None = None


class PolicyDecision(BaseModel):
    """Outcome of the input policy check.

    `intent` is set for TRANSFORM and PARTIAL: the caller must use it in
    place of the original intent.
    """

    result: PolicyResult
    reason: str | None = None
    intent: ParsedIntent | None = None


class ActionUnit(BaseModel):
    type: CombatAction
    target_id: str | None = None
    direction: Direction | None = None
    meta: dict[str, Any] | None = None


class ActionPlan(BaseModel):
    units: list[ActionUnit]
    slots_base: int = 2
    slots_used: int = 0
    bonus_slot_used: bool = False
    stamina_cost: int = 0
    policy_result: PolicyResult = "ALLOW"
    source: ParsedBy = "RULE"


# ---------------------------------------------------------------------------
# Battle state (persisted per run)
# ---------------------------------------------------------------------------

class RngState(BaseModel):
    seed: str
    cursor: int = Field(default=0, ge=0)


class PlayerCombatState(BaseModel):
    hp: int
    stamina: int


class EnemyState(BaseModel):
    id: str
    name: str | None = None
    ref: str | None = None  # catalog key the enemy was spawned from
    hp: int
    max_hp: int
    personality: Personality = "AGGRESSIVE"
    distance: Distance = "MID"
    angle: Angle = "FRONT"


class BattleState(BaseModel):
    version: Literal["battle_state_v1"] = "battle_state_v1"
    phase: BattlePhase = "START"
    last_resolved_turn_no: int = 0
    rng: RngState
    env: list[str] = Field(default_factory=list)
    player: PlayerCombatState
    enemies: list[EnemyState] = Field(default_factory=list)


class RunState(BaseModel):
    hp: int
    max_hp: int
    stamina: int
    max_stamina: int
    gold: int = 0


# ---------------------------------------------------------------------------
# Authoritative turn result
# ---------------------------------------------------------------------------

class ValueDelta(BaseModel):
    before: int
    after: int
    delta: int

    @classmethod
    def of(cls, before: int, after: int) -> ValueDelta:
        return cls(before=before, after=after, delta=after - before)


class Event(BaseModel):
    id: str
    kind: EventKind
    text: str
    tags: list[str] = Field(default_factory=list)
    data: dict[str, Any] | None = None


class PlayerDiff(BaseModel):
    hp: ValueDelta
    stamina: ValueDelta


class EnemyDiff(BaseModel):
    enemy_id: str
    hp: ValueDelta
    distance: Distance | None = None
    angle: Angle | None = None


class BattleMeta(BaseModel):
    phase: Literal["NONE", "START", "TURN", "END"] = "NONE"
    rng_consumed: int = 0


class Diff(BaseModel):
    player: PlayerDiff
    enemies: list[EnemyDiff] = Field(default_factory=list)
    battle: BattleMeta = Field(default_factory=BattleMeta)
    env: list[str] = Field(default_factory=list)


class TargetLabel(BaseModel):
    id: str
    name: str
    hint: str


class ActionSlots(BaseModel):
    base: int = 2
    bonus_available: bool = False
    max: int = 3


class UIBundle(BaseModel):
    available_actions: list[str] = Field(default_factory=list)
    target_labels: list[TargetLabel] = Field(default_factory=list)
    action_slots: ActionSlots = Field(default_factory=ActionSlots)
    tone_hint: ToneHint = "neutral"


class Choice(BaseModel):
    id: str
    label: str
    hint: str | None = None


class ResultFlags(BaseModel):
    bonus_slot: bool = False
    downed: bool = False
    battle_ended: bool = False
    node_transition: bool = False


class NodeSummary(BaseModel):
    type: NodeType
    state: NodeState


class Summary(BaseModel):
    short: str
    display: str


class ServerResult(BaseModel):
    """The authoritative, write-once result of one resolved turn."""

    version: Literal["server_result_v1"] = "server_result_v1"
    turn_no: int
    node: NodeSummary
    summary: Summary
    events: list[Event] = Field(default_factory=list)
    diff: Diff
    ui: UIBundle = Field(default_factory=UIBundle)
    choices: list[Choice] = Field(default_factory=list)
    flags: ResultFlags = Field(default_factory=ResultFlags)
