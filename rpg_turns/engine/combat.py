"""Hit and damage resolvers.

Both draw from the caller's Rng, so the cursor advances by a fixed amount
per call: one draw for a hit roll, two for a damage roll (variance, then
crit). The `forced` flag marks an action taken at zero stamina; the caller
decides it, these functions only apply its penalty.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from rpg_turns.engine.rng import Rng
from rpg_turns.models import StatSnapshot

HIT_BASE = 10
FORCED_ACCURACY_PENALTY = -5
FORCED_DAMAGE_MULT = 0.8
CRIT_DEFENSE_FACTOR = 0.7


@dataclass(frozen=True)
class HitResult:
    hit: bool
    roll: int
    auto_miss: bool = False
    auto_hit: bool = False


@dataclass(frozen=True)
class DamageResult:
    damage: int
    is_crit: bool
    variance: float
    base_damage: float


def roll_hit(
    rng: Rng,
    attacker: StatSnapshot,
    defender: StatSnapshot,
    forced: bool = False,
) -> HitResult:
    roll = rng.d20()
    if roll == 1:
        return HitResult(hit=False, roll=roll, auto_miss=True)
    if roll == 20:
        return HitResult(hit=True, roll=roll, auto_hit=True)

    accuracy = math.floor(attacker.accuracy * attacker.hit_mult)
    if forced:
        accuracy += FORCED_ACCURACY_PENALTY
    return HitResult(hit=roll + accuracy >= HIT_BASE + defender.evasion, roll=roll)


def damage_formula(
    attacker: StatSnapshot,
    defender: StatSnapshot,
    variance: float,
    is_crit: bool,
    forced: bool = False,
) -> DamageResult:
    """Deterministic half of the damage roll, split out for testing."""
    defense = math.floor(defender.defense * CRIT_DEFENSE_FACTOR) if is_crit else defender.defense
    base = attacker.attack * 100 / (100 + defense)
    crit_mult = attacker.crit_multiplier / 100 if is_crit else 1.0
    forced_mult = FORCED_DAMAGE_MULT if forced else 1.0
    raw = base * variance * crit_mult * forced_mult * attacker.damage_mult
    return DamageResult(
        damage=max(1, math.floor(raw)),
        is_crit=is_crit,
        variance=variance,
        base_damage=base,
    )


def roll_damage(
    rng: Rng,
    attacker: StatSnapshot,
    defender: StatSnapshot,
    forced: bool = False,
) -> DamageResult:
    variance = 0.9 + rng.next() * 0.2
    is_crit = rng.next() * 100 < attacker.crit_chance
    return damage_formula(attacker, defender, variance, is_crit, forced)
