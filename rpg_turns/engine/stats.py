"""Stat pipeline: base stat block + ordered modifiers -> StatSnapshot.

Priority bands (lower applies first):

    BASE 100 -> GEAR 200 -> BUFF 300 -> DEBUFF 400 -> FORCED 900 -> ENV 950

ADD adds to the running value. SCALE multiplies the running value by
(1 + value), so the order in which modifiers land is observable. After all
modifiers the integer fields are rounded and clamped; the three multipliers
stay unrounded.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from rpg_turns.models import Angle, StatBlock, StatModifier, StatSnapshot

PRIORITY_BASE = 100
PRIORITY_GEAR = 200
PRIORITY_BUFF = 300
PRIORITY_DEBUFF = 400
PRIORITY_FORCED = 900
PRIORITY_ENV = 950

# (min, max) per rounded field; None means unbounded above.
CLAMPS: dict[str, tuple[int, int | None]] = {
    "max_hp": (1, None),
    "max_stamina": (1, None),
    "attack": (0, None),
    "defense": (0, None),
    "accuracy": (0, None),
    "evasion": (0, None),
    "crit_chance": (0, 50),
    "crit_multiplier": (100, 250),
    "resistance": (0, None),
    "speed": (0, None),
}


def _round_half_up(value: float) -> int:
    # Half rounds toward +inf, never to even.
    return math.floor(value + 0.5)


def build_snapshot(base: StatBlock, modifiers: Iterable[StatModifier]) -> StatSnapshot:
    values: dict[str, float] = base.model_dump()
    values.update(damage_mult=1.0, hit_mult=1.0, taken_damage_mult=1.0)

    # sorted() is stable: equal priorities keep their input order.
    for mod in sorted(modifiers, key=lambda m: m.priority):
        if mod.op == "ADD":
            values[mod.stat] += mod.value
        else:
            values[mod.stat] *= 1 + mod.value

    for field, (low, high) in CLAMPS.items():
        v = max(low, _round_half_up(values[field]))
        values[field] = v if high is None else min(high, v)

    return StatSnapshot(**values)


def position_modifiers(angle: Angle) -> list[StatModifier]:
    """Defender modifiers for the angle an attack comes from.

    SIDE: defense -10%. BACK: defense -20% and +10 crit chance.
    """
    if angle == "SIDE":
        return [StatModifier(stat="defense", op="SCALE", value=-0.1,
                             priority=PRIORITY_ENV, source="position:SIDE")]
    if angle == "BACK":
        return [
            StatModifier(stat="defense", op="SCALE", value=-0.2,
                         priority=PRIORITY_ENV, source="position:BACK"),
            StatModifier(stat="crit_chance", op="ADD", value=10,
                         priority=PRIORITY_ENV, source="position:BACK"),
        ]
    return []
