"""Adversary behaviour selection and action ordering.

Selection is a pure function of personality, distance band and hp ratio;
it never draws from the Rng.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from rpg_turns.models import DISTANCE_ORDER, ActionUnit, Distance, EnemyState

PLAYER_ID = "player"
COWARD_HP_RATIO = 0.3


def distance_index(distance: Distance) -> int:
    return DISTANCE_ORDER.index(distance)


def _melee() -> list[ActionUnit]:
    return [ActionUnit(type="ATTACK_MELEE", target_id=PLAYER_ID)]


def _close_in(enemy: EnemyState, reach: Distance) -> list[ActionUnit]:
    if distance_index(enemy.distance) > distance_index(reach):
        return [ActionUnit(type="MOVE", direction="FORWARD")]
    return _melee()


def _sniper(enemy: EnemyState) -> list[ActionUnit]:
    if distance_index(enemy.distance) < distance_index("MID"):
        return [ActionUnit(type="MOVE", direction="BACK")]
    return [ActionUnit(type="ATTACK_RANGED", target_id=PLAYER_ID)]


def _cowardly(enemy: EnemyState) -> list[ActionUnit]:
    ratio = enemy.hp / max(1, enemy.max_hp)
    if ratio < COWARD_HP_RATIO and distance_index(enemy.distance) < distance_index("FAR"):
        return [ActionUnit(type="MOVE", direction="BACK")]
    if distance_index(enemy.distance) <= distance_index("CLOSE"):
        return _melee()
    return [ActionUnit(type="DEFEND")]


def select_actions(enemy: EnemyState) -> list[ActionUnit]:
    """Pick at most one action for `enemy` this round."""
    if enemy.personality == "TACTICAL":
        return _close_in(enemy, "CLOSE")
    if enemy.personality == "SNIPER":
        return _sniper(enemy)
    if enemy.personality == "COWARDLY":
        return _cowardly(enemy)
    # AGGRESSIVE and BERSERK
    return _close_in(enemy, "ENGAGED")


class HasSpeed(Protocol):
    id: str
    speed: int


def sort_by_speed(actors: Iterable[HasSpeed]) -> list[str]:
    """Actor ids, fastest first. Ties keep input order."""
    return [a.id for a in sorted(actors, key=lambda a: -a.speed)]
