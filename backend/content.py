"""Static game content: enemy catalog and default player stats.

Immutable lookup data. Runs reference enemies by catalog key (`ref`); the
stats are looked up again on every turn rather than copied into the run.
"""

from dataclasses import dataclass

from rpg_turns.models import Personality, StatBlock

DEFAULT_PLAYER_STATS = StatBlock()


@dataclass(frozen=True)
class EnemyDef:
    ref: str
    name: str
    personality: Personality
    stats: StatBlock


ENEMIES: dict[str, EnemyDef] = {
    "bandit": EnemyDef(
        "bandit", "Bandit", "AGGRESSIVE",
        StatBlock(max_hp=60, attack=12, defense=8, accuracy=4, evasion=3, speed=5),
    ),
    "bandit_archer": EnemyDef(
        "bandit_archer", "Bandit Archer", "SNIPER",
        StatBlock(max_hp=45, attack=11, defense=5, accuracy=6, evasion=4, speed=6),
    ),
    "sellsword": EnemyDef(
        "sellsword", "Sellsword", "TACTICAL",
        StatBlock(max_hp=80, attack=14, defense=12, accuracy=5, evasion=3, crit_chance=8, speed=4),
    ),
    "street_thug": EnemyDef(
        "street_thug", "Street Thug", "COWARDLY",
        StatBlock(max_hp=40, attack=9, defense=6, accuracy=3, evasion=5, speed=7),
    ),
    "pit_fighter": EnemyDef(
        "pit_fighter", "Pit Fighter", "BERSERK",
        StatBlock(max_hp=90, attack=16, defense=6, accuracy=4, evasion=2,
                  crit_chance=10, crit_multiplier=175, speed=3),
    ),
}


def get_enemy(ref: str) -> EnemyDef | None:
    return ENEMIES.get(ref)
