"""Tests for rpg_turns.engine.stats — modifier pipeline and clamps."""

from rpg_turns.engine.stats import PRIORITY_ENV, build_snapshot, position_modifiers
from rpg_turns.models import StatBlock, StatModifier


def _mod(stat: str, op: str, value: float, priority: int = 300) -> StatModifier:
    return StatModifier(stat=stat, op=op, value=value, priority=priority)


class TestBuildSnapshot:
    def test_no_modifiers_copies_base(self) -> None:
        snap = build_snapshot(StatBlock(), [])
        assert snap.attack == 15
        assert snap.defense == 10
        assert snap.damage_mult == 1.0
        assert snap.hit_mult == 1.0
        assert snap.taken_damage_mult == 1.0

    def test_scale_reduces_defense(self) -> None:
        snap = build_snapshot(StatBlock(defense=10), [_mod("defense", "SCALE", -0.2, 950)])
        assert snap.defense == 8

    def test_add_raises_crit(self) -> None:
        snap = build_snapshot(StatBlock(crit_chance=5), [_mod("crit_chance", "ADD", 10, 950)])
        assert snap.crit_chance == 15

    def test_lower_priority_applies_first(self) -> None:
        mods = [_mod("attack", "SCALE", 0.5, 400), _mod("attack", "ADD", 10, 200)]
        # (10 + 10) * 1.5, not 10 * 1.5 + 10
        assert build_snapshot(StatBlock(attack=10), mods).attack == 30

    def test_equal_priority_keeps_input_order(self) -> None:
        add_first = [_mod("attack", "ADD", 10, 300), _mod("attack", "SCALE", 0.5, 300)]
        scale_first = [_mod("attack", "SCALE", 0.5, 300), _mod("attack", "ADD", 10, 300)]
        assert build_snapshot(StatBlock(attack=10), add_first).attack == 30
        assert build_snapshot(StatBlock(attack=10), scale_first).attack == 25

    def test_integer_fields_rounded(self) -> None:
        snap = build_snapshot(StatBlock(attack=15), [_mod("attack", "SCALE", 0.1)])
        assert snap.attack == 17  # 16.5 rounds up
        assert isinstance(snap.attack, int)

    def test_multipliers_left_unrounded(self) -> None:
        snap = build_snapshot(StatBlock(), [
            _mod("hit_mult", "SCALE", 0.15),
            _mod("damage_mult", "ADD", 0.25),
        ])
        assert abs(snap.hit_mult - 1.15) < 1e-9
        assert snap.damage_mult == 1.25

    def test_crit_chance_clamped(self) -> None:
        snap = build_snapshot(StatBlock(crit_chance=45), [_mod("crit_chance", "ADD", 30)])
        assert snap.crit_chance == 50
        snap = build_snapshot(StatBlock(crit_chance=5), [_mod("crit_chance", "ADD", -30)])
        assert snap.crit_chance == 0

    def test_crit_multiplier_clamped(self) -> None:
        high = build_snapshot(StatBlock(crit_multiplier=200), [_mod("crit_multiplier", "ADD", 100)])
        low = build_snapshot(StatBlock(crit_multiplier=150), [_mod("crit_multiplier", "ADD", -90)])
        assert high.crit_multiplier == 250
        assert low.crit_multiplier == 100

    def test_pools_never_below_one(self) -> None:
        snap = build_snapshot(StatBlock(), [
            _mod("max_hp", "ADD", -500),
            _mod("max_stamina", "SCALE", -1.0),
        ])
        assert snap.max_hp == 1
        assert snap.max_stamina == 1

    def test_other_stats_never_negative(self) -> None:
        snap = build_snapshot(StatBlock(), [
            _mod("defense", "ADD", -50),
            _mod("speed", "ADD", -50),
        ])
        assert snap.defense == 0
        assert snap.speed == 0

    def test_base_not_mutated(self) -> None:
        base = StatBlock(defense=10)
        build_snapshot(base, [_mod("defense", "ADD", 5)])
        assert base.defense == 10


class TestPositionModifiers:
    def test_front_has_none(self) -> None:
        assert position_modifiers("FRONT") == []

    def test_side_reduces_defense_ten_percent(self) -> None:
        snap = build_snapshot(StatBlock(defense=10), position_modifiers("SIDE"))
        assert snap.defense == 9
        assert snap.crit_chance == 5

    def test_back_reduces_defense_and_adds_crit(self) -> None:
        snap = build_snapshot(StatBlock(defense=10, crit_chance=5), position_modifiers("BACK"))
        assert snap.defense == 8
        assert snap.crit_chance == 15

    def test_use_highest_band(self) -> None:
        assert all(m.priority == PRIORITY_ENV for m in position_modifiers("BACK"))

    def test_apply_after_buffs(self) -> None:
        buff = _mod("defense", "ADD", 10, 300)
        snap = build_snapshot(StatBlock(defense=10), position_modifiers("BACK") + [buff])
        assert snap.defense == 16  # (10 + 10) * 0.8
