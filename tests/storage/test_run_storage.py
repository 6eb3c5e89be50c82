"""Tests for run rows and storage initialization."""

from pathlib import Path

from backend import storage

from rpg_turns.models import BattleState, PlayerCombatState, RngState, RunState, StatBlock

TEST_DATA_DIR = Path("data-tests")


def _run_state():
    return RunState(hp=100, max_hp=100, stamina=5, max_stamina=5)


def test_init_creates_database_file():
    """init_storage creates game.db in the data directory."""
    assert (TEST_DATA_DIR / "game.db").is_file()
    assert storage.data_dir() == TEST_DATA_DIR


def test_create_and_get_run():
    """A new run starts active at turn 0 with JSON state stored as dicts."""
    battle = BattleState(
        rng=RngState(seed="s1"),
        player=PlayerCombatState(hp=100, stamina=5),
    )
    run = storage.create_run("s1", "COMBAT", StatBlock(), _run_state(), battle)
    assert len(run["id"]) == 32

    loaded = storage.get_run(run["id"])
    assert loaded["status"] == "RUN_ACTIVE"
    assert loaded["node_state"] == "NODE_ACTIVE"
    assert loaded["current_turn_no"] == 0
    assert loaded["player_stats"]["attack"] == 15
    assert loaded["battle_state"]["rng"] == {"seed": "s1", "cursor": 0}


def test_run_without_battle():
    """Non-combat runs store no battle state."""
    run = storage.create_run("s2", "HUB", StatBlock(), _run_state())
    assert storage.get_run(run["id"])["battle_state"] is None


def test_get_missing_run():
    """Unknown ids return None."""
    assert storage.get_run("nope") is None


def test_list_runs():
    """Every created run is listed."""
    a = storage.create_run("a", "HUB", StatBlock(), _run_state())
    b = storage.create_run("b", "HUB", StatBlock(), _run_state())
    ids = {r["id"] for r in storage.list_runs()}
    assert ids == {a["id"], b["id"]}


def test_reinit_uses_new_directory(tmp_path):
    """Re-initializing points storage at a fresh, empty database."""
    storage.create_run("a", "HUB", StatBlock(), _run_state())
    storage.init_storage(tmp_path)
    assert storage.list_runs() == []
    assert (tmp_path / "game.db").is_file()
