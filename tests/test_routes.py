"""HTTP-level tests: request shapes, status codes and the error envelope."""

from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend import orchestrator
from backend.app import create_app
from rpg_turns.engine.combat import DamageResult, HitResult

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(TEST_DATA_DIR))


def _turn_body(key: str, expected: int, text: str = "attack enemy 1", **options) -> dict:
    return {
        "input": {"type": "ACTION", "text": text},
        "idempotencyKey": key,
        "expectedNextTurnNo": expected,
        "options": options,
    }


def _new_run(client: TestClient, **body) -> dict:
    resp = client.post("/api/runs", json={"seed": "route-seed", **body})
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

class TestRuns:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_create_and_get(self, client: TestClient) -> None:
        run = _new_run(client, enemies=["sellsword"])
        assert run["next_turn_no"] == 1
        fetched = client.get(f"/api/runs/{run['id']}").json()
        assert fetched["battle_state"]["enemies"][0]["name"] == "Sellsword"

    def test_create_accepts_camel_case(self, client: TestClient) -> None:
        run = _new_run(client, nodeType="HUB")
        assert run["node_type"] == "HUB"
        assert run["battle_state"] is None

    def test_unknown_enemy_is_invalid_input(self, client: TestClient) -> None:
        resp = client.post("/api/runs", json={"enemies": ["dragon"]})
        assert resp.status_code == 422
        assert resp.json()["code"] == "INVALID_INPUT"

    def test_list(self, client: TestClient) -> None:
        _new_run(client)
        _new_run(client)
        assert len(client.get("/api/runs").json()) == 2

    def test_missing_run_is_404(self, client: TestClient) -> None:
        resp = client.get("/api/runs/nope")
        assert resp.status_code == 404
        assert resp.json() == {
            "code": "NOT_FOUND",
            "message": "Run not found",
            "details": {"run_id": "nope"},
        }


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------

class TestTurns:
    def test_submit_and_replay(self, client: TestClient) -> None:
        run = _new_run(client)
        first = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 1))
        assert first.status_code == 200
        assert first.json()["replay"] is False
        assert first.json()["llm"]["status"] == "PENDING"

        again = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 1))
        assert again.status_code == 200
        assert again.json()["replay"] is True
        assert again.json()["server_result"] == first.json()["server_result"]

    def test_snake_case_body(self, client: TestClient) -> None:
        run = _new_run(client)
        body = {
            "input": {"type": "ACTION", "text": "defend"},
            "idempotency_key": "k1",
            "expected_next_turn_no": 1,
            "options": {"skip_llm": True},
        }
        resp = client.post(f"/api/runs/{run['id']}/turns", json=body)
        assert resp.status_code == 200
        assert resp.json()["llm"]["status"] == "SKIPPED"

    def test_stale_turn_number_is_409(self, client: TestClient) -> None:
        run = _new_run(client)
        resp = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 3))
        assert resp.status_code == 409
        data = resp.json()
        assert data["code"] == "TURN_NO_MISMATCH"
        assert data["details"] == {"expected": 1, "received": 3}

    def test_malformed_body_is_422(self, client: TestClient) -> None:
        run = _new_run(client)
        resp = client.post(f"/api/runs/{run['id']}/turns", json={"input": {"type": "SHOUT"}})
        assert resp.status_code == 422
        data = resp.json()
        assert data["code"] == "INVALID_INPUT"
        fields = {e["field"] for e in data["details"]["errors"]}
        assert "body.idempotencyKey" in fields

    def test_text_too_long_is_422(self, client: TestClient) -> None:
        run = _new_run(client)
        resp = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 1, text="x" * 401))
        assert resp.status_code == 422

    def test_policy_deny_is_422(self, client: TestClient) -> None:
        run = _new_run(client, enemies=["street_thug"])
        finishing_blow = (
            patch("rpg_turns.engine.combat.roll_hit", return_value=HitResult(hit=True, roll=20)),
            patch("rpg_turns.engine.combat.roll_damage",
                  return_value=DamageResult(damage=500, is_crit=False, variance=1.0, base_damage=500.0)),
        )
        with finishing_blow[0], finishing_blow[1]:
            won = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 1))
        assert won.json()["server_result"]["node"]["state"] == "NODE_ENDED"

        resp = client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k2", 2))
        assert resp.status_code == 422
        assert resp.json()["code"] == "POLICY_DENY"
        assert resp.json()["message"] == "Node already ended"

    def test_list_and_detail(self, client: TestClient) -> None:
        run = _new_run(client)
        client.post(f"/api/runs/{run['id']}/turns", json=_turn_body("k1", 1))
        listed = client.get(f"/api/runs/{run['id']}/turns").json()
        assert listed == [{"turn_no": 1, "input_type": "ACTION", "llm_status": "PENDING"}]

        plain = client.get(f"/api/runs/{run['id']}/turns/1").json()
        assert "debug" not in plain
        debug = client.get(f"/api/runs/{run['id']}/turns/1", params={"include_debug": "true"}).json()
        assert debug["debug"]["idempotency_key"] == "k1"

    def test_missing_turn_is_404(self, client: TestClient) -> None:
        run = _new_run(client)
        assert client.get(f"/api/runs/{run['id']}/turns/9").status_code == 404

    def test_unhandled_error_is_500(self, monkeypatch) -> None:
        def boom(run_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(orchestrator, "get_run", boom)
        client = TestClient(create_app(TEST_DATA_DIR), raise_server_exceptions=False)
        resp = client.get("/api/runs/any")
        assert resp.status_code == 500
        assert resp.json() == {
            "code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "details": None,
        }


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestSettings:
    def test_get_masks_keys(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        data = client.get("/api/settings/llm").json()
        assert "openai_api_key" not in data
        assert data["openai_api_key_set"] is True
        assert "sk-secret" not in str(data)
        assert "openai" in data["available_providers"]

    def test_patch_tunable(self, client: TestClient) -> None:
        resp = client.patch("/api/settings/llm", json={"max_retries": 4, "temperature": 0.2})
        assert resp.status_code == 200
        assert resp.json()["max_retries"] == 4
        assert client.get("/api/settings/llm").json()["temperature"] == 0.2

    def test_patch_out_of_range(self, client: TestClient) -> None:
        resp = client.patch("/api/settings/llm", json={"temperature": 5})
        assert resp.status_code == 400
        assert resp.json()["code"] == "BAD_REQUEST"

    def test_patch_key_rejected(self, client: TestClient) -> None:
        resp = client.patch("/api/settings/llm", json={"openai_api_key": "sk-x"})
        assert resp.status_code == 400

    def test_patch_unconfigured_provider(self, client: TestClient) -> None:
        resp = client.patch("/api/settings/llm", json={"provider": "claude"})
        assert resp.status_code == 400
        assert "not configured" in resp.json()["message"]
