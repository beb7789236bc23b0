"""
Tests for the HTTP adapter.
"""

import pytest
from fastapi.testclient import TestClient

from prize_engine import config
from prize_engine.api import create_app
from prize_engine.service import PrizeRuleService

MATCH = {
    "match_id": "m-42",
    "match_type": "tdm",
    "game_type": "pubg_mobile",
    "max_slots": 2,
    "entry_fee": 10,
    "prize_pool": 1000,
}


@pytest.fixture
def client(store):
    """Create test client over a fresh store."""
    return TestClient(create_app(PrizeRuleService(store)))


@pytest.fixture
def kill_rule(client):
    response = client.post("/rules", json={
        "name": "kill race",
        "match_type": "tdm",
        "distribution_type": "kill_based",
        "kill_config": {"per_kill_prize": 100, "pool_percentage": 100},
        "priority": 3,
    }, headers={"X-Actor": "tester"})
    assert response.status_code == 201
    return response.json()["rule"]


def test_health_check(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_create_and_get_rule(client, kill_rule):
    assert kill_rule["version"] == 1
    assert kill_rule["created_by"] == "tester"
    assert kill_rule["game_type"] == "all"

    response = client.get(f"/rules/{kill_rule['id']}")
    assert response.status_code == 200
    assert response.json()["rule"] == kill_rule


def test_validation_error_response(client):
    response = client.post("/rules", json={"name": "broken", "distribution_type": "position_based"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"


def test_non_json_body(client):
    response = client.post("/rules", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_unknown_rule(client):
    response = client.get("/rules/nope")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_list_rules_pagination(client, kill_rule, position_rule_payload):
    client.post("/rules", json=position_rule_payload)
    response = client.get("/rules", params={"limit": 1, "sort_by": "priority"})
    body = response.json()
    assert response.status_code == 200
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert body["rules"][0]["name"] == "TDM podium"

    response = client.get("/rules", params={"is_active": "false"})
    assert response.json()["pagination"]["total"] == 0


def test_distribute_kill_clamp(client, kill_rule):
    participants = [{"user_id": "A", "kills": 6}, {"user_id": "B", "kills": 6}]
    response = client.post("/distribute", json={"match": MATCH, "participants": participants})
    assert response.status_code == 200
    body = response.json()
    assert body["rule"]["id"] == kill_rule["id"]
    payouts = [(p["user_id"], p["amount"], p["kind"]) for p in body["distribution"]["payouts"]]
    assert payouts == [("A", "600.00", "kill"), ("B", "400.00", "kill")]
    assert body["distribution"]["leftover"] == "0.00"


def test_select_without_rules(client):
    response = client.post("/select", json=MATCH)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "no_applicable_rule"


def test_select_rejects_negative_prize_pool(client, kill_rule):
    response = client.post("/select", json=dict(MATCH, prize_pool=-5))
    assert response.status_code == 400


def test_update_history_and_restore(client, kill_rule):
    rid = kill_rule["id"]
    response = client.patch(f"/rules/{rid}", json={"priority": 8, "change_reason": "promo"})
    assert response.status_code == 200
    assert response.json()["rule"]["version"] == 2

    history = client.get(f"/rules/{rid}/history").json()
    assert history["current_version"] == 2
    assert [h["data"]["version"] for h in history["history"]] == [1]
    assert history["history"][0]["reason"] == "promo"

    response = client.post(f"/rules/{rid}/restore/1")
    assert response.status_code == 200
    assert response.json()["rule"]["priority"] == 3
    assert response.json()["rule"]["version"] == 3


def test_toggle_default_duplicate_and_stats(client, kill_rule):
    rid = kill_rule["id"]
    assert client.post(f"/rules/{rid}/toggle").json()["rule"]["is_active"] is False
    assert client.post(f"/rules/{rid}/default").json()["rule"]["is_default"] is True

    response = client.post(f"/rules/{rid}/duplicate")
    assert response.status_code == 201
    assert response.json()["rule"]["name"] == "kill race (Copy)"

    stats = client.get("/rules/stats").json()["stats"]
    assert stats["total"] == 2
    assert stats["defaults"] == 1
    assert stats["by_distribution_type"] == {"kill_based": 2}


def test_bulk_update(client, kill_rule, position_rule_payload):
    other = client.post("/rules", json=position_rule_payload).json()["rule"]
    response = client.post("/rules/bulk", json={"rule_ids": [kill_rule["id"], other["id"]],
                                                "updates": {"priority": 1}})
    assert response.status_code == 200
    assert response.json()["modified_count"] == 2

    response = client.post("/rules/bulk", json={"rule_ids": "x", "updates": {"priority": 1}})
    assert response.status_code == 400


def test_preview_unsupported_type(client):
    rule = client.post("/rules", json={
        "name": "custom split",
        "distribution_type": "custom",
    }).json()["rule"]
    response = client.post(f"/rules/{rule['id']}/preview", json={"match": MATCH, "participants": []})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "unsupported_distribution_type"


def test_admin_key_guards_mutations(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "s3cret")
    payload = {"name": "k", "distribution_type": "kill_based", "kill_config": {"per_kill_prize": 1}}
    assert client.post("/rules", json=payload).status_code == 403
    response = client.post("/rules", json=payload, headers={"X-Admin-Key": "s3cret"})
    assert response.status_code == 201
    assert client.get("/rules").status_code == 200


def test_distribute_very_large_prize_pool(client, kill_rule):
    participants = [{"user_id": "A", "kills": 6}, {"user_id": "B", "kills": 6}]
    response = client.post("/distribute", json={"match": dict(MATCH, prize_pool="1e30"),
                                                "participants": participants})
    assert response.status_code == 200
    body = response.json()["distribution"]
    assert [p["amount"] for p in body["payouts"]] == ["600.00", "600.00"]
    assert body["total_distributed"] == "1200.00"
