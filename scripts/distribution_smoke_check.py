from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv


def _call(url: str, method: str = "GET", body: dict | None = None, headers: dict | None = None) -> tuple[int, dict]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, method=method)
    req.add_header("Content-Type", "application/json")
    for k, v in (headers or {}).items():
        req.add_header(k, v)
    try:
        with urllib.request.urlopen(req, timeout=20) as resp:
            return resp.status, json.loads(resp.read().decode("utf-8") or "{}")
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read().decode("utf-8") or "{}")


def run(base_url: str, match_type: str, game_type: str) -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
    load_dotenv(root / ".env")

    from prize_engine import config

    headers = {"X-Actor": "smoke-check"}
    if config.ADMIN_API_KEY:
        headers["X-Admin-Key"] = config.ADMIN_API_KEY

    status, body = _call(f"{base_url}/healthz")
    assert status == 200 and body.get("ok"), f"/healthz failed: {status} {body}"

    # High-priority kill rule, scoped to one match/game type so it wins over existing defaults.
    status, body = _call(f"{base_url}/rules", "POST", {
        "name": "smoke kill rule",
        "match_type": match_type,
        "game_type": game_type,
        "distribution_type": "kill_based",
        "kill_config": {"per_kill_prize": 100, "pool_percentage": 100},
        "min_participants": 2,
        "max_participants": 2,
        "prize_pool_range": {"min": 1000, "max": 1000},
        "priority": 10_000,
    }, headers)
    assert status == 201, f"create failed: {status} {body}"
    rule_id = body["rule"]["id"]

    match = {"match_id": "smoke-1", "match_type": match_type, "game_type": game_type,
             "max_slots": 2, "entry_fee": 0, "prize_pool": 1000}
    status, body = _call(f"{base_url}/select", "POST", match)
    assert status == 200 and body["applicable_rule"]["id"] == rule_id, f"select failed: {status} {body}"

    participants = [{"user_id": "A", "kills": 6}, {"user_id": "B", "kills": 6}]
    status, body = _call(f"{base_url}/distribute", "POST", {"match": match, "participants": participants})
    assert status == 200, f"distribute failed: {status} {body}"
    amounts = {p["user_id"]: Decimal(p["amount"]) for p in body["distribution"]["payouts"]}
    assert amounts == {"A": Decimal(600), "B": Decimal(400)}, f"unexpected clamp: {amounts}"
    assert Decimal(body["distribution"]["total_distributed"]) <= Decimal(1000), "pool exceeded"

    # Reversed order moves the clamp to the other participant.
    status, body = _call(f"{base_url}/distribute", "POST",
                         {"match": match, "participants": list(reversed(participants))})
    amounts = {p["user_id"]: Decimal(p["amount"]) for p in body["distribution"]["payouts"]}
    assert amounts == {"A": Decimal(400), "B": Decimal(600)}, f"order sensitivity broken: {amounts}"

    status, body = _call(f"{base_url}/rules/{rule_id}", "PATCH",
                         {"priority": 10_001, "change_reason": "smoke edit"}, headers)
    assert status == 200 and body["rule"]["version"] == 2, f"update failed: {status} {body}"
    status, body = _call(f"{base_url}/rules/{rule_id}/history")
    assert status == 200 and len(body["history"]) == 1, f"history failed: {status} {body}"
    assert body["history"][0]["data"]["version"] == 1, "snapshot does not hold the old version"

    # Leave nothing active behind.
    status, body = _call(f"{base_url}/rules/{rule_id}/deactivate", "POST", {"change_reason": "smoke done"}, headers)
    assert status == 200 and body["rule"]["is_active"] is False, f"deactivate failed: {status} {body}"

    print(f"OK rule_id={rule_id}")
    print("OK kill_clamp=600/400 order_sensitive=True")
    print(f"OK versions={body['rule']['version']}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run smoke checks against a running prize engine API.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080", help="API base URL")
    parser.add_argument("--match-type", default="tdm", help="Match type used for the synthetic rule")
    parser.add_argument("--game-type", default="pubg_mobile", help="Game type used for the synthetic rule")
    args = parser.parse_args()
    run(args.base_url.rstrip("/"), args.match_type, args.game_type)


if __name__ == "__main__":
    main()
