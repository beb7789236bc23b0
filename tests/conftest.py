"""
Shared fixtures for the prize engine tests.
"""

import pytest

from prize_engine.service import PrizeRuleService
from prize_engine.store import RuleStore
from tests.helpers import NOW


@pytest.fixture
def store(tmp_path):
    s = RuleStore(tmp_path / "rules.db")
    s.init_db()
    return s


@pytest.fixture
def service(store):
    return PrizeRuleService(store, clock=lambda: NOW)


@pytest.fixture
def position_rule_payload():
    return {
        "name": "TDM podium",
        "match_type": "tdm",
        "game_type": "pubg_mobile",
        "distribution_type": "position_based",
        "position_config": {
            "positions": [
                {"position": 1, "prize": 500, "label": "1st Place"},
                {"position": 2, "prize": 300, "label": "2nd Place"},
                {"position": 3, "prize": 200, "label": "3rd Place"},
            ],
            "pool_percentage": 100,
        },
        "priority": 5,
    }
