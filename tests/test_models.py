"""
Tests for payload parsing.
"""

from datetime import timezone
from decimal import Decimal

import pytest

from prize_engine.errors import ValidationError
from prize_engine.models import (
    ANY,
    Specific,
    context_from_dict,
    parse_scope,
    participant_from_dict,
    rule_from_dict,
)


def test_wildcard_scope_parses_to_any():
    assert parse_scope("all", ("tdm",), "match_type") is ANY
    assert parse_scope(None, ("tdm",), "match_type") is ANY
    assert parse_scope("tdm", ("tdm",), "match_type") == Specific("tdm")
    with pytest.raises(ValidationError):
        parse_scope("chess", ("tdm",), "match_type")


def test_rule_defaults():
    rule = rule_from_dict({"name": "r", "distribution_type": "kill_based", "kill_config": {"per_kill_prize": "2.5"}})
    assert rule.match_type is ANY and rule.game_type is ANY
    assert rule.kill_config.per_kill_prize == Decimal("2.5")
    assert rule.kill_config.max_kill_prize is None
    assert rule.kill_config.pool_percentage == 0
    assert rule.position_config.pool_percentage == 100
    assert rule.priority == 0
    assert rule.is_active is True and rule.is_default is False
    assert rule.version == 1


def test_naive_datetimes_are_utc():
    rule = rule_from_dict({"name": "r", "distribution_type": "custom", "effective_from": "2026-01-01T00:00:00"})
    assert rule.effective_from.tzinfo == timezone.utc


def test_bad_numbers_are_validation_errors():
    with pytest.raises(ValidationError):
        rule_from_dict({"name": "r", "distribution_type": "kill_based", "kill_config": {"per_kill_prize": "lots"}})
    with pytest.raises(ValidationError):
        rule_from_dict({"name": "r", "distribution_type": "custom", "priority": 1.5})


def test_context_from_dict():
    ctx = context_from_dict({"match_type": "tdm", "game_type": "free_fire", "max_slots": "8",
                             "entry_fee": "25", "prize_pool": 180, "now": "2026-02-01T10:00:00Z"})
    assert ctx.max_slots == 8
    assert ctx.entry_fee == Decimal(25)
    assert ctx.prize_pool == Decimal(180)
    assert ctx.now.tzinfo is not None
    with pytest.raises(ValidationError):
        context_from_dict({"match_type": "tdm", "game_type": "free_fire"})


def test_participant_from_dict():
    p = participant_from_dict({"user_id": 17, "kills": 3, "position": 2})
    assert (p.user_id, p.kills, p.position) == ("17", 3, 2)
    assert participant_from_dict({"user_id": "x"}).position is None
    with pytest.raises(ValidationError):
        participant_from_dict({"user_id": "x", "kills": -1})
    with pytest.raises(ValidationError):
        participant_from_dict({"user_id": "x", "position": 0})
    with pytest.raises(ValidationError):
        participant_from_dict({"kills": 1})
