"""
Builders shared by the prize engine tests.
"""

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from prize_engine.models import (
    ANY,
    KillConfig,
    MatchContext,
    Participant,
    PositionConfig,
    PositionPrize,
    Rule,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
T0 = NOW - timedelta(days=30)

_ids = itertools.count(1)


def make_rule(**overrides) -> Rule:
    """Rule that applies to everything at NOW unless overridden."""
    base = dict(
        id=f"rule-{next(_ids):04d}",
        name="rule",
        distribution_type="position_based",
        match_type=ANY,
        game_type=ANY,
        position_config=PositionConfig(positions=(PositionPrize(position=1, prize=Decimal(100)),)),
        effective_from=T0,
        created_at=T0,
    )
    base.update(overrides)
    return Rule(**base)


def make_context(**overrides) -> MatchContext:
    base = dict(
        match_type="tdm",
        game_type="pubg_mobile",
        max_slots=10,
        entry_fee=Decimal(50),
        prize_pool=Decimal(1000),
        now=NOW,
        match_id="m-1",
    )
    base.update(overrides)
    return MatchContext(**base)


def positions(*pairs, pct=100) -> PositionConfig:
    return PositionConfig(
        positions=tuple(PositionPrize(position=p, prize=Decimal(prize)) for p, prize in pairs),
        pool_percentage=Decimal(pct),
    )


def kills(per_kill, pct=100, cap=None) -> KillConfig:
    return KillConfig(
        per_kill_prize=Decimal(per_kill),
        max_kill_prize=Decimal(cap) if cap is not None else None,
        pool_percentage=Decimal(pct),
    )


def player(user_id, kills=0, position=None) -> Participant:
    return Participant(user_id=user_id, kills=kills, position=position)
