# prize_engine/distribution.py
"""Turn a selected rule plus match results into a payout list.

Both phases are left folds carrying ``(payouts, total)``; the pool headroom
of each step is ``prize_pool - total``, so the sum of payouts never exceeds
the prize pool. Kill payouts depend on the order participants are supplied
in: the participant reached when headroom runs out absorbs the clamp.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, localcontext
from functools import reduce
from typing import Iterable, List, Sequence, Tuple

from prize_engine import config
from prize_engine.errors import UnsupportedDistributionTypeError
from prize_engine.models import (
    KILL,
    POSITION,
    DistributionResult,
    MatchContext,
    Participant,
    PayoutEntry,
    Rule,
)

POSITION_TYPES = ("position_based", "hybrid")
KILL_TYPES = ("kill_based", "hybrid")
UNSUPPORTED_TYPES = ("percentage", "custom")

ZERO = Decimal(0)

_State = Tuple[Tuple[PayoutEntry, ...], Decimal]


def _q(amount: Decimal) -> Decimal:
    return amount.quantize(config.MONEY_QUANT)


def _floor(amount: Decimal) -> Decimal:
    return amount.quantize(config.MONEY_QUANT, rounding=ROUND_DOWN)


def _precision(rule: Rule, match: MatchContext, participants: Sequence[Participant]) -> int:
    """Digits needed to hold the largest amount of this computation at MONEY_QUANT."""
    amounts = [match.prize_pool, rule.kill_config.per_kill_prize]
    amounts += [cfg.prize for cfg in rule.position_config.positions]
    if rule.kill_config.max_kill_prize is not None:
        amounts.append(rule.kill_config.max_kill_prize)
    most_kills = max((p.kills for p in participants), default=0)
    magnitude = max(d.adjusted() for d in amounts) + len(str(most_kills)) + 1
    return magnitude - config.MONEY_QUANT.as_tuple().exponent + 4


def pool_share(pool_percentage: Decimal, prize_pool: Decimal) -> Decimal:
    return _q(pool_percentage / Decimal(100) * prize_pool)


def _emit(state: _State, prize_pool: Decimal, entry: PayoutEntry) -> _State:
    payouts, total = state
    headroom = _floor(prize_pool - total)
    if headroom <= 0 or entry.amount <= 0:
        return state
    amount = min(entry.amount, headroom)
    if amount != entry.amount:
        entry = PayoutEntry(
            user_id=entry.user_id,
            amount=amount,
            kind=entry.kind,
            position=entry.position,
            kills=entry.kills,
            label=entry.label,
        )
    return payouts + (entry,), total + amount


def position_candidates(rule: Rule, participants: Sequence[Participant]) -> List[PayoutEntry]:
    """Configured prize for every participant whose rank a position entry covers.

    Configured order first, caller order within one entry. Ranks nobody
    holds are skipped.
    """
    out: List[PayoutEntry] = []
    for cfg in rule.position_config.positions:
        for p in participants:
            if cfg.covers(p.position):
                out.append(PayoutEntry(
                    user_id=p.user_id,
                    amount=_q(cfg.prize),
                    kind=POSITION,
                    position=p.position,
                    label=cfg.label,
                ))
    return out


def kill_candidate(rule: Rule, p: Participant) -> PayoutEntry:
    raw = Decimal(p.kills) * rule.kill_config.per_kill_prize
    cap = rule.kill_config.max_kill_prize
    if cap is not None and raw > cap:
        raw = cap
    return PayoutEntry(user_id=p.user_id, amount=_q(raw), kind=KILL, kills=p.kills)


def compute(rule: Rule, match: MatchContext, participants: Iterable[Participant]) -> DistributionResult:
    """Compute payouts for ``rule`` on ``match``.

    Raises UnsupportedDistributionTypeError for percentage/custom rules.
    Non-positive prize pools give an empty result rather than an error.
    """
    if rule.distribution_type in UNSUPPORTED_TYPES:
        raise UnsupportedDistributionTypeError(
            f"Distribution type '{rule.distribution_type}' has no computed path",
            {"rule_id": rule.id, "distribution_type": rule.distribution_type},
        )
    participants = list(participants)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _precision(rule, match, participants))
        return _fold(rule, match, participants)


def _fold(rule: Rule, match: MatchContext, participants: List[Participant]) -> DistributionResult:
    prize_pool = match.prize_pool

    position_pool = ZERO
    kill_pool = ZERO
    state: _State = ((), ZERO)

    if rule.distribution_type in POSITION_TYPES:
        position_pool = pool_share(rule.position_config.pool_percentage, prize_pool)
        state = reduce(
            lambda st, entry: _emit(st, prize_pool, entry),
            position_candidates(rule, participants),
            state,
        )

    if rule.distribution_type in KILL_TYPES:
        kill_pool = pool_share(rule.kill_config.pool_percentage, prize_pool)
        state = reduce(
            lambda st, p: _emit(st, prize_pool, kill_candidate(rule, p)) if p.kills > 0 else st,
            participants,
            state,
        )

    payouts, total = state
    return DistributionResult(
        payouts=payouts,
        total_distributed=total,
        leftover=max(prize_pool - total, ZERO),
        position_pool=max(position_pool, ZERO),
        kill_pool=max(kill_pool, ZERO),
    )
