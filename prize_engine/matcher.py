# prize_engine/matcher.py
"""Select the single prize rule that applies to a finished match.

Every applicability condition is its own predicate; ``applies`` is their
conjunction. Ordering among applicable rules is a total order, so the same
rule set and context always give the same answer.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from prize_engine.errors import NoApplicableRuleError
from prize_engine.models import MatchContext, Rule, scope_covers
from prize_engine.validation import validate_context

log = logging.getLogger("prize-engine.matcher")


def scope_matches(rule: Rule, ctx: MatchContext) -> bool:
    return scope_covers(rule.match_type, ctx.match_type) and scope_covers(rule.game_type, ctx.game_type)


def is_active(rule: Rule, ctx: MatchContext) -> bool:
    return rule.is_active


def participants_in_bounds(rule: Rule, ctx: MatchContext) -> bool:
    return rule.min_participants <= ctx.max_slots <= rule.max_participants


def entry_fee_in_range(rule: Rule, ctx: MatchContext) -> bool:
    return rule.entry_fee_range.contains(ctx.entry_fee)


def prize_pool_in_range(rule: Rule, ctx: MatchContext) -> bool:
    return rule.prize_pool_range.contains(ctx.prize_pool)


def is_effective(rule: Rule, ctx: MatchContext) -> bool:
    if ctx.now < rule.effective_from:
        return False
    return rule.effective_until is None or ctx.now <= rule.effective_until


CONDITIONS = (
    scope_matches,
    is_active,
    participants_in_bounds,
    entry_fee_in_range,
    prize_pool_in_range,
    is_effective,
)


def applies(rule: Rule, ctx: MatchContext) -> bool:
    return all(cond(rule, ctx) for cond in CONDITIONS)


def precedence_key(rule: Rule) -> Tuple:
    # highest priority, then most specific scope, then oldest rule; id breaks exact ties
    return (-rule.priority, -rule.specificity, rule.created_at, rule.id)


def _best(rules: Iterable[Rule]) -> Optional[Rule]:
    return min(rules, key=precedence_key, default=None)


def select(rules: Iterable[Rule], ctx: MatchContext) -> Optional[Rule]:
    """Pick the applicable rule, falling back to the active default rule.

    Pure: the rule collection is only read.
    """
    rules = list(rules)
    rule = _best(r for r in rules if applies(r, ctx))
    if rule is not None:
        return rule
    return _best(r for r in rules if r.is_default and r.is_active)


def select_rule(store, ctx: MatchContext) -> Rule:
    """Validate the context, read a rule snapshot from the store and select.

    Raises NoApplicableRuleError when neither a matching rule nor an active
    default rule exists.
    """
    validate_context(ctx)
    rules = store.query(lambda r: applies(r, ctx) or (r.is_default and r.is_active))
    rule = select(rules, ctx)
    if rule is None:
        log.error(
            "no applicable rule match_id=%s match_type=%s game_type=%s slots=%s entry_fee=%s prize_pool=%s",
            ctx.match_id,
            ctx.match_type,
            ctx.game_type,
            ctx.max_slots,
            ctx.entry_fee,
            ctx.prize_pool,
        )
        raise NoApplicableRuleError(
            "No applicable prize rule and no active default rule",
            {"match_type": ctx.match_type, "game_type": ctx.game_type, "match_id": ctx.match_id},
        )
    log.info(
        "rule selected match_id=%s rule_id=%s version=%s priority=%s default_fallback=%s",
        ctx.match_id,
        rule.id,
        rule.version,
        rule.priority,
        not applies(rule, ctx),
    )
    return rule
