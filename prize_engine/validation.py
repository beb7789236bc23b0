# prize_engine/validation.py
from __future__ import annotations

from decimal import Decimal

from prize_engine import config
from prize_engine.errors import ValidationError
from prize_engine.models import MatchContext, Range, Rule

_HUNDRED = Decimal(100)


def _check_pct(value: Decimal, name: str) -> None:
    if value < 0 or value > _HUNDRED:
        raise ValidationError(f"{name} must be between 0 and 100", {"field": name, "value": str(value)})


def _check_range(r: Range, name: str) -> None:
    if r.min < 0:
        raise ValidationError(f"{name}.min cannot be negative", {"field": name})
    if r.max is not None and r.max < r.min:
        raise ValidationError(f"{name}.max is below {name}.min", {"field": name})


def validate_rule(rule: Rule) -> Rule:
    """Reject structurally broken rules. Returns the rule for chaining."""
    if rule.distribution_type not in config.DISTRIBUTION_TYPES:
        raise ValidationError(
            f"Unknown distribution type: {rule.distribution_type}",
            {"allowed": list(config.DISTRIBUTION_TYPES)},
        )
    if len(rule.name) > 100:
        raise ValidationError("Name cannot exceed 100 characters")
    if len(rule.description) > 1000:
        raise ValidationError("Description cannot exceed 1000 characters")

    if rule.distribution_type in ("position_based", "hybrid") and not rule.position_config.positions:
        raise ValidationError("Position configuration is required for position-based distribution")
    if rule.distribution_type in ("kill_based", "hybrid") and rule.kill_config.per_kill_prize <= 0:
        raise ValidationError("Kill configuration is required for kill-based distribution")
    if rule.distribution_type == "percentage" and not rule.percentage_config.get("distributions"):
        raise ValidationError("Percentage configuration is required for percentage-based distribution")

    for p in rule.position_config.positions:
        if p.position < 1:
            raise ValidationError("Positions are 1-based", {"position": p.position})
        if p.position_range_end is not None and p.position_range_end < p.position:
            raise ValidationError("position_range_end is below position", {"position": p.position})
        if p.prize < 0:
            raise ValidationError("Position prize cannot be negative", {"position": p.position})
    _check_pct(rule.position_config.pool_percentage, "position_config.pool_percentage")

    kc = rule.kill_config
    if kc.per_kill_prize < 0:
        raise ValidationError("per_kill_prize cannot be negative")
    if kc.max_kill_prize is not None and kc.max_kill_prize < 0:
        raise ValidationError("max_kill_prize cannot be negative")
    _check_pct(kc.pool_percentage, "kill_config.pool_percentage")

    if rule.min_participants < 0 or rule.max_participants < rule.min_participants:
        raise ValidationError(
            "Participant bounds are inconsistent",
            {"min_participants": rule.min_participants, "max_participants": rule.max_participants},
        )
    _check_range(rule.entry_fee_range, "entry_fee_range")
    _check_range(rule.prize_pool_range, "prize_pool_range")

    if rule.effective_until is not None and rule.effective_until < rule.effective_from:
        raise ValidationError("effective_until is before effective_from")
    if rule.version < 1:
        raise ValidationError("version starts at 1")
    return rule


def validate_context(ctx: MatchContext) -> MatchContext:
    if ctx.prize_pool < 0:
        raise ValidationError("prize_pool cannot be negative", {"prize_pool": str(ctx.prize_pool)})
    if ctx.entry_fee < 0:
        raise ValidationError("entry_fee cannot be negative", {"entry_fee": str(ctx.entry_fee)})
    if ctx.max_slots < 0:
        raise ValidationError("max_slots cannot be negative", {"max_slots": ctx.max_slots})
    if not ctx.match_type or not ctx.game_type:
        raise ValidationError("match_type and game_type are required")
    return ctx
