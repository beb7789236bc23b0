# prize_engine/service.py
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from prize_engine import config, distribution, matcher
from prize_engine.errors import ValidationError
from prize_engine.models import (
    DistributionResult,
    MatchContext,
    Participant,
    Rule,
    RuleVersion,
    new_rule_id,
    rule_from_dict,
    utcnow,
)
from prize_engine.store import RuleStore
from prize_engine.validation import validate_rule
from prize_engine.versioning import RuleMutation, VersionTracker

log = logging.getLogger("prize-engine.service")
audit = logging.getLogger("prize-engine.audit")


class PrizeRuleService:
    """Rule administration and payout computation on top of a RuleStore.

    Every edit of an existing rule goes through the VersionTracker and is
    saved with a compare-and-swap on the version it was read at.
    """

    def __init__(self, store: RuleStore, tracker: Optional[VersionTracker] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.tracker = tracker or VersionTracker()
        self.clock = clock

    # ---------- helpers ----------

    def _clearer(self, actor: str, now: datetime) -> Callable[[Rule], RuleMutation]:
        def clear(rule: Rule) -> RuleMutation:
            return self.tracker.on_mutate(rule, {"is_default": False}, changed_by=actor,
                                          reason="Default moved to another rule", now=now)
        return clear

    def _save(self, existing: Rule, mutation: RuleMutation, actor: str, now: datetime) -> Rule:
        if mutation.rule.is_default and not existing.is_default:
            return self.store.set_default(mutation, self._clearer(actor, now))
        return self.store.save_mutation(mutation)

    def _mutate(self, existing: Rule, change: Dict[str, Any], actor: str, reason: str) -> Rule:
        now = self.clock()
        mutation = self.tracker.on_mutate(existing, change, changed_by=actor, reason=reason, now=now)
        return self._save(existing, mutation, actor, now)

    # ---------- rule administration ----------

    def create_rule(self, data: Dict[str, Any], created_by: str = "") -> Rule:
        now = self.clock()
        rule = rule_from_dict(data, rule_id=new_rule_id(), now=now)
        rule = dataclasses.replace(rule, version=1, created_at=now, created_by=created_by, updated_by="")
        validate_rule(rule)
        if rule.is_default:
            self.store.set_default(rule, self._clearer(created_by, now))
        else:
            self.store.create(rule)
        audit.info(
            "action=create_prize_distribution_rule actor=%s rule_id=%s name=%s type=%s",
            created_by, rule.id, rule.name, rule.distribution_type,
        )
        return rule

    def get_rule(self, rule_id: str) -> Rule:
        return self.store.get(rule_id)

    def list_rules(self, **filters) -> Tuple[List[Rule], int]:
        return self.store.list_rules(**filters)

    def update_rule(self, rule_id: str, change: Dict[str, Any], changed_by: str = "",
                    reason: str = "") -> Rule:
        if not isinstance(change, dict) or not change:
            raise ValidationError("No update fields provided")
        change = dict(change)
        reason = str(change.pop("change_reason", "") or reason or "No reason provided")
        rule = self._mutate(self.store.get(rule_id), change, changed_by, reason)
        audit.info(
            "action=update_prize_distribution_rule actor=%s rule_id=%s version=%s changes=%s reason=%s",
            changed_by, rule.id, rule.version, ",".join(sorted(change)), reason,
        )
        return rule

    def toggle_status(self, rule_id: str, changed_by: str = "") -> Rule:
        existing = self.store.get(rule_id)
        new_status = not existing.is_active
        rule = self._mutate(existing, {"is_active": new_status}, changed_by,
                            "Activated" if new_status else "Deactivated")
        audit.info(
            "action=toggle_prize_distribution_rule_status actor=%s rule_id=%s status=%s",
            changed_by, rule.id, "active" if rule.is_active else "inactive",
        )
        return rule

    def deactivate_rule(self, rule_id: str, changed_by: str = "", reason: str = "") -> Rule:
        """Soft delete: rules referenced by past matches stay readable."""
        rule = self._mutate(self.store.get(rule_id), {"is_active": False, "is_default": False},
                            changed_by, reason or "Deactivated")
        audit.info("action=deactivate_prize_distribution_rule actor=%s rule_id=%s", changed_by, rule.id)
        return rule

    def set_default(self, rule_id: str, changed_by: str = "") -> Rule:
        now = self.clock()
        existing = self.store.get(rule_id)
        mutation = self.tracker.on_mutate(existing, {"is_default": True}, changed_by=changed_by,
                                          reason="Set as default rule", now=now)
        rule = self.store.set_default(mutation, self._clearer(changed_by, now))
        audit.info("action=set_default_prize_distribution_rule actor=%s rule_id=%s", changed_by, rule.id)
        return rule

    def duplicate_rule(self, rule_id: str, created_by: str = "") -> Rule:
        original = self.store.get(rule_id)
        now = self.clock()
        copy = dataclasses.replace(
            original,
            id=new_rule_id(),
            name=f"{original.name} (Copy)"[:100],
            is_active=False,
            is_default=False,
            effective_from=now,
            version=1,
            created_at=now,
            created_by=created_by,
            updated_by="",
        )
        if copy.effective_until is not None and copy.effective_until < now:
            copy = dataclasses.replace(copy, effective_until=None)
        self.store.create(copy)
        audit.info(
            "action=duplicate_prize_distribution_rule actor=%s original_rule_id=%s new_rule_id=%s",
            created_by, original.id, copy.id,
        )
        return copy

    def bulk_update(self, rule_ids: Iterable[str], updates: Dict[str, Any], changed_by: str = "") -> int:
        rule_ids = [str(x) for x in (rule_ids or [])]
        if not rule_ids:
            raise ValidationError("Rule IDs array is required")
        filtered = {k: v for k, v in (updates or {}).items() if k in config.BULK_UPDATE_FIELDS}
        if not filtered:
            raise ValidationError("No valid update fields provided", {"allowed": list(config.BULK_UPDATE_FIELDS)})
        now = self.clock()
        batch = [
            self.tracker.on_mutate(self.store.get(rid), filtered, changed_by=changed_by,
                                   reason="Bulk update", now=now)
            for rid in dict.fromkeys(rule_ids)
        ]
        self.store.save_many(batch)
        audit.info(
            "action=bulk_update_prize_distribution_rules actor=%s rule_ids=%s fields=%s modified=%s",
            changed_by, ",".join(m.rule.id for m in batch), ",".join(sorted(filtered)), len(batch),
        )
        return len(batch)

    def get_history(self, rule_id: str) -> Tuple[List[RuleVersion], int]:
        rule = self.store.get(rule_id)
        return self.store.history(rule_id), rule.version

    def restore_version(self, rule_id: str, version: int, changed_by: str = "") -> Rule:
        now = self.clock()
        existing = self.store.get(rule_id)
        target = self.store.get_version(rule_id, version)
        mutation = self.tracker.restore(existing, target, changed_by=changed_by, now=now)
        rule = self._save(existing, mutation, changed_by, now)
        audit.info(
            "action=restore_prize_distribution_rule_version actor=%s rule_id=%s restored_from=%s new_version=%s",
            changed_by, rule.id, version, rule.version,
        )
        return rule

    def stats(self) -> dict:
        return self.store.stats()

    # ---------- engine ----------

    def select_rule(self, ctx: MatchContext) -> Rule:
        return matcher.select_rule(self.store, ctx)

    def compute_distribution(self, rule: Rule, match: MatchContext,
                             participants: Iterable[Participant]) -> DistributionResult:
        result = distribution.compute(rule, match, participants)
        log.info(
            "distribution computed match_id=%s rule_id=%s version=%s payouts=%s total=%s leftover=%s",
            match.match_id, rule.id, rule.version, len(result.payouts),
            result.total_distributed, result.leftover,
        )
        return result

    def preview_distribution(self, rule_id: str, match: MatchContext,
                             participants: Iterable[Participant]) -> DistributionResult:
        return self.compute_distribution(self.store.get(rule_id), match, participants)

    def distribute(self, ctx: MatchContext,
                   participants: Iterable[Participant]) -> Tuple[Rule, DistributionResult]:
        rule = self.select_rule(ctx)
        return rule, self.compute_distribution(rule, ctx, participants)
