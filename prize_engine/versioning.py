# prize_engine/versioning.py
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from prize_engine.errors import ValidationError
from prize_engine.models import Rule, RuleVersion, rule_from_dict, utcnow
from prize_engine.validation import validate_rule

log = logging.getLogger("prize-engine.versions")

# Fields an edit may touch. Identity, version and creation metadata are not among them.
MUTABLE_FIELDS = (
    "name", "description", "match_type", "game_type", "distribution_type",
    "position_config", "kill_config", "percentage_config",
    "min_participants", "max_participants", "entry_fee_range", "prize_pool_range",
    "rules", "terms_and_conditions", "special_conditions",
    "priority", "is_active", "is_default", "effective_from", "effective_until",
)

_IMMUTABLE_KEYS = ("id", "version", "created_at", "created_by", "updated_by")


@dataclass(frozen=True)
class RuleMutation:
    """Result of a tracked edit: the rule to persist and its history entry."""
    rule: Rule
    entry: Optional[RuleVersion]
    expected_version: int


def snapshot(rule: Rule) -> Dict[str, Any]:
    # to_dict builds new containers, so the snapshot shares nothing with the rule
    return rule.to_dict()


def apply_change(rule: Rule, change: Dict[str, Any]) -> Rule:
    """Return ``rule`` with the allowed fields of ``change`` applied.

    Goes through the dict form so payload parsing and defaults are the same
    as for newly created rules. Unknown keys are rejected.
    """
    unknown = sorted(k for k in change if k not in MUTABLE_FIELDS and k not in _IMMUTABLE_KEYS)
    if unknown:
        raise ValidationError("Unknown rule fields", {"fields": unknown})
    merged = rule.to_dict()
    for k in MUTABLE_FIELDS:
        if k in change:
            merged[k] = change[k]
    return rule_from_dict(merged, rule_id=rule.id)


class VersionTracker:
    """Records the prior state of a rule before every edit.

    New rules start at version 1 and are not tracked. Each tracked edit
    yields exactly one RuleVersion for the old version and bumps the
    version by one.
    """

    def on_mutate(
        self,
        existing: Rule,
        change: Dict[str, Any],
        changed_by: str = "",
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> RuleMutation:
        now = now or utcnow()
        entry = RuleVersion(
            rule_id=existing.id,
            version=existing.version,
            data=snapshot(existing),
            changed_at=now,
            changed_by=changed_by,
            reason=reason or "No reason provided",
        )
        updated = apply_change(existing, change)
        updated = dataclasses.replace(
            updated,
            version=existing.version + 1,
            created_at=existing.created_at,
            created_by=existing.created_by,
            updated_by=changed_by,
        )
        validate_rule(updated)
        log.debug("rule mutated rule_id=%s version=%s->%s", existing.id, existing.version, updated.version)
        return RuleMutation(rule=updated, entry=entry, expected_version=existing.version)

    def restore(
        self,
        existing: Rule,
        target: RuleVersion,
        changed_by: str = "",
        now: Optional[datetime] = None,
    ) -> RuleMutation:
        """Bring back the fields of an older snapshot as a new version."""
        if target.rule_id != existing.id:
            raise ValidationError("Version belongs to another rule", {"rule_id": target.rule_id})
        change = {k: v for k, v in target.data.items() if k in MUTABLE_FIELDS}
        return self.on_mutate(
            existing,
            change,
            changed_by=changed_by,
            reason=f"Restored from version {target.version}",
            now=now,
        )
