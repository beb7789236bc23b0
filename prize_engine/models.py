# prize_engine/models.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple, Union

from prize_engine import config
from prize_engine.errors import ValidationError

# Wire form of the wildcard scope. Only parsing/serialization look at it.
WILDCARD = "all"

POSITION = "position"
KILL = "kill"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- scope: Specific(value) | ANY ----------

@dataclass(frozen=True)
class Specific:
    value: str


class AnyScope:
    _instance: Optional["AnyScope"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANY"


ANY = AnyScope()
Scope = Union[Specific, AnyScope]


def scope_covers(scope: Scope, value: str) -> bool:
    if isinstance(scope, AnyScope):
        return True
    if isinstance(scope, Specific):
        return scope.value == value
    raise TypeError(f"unknown scope variant: {scope!r}")


def parse_scope(raw: Any, known: Tuple[str, ...], name: str) -> Scope:
    if isinstance(raw, (Specific, AnyScope)):
        return raw
    if raw is None:
        return ANY
    s = str(raw).strip()
    if s == "" or s == WILDCARD:
        return ANY
    if s not in known:
        raise ValidationError(f"Unknown {name}: {s}", {"field": name, "allowed": list(known)})
    return Specific(s)


def scope_to_str(scope: Scope) -> str:
    if isinstance(scope, AnyScope):
        return WILDCARD
    if isinstance(scope, Specific):
        return scope.value
    raise TypeError(f"unknown scope variant: {scope!r}")


# ---------- primitive parsing ----------

def to_money(raw: Any, name: str) -> Decimal:
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{name} must be a number", {"field": name})
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number", {"field": name, "value": str(raw)})
    if not d.is_finite():
        raise ValidationError(f"{name} must be finite", {"field": name})
    return d


def to_optional_money(raw: Any, name: str) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return to_money(raw, name)


def to_int(raw: Any, name: str) -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer", {"field": name})
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be an integer", {"field": name, "value": str(raw)})
    if not d.is_finite() or d != d.to_integral_value():
        raise ValidationError(f"{name} must be an integer", {"field": name, "value": str(raw)})
    return int(d)


def to_datetime(raw: Any, name: str) -> datetime:
    if isinstance(raw, datetime):
        dt = raw
    else:
        try:
            dt = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime", {"field": name, "value": str(raw)})
    # naive timestamps are treated as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_optional_datetime(raw: Any, name: str) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    return to_datetime(raw, name)


def to_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def _dt_str(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _money_str(d: Optional[Decimal]) -> Optional[str]:
    return str(d) if d is not None else None


# ---------- rule parts ----------

@dataclass(frozen=True)
class PositionPrize:
    position: int
    prize: Decimal
    label: str = ""
    # inclusive; None means a single rank
    position_range_end: Optional[int] = None

    @property
    def last_position(self) -> int:
        return self.position_range_end if self.position_range_end is not None else self.position

    def covers(self, rank: Optional[int]) -> bool:
        return rank is not None and self.position <= rank <= self.last_position

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "position_range_end": self.position_range_end,
            "prize": _money_str(self.prize),
            "label": self.label,
        }


@dataclass(frozen=True)
class PositionConfig:
    positions: Tuple[PositionPrize, ...] = ()
    pool_percentage: Decimal = Decimal(config.DEFAULT_POSITION_POOL_PCT)

    def to_dict(self) -> dict:
        return {
            "positions": [p.to_dict() for p in self.positions],
            "pool_percentage": _money_str(self.pool_percentage),
        }


@dataclass(frozen=True)
class KillConfig:
    per_kill_prize: Decimal = Decimal(0)
    max_kill_prize: Optional[Decimal] = None  # None means no cap
    pool_percentage: Decimal = Decimal(config.DEFAULT_KILL_POOL_PCT)

    def to_dict(self) -> dict:
        return {
            "per_kill_prize": _money_str(self.per_kill_prize),
            "max_kill_prize": _money_str(self.max_kill_prize),
            "pool_percentage": _money_str(self.pool_percentage),
        }


@dataclass(frozen=True)
class Range:
    min: Decimal = Decimal(0)
    max: Optional[Decimal] = None  # None means no upper limit

    def contains(self, value: Decimal) -> bool:
        if value < self.min:
            return False
        return self.max is None or value <= self.max

    def to_dict(self) -> dict:
        return {"min": _money_str(self.min), "max": _money_str(self.max)}


# ---------- rule ----------

@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    distribution_type: str
    match_type: Scope = ANY
    game_type: Scope = ANY
    description: str = ""
    position_config: PositionConfig = PositionConfig()
    kill_config: KillConfig = KillConfig()
    # stored and versioned, never interpreted by the engine
    percentage_config: Dict[str, Any] = field(default_factory=dict)
    min_participants: int = config.DEFAULT_MIN_PARTICIPANTS
    max_participants: int = config.DEFAULT_MAX_PARTICIPANTS
    entry_fee_range: Range = Range()
    prize_pool_range: Range = Range()
    rules: Tuple[Dict[str, Any], ...] = ()
    terms_and_conditions: Tuple[str, ...] = ()
    special_conditions: Tuple[Dict[str, Any], ...] = ()
    priority: int = 0
    is_active: bool = True
    is_default: bool = False
    effective_from: datetime = field(default_factory=utcnow)
    effective_until: Optional[datetime] = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    updated_by: str = ""

    @property
    def specificity(self) -> int:
        """Number of scope dimensions pinned to a concrete value."""
        return sum(1 for s in (self.match_type, self.game_type) if isinstance(s, Specific))

    def to_dict(self) -> dict:
        # Fresh containers on every call; snapshots rely on it.
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "match_type": scope_to_str(self.match_type),
            "game_type": scope_to_str(self.game_type),
            "distribution_type": self.distribution_type,
            "position_config": self.position_config.to_dict(),
            "kill_config": self.kill_config.to_dict(),
            "percentage_config": _deep_plain(self.percentage_config),
            "min_participants": self.min_participants,
            "max_participants": self.max_participants,
            "entry_fee_range": self.entry_fee_range.to_dict(),
            "prize_pool_range": self.prize_pool_range.to_dict(),
            "rules": [_deep_plain(r) for r in self.rules],
            "terms_and_conditions": list(self.terms_and_conditions),
            "special_conditions": [_deep_plain(c) for c in self.special_conditions],
            "priority": self.priority,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "effective_from": _dt_str(self.effective_from),
            "effective_until": _dt_str(self.effective_until),
            "version": self.version,
            "created_at": _dt_str(self.created_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }


def _deep_plain(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _deep_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_deep_plain(v) for v in obj]
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def new_rule_id() -> str:
    return uuid.uuid4().hex


def _position_prize_from_dict(d: dict, idx: int) -> PositionPrize:
    if not isinstance(d, dict):
        raise ValidationError("Position entries must be objects", {"index": idx})
    if d.get("position") is None or d.get("prize") is None:
        raise ValidationError("Position entries need position and prize", {"index": idx})
    end = d.get("position_range_end")
    return PositionPrize(
        position=to_int(d["position"], "position"),
        prize=to_money(d["prize"], "prize"),
        label=str(d.get("label") or ""),
        position_range_end=to_int(end, "position_range_end") if end is not None else None,
    )


def _position_config_from_dict(d: Optional[dict]) -> PositionConfig:
    d = d or {}
    positions = d.get("positions") or []
    if not isinstance(positions, (list, tuple)):
        raise ValidationError("position_config.positions must be a list")
    pct = d.get("pool_percentage")
    return PositionConfig(
        positions=tuple(_position_prize_from_dict(p, i) for i, p in enumerate(positions)),
        pool_percentage=to_money(pct, "position_config.pool_percentage")
        if pct is not None else Decimal(config.DEFAULT_POSITION_POOL_PCT),
    )


def _kill_config_from_dict(d: Optional[dict]) -> KillConfig:
    d = d or {}
    per_kill = d.get("per_kill_prize")
    pct = d.get("pool_percentage")
    max_prize = to_optional_money(d.get("max_kill_prize"), "kill_config.max_kill_prize")
    return KillConfig(
        per_kill_prize=to_money(per_kill, "kill_config.per_kill_prize") if per_kill is not None else Decimal(0),
        # 0 behaves as "no cap"
        max_kill_prize=max_prize if max_prize else None,
        pool_percentage=to_money(pct, "kill_config.pool_percentage")
        if pct is not None else Decimal(config.DEFAULT_KILL_POOL_PCT),
    )


def _range_from_dict(d: Optional[dict], name: str) -> Range:
    d = d or {}
    lo = d.get("min")
    return Range(
        min=to_money(lo, f"{name}.min") if lo is not None else Decimal(0),
        max=to_optional_money(d.get("max"), f"{name}.max"),
    )


def rule_from_dict(data: dict, *, rule_id: Optional[str] = None, now: Optional[datetime] = None) -> Rule:
    """Build a Rule from its dict form, applying the schema defaults.

    Used for API payloads, stored rows and version snapshots alike. The
    result is not validated; see prize_engine.validation.validate_rule.
    """
    if not isinstance(data, dict):
        raise ValidationError("Rule payload must be an object")
    now = now or utcnow()
    name = str(data.get("name") or "").strip()
    dist = str(data.get("distribution_type") or "").strip()
    if not name or not dist:
        raise ValidationError("Name and distribution type are required")

    min_p = data.get("min_participants")
    max_p = data.get("max_participants")
    created_at = data.get("created_at")
    effective_from = data.get("effective_from")
    return Rule(
        id=str(rule_id or data.get("id") or new_rule_id()),
        name=name,
        description=str(data.get("description") or ""),
        match_type=parse_scope(data.get("match_type"), config.MATCH_TYPES, "match_type"),
        game_type=parse_scope(data.get("game_type"), config.GAME_TYPES, "game_type"),
        distribution_type=dist,
        position_config=_position_config_from_dict(data.get("position_config")),
        kill_config=_kill_config_from_dict(data.get("kill_config")),
        percentage_config=dict(_deep_plain(data.get("percentage_config") or {})),
        min_participants=to_int(min_p, "min_participants")
        if min_p is not None else config.DEFAULT_MIN_PARTICIPANTS,
        max_participants=to_int(max_p, "max_participants")
        if max_p is not None else config.DEFAULT_MAX_PARTICIPANTS,
        entry_fee_range=_range_from_dict(data.get("entry_fee_range"), "entry_fee_range"),
        prize_pool_range=_range_from_dict(data.get("prize_pool_range"), "prize_pool_range"),
        rules=tuple(_deep_plain(r) for r in (data.get("rules") or [])),
        terms_and_conditions=tuple(str(x) for x in (data.get("terms_and_conditions") or [])),
        special_conditions=tuple(_deep_plain(c) for c in (data.get("special_conditions") or [])),
        priority=to_int(data.get("priority") or 0, "priority"),
        is_active=to_bool(data["is_active"]) if data.get("is_active") is not None else True,
        is_default=to_bool(data.get("is_default") or False),
        effective_from=to_datetime(effective_from, "effective_from") if effective_from else now,
        effective_until=to_optional_datetime(data.get("effective_until"), "effective_until"),
        version=to_int(data.get("version") or 1, "version"),
        created_at=to_datetime(created_at, "created_at") if created_at else now,
        created_by=str(data.get("created_by") or ""),
        updated_by=str(data.get("updated_by") or ""),
    )


# ---------- match side ----------

@dataclass(frozen=True)
class MatchContext:
    match_type: str
    game_type: str
    max_slots: int
    entry_fee: Decimal
    prize_pool: Decimal
    now: datetime = field(default_factory=utcnow)
    match_id: str = ""


def context_from_dict(data: dict, now: Optional[datetime] = None) -> MatchContext:
    if not isinstance(data, dict):
        raise ValidationError("Match payload must be an object")
    for key in ("match_type", "game_type", "max_slots", "prize_pool"):
        if data.get(key) is None:
            raise ValidationError(f"{key} is required", {"field": key})
    raw_now = data.get("now")
    return MatchContext(
        match_type=str(data["match_type"]),
        game_type=str(data["game_type"]),
        max_slots=to_int(data["max_slots"], "max_slots"),
        entry_fee=to_money(data.get("entry_fee") or 0, "entry_fee"),
        prize_pool=to_money(data["prize_pool"], "prize_pool"),
        now=to_datetime(raw_now, "now") if raw_now else (now or utcnow()),
        match_id=str(data.get("match_id") or ""),
    )


@dataclass(frozen=True)
class Participant:
    user_id: str
    kills: int = 0
    position: Optional[int] = None  # 1-based final rank


def participant_from_dict(data: dict) -> Participant:
    if not isinstance(data, dict) or data.get("user_id") in (None, ""):
        raise ValidationError("Participants need a user_id")
    kills = to_int(data.get("kills") or 0, "kills")
    if kills < 0:
        raise ValidationError("kills cannot be negative", {"user_id": str(data["user_id"])})
    pos = data.get("position")
    position = to_int(pos, "position") if pos is not None else None
    if position is not None and position < 1:
        raise ValidationError("position is 1-based", {"user_id": str(data["user_id"])})
    return Participant(user_id=str(data["user_id"]), kills=kills, position=position)


@dataclass(frozen=True)
class PayoutEntry:
    user_id: str
    amount: Decimal
    kind: str  # POSITION / KILL
    position: Optional[int] = None
    kills: Optional[int] = None
    label: str = ""

    def to_dict(self) -> dict:
        d = {"user_id": self.user_id, "amount": str(self.amount), "kind": self.kind}
        if self.position is not None:
            d["position"] = self.position
        if self.kills is not None:
            d["kills"] = self.kills
        if self.label:
            d["label"] = self.label
        return d


@dataclass(frozen=True)
class DistributionResult:
    payouts: Tuple[PayoutEntry, ...]
    total_distributed: Decimal
    leftover: Decimal
    # nominal pool shares, reported for audit only
    position_pool: Decimal = Decimal(0)
    kill_pool: Decimal = Decimal(0)

    def to_dict(self) -> dict:
        return {
            "payouts": [p.to_dict() for p in self.payouts],
            "total_distributed": str(self.total_distributed),
            "leftover": str(self.leftover),
            "position_pool": str(self.position_pool),
            "kill_pool": str(self.kill_pool),
        }


# ---------- version log ----------

@dataclass(frozen=True)
class RuleVersion:
    rule_id: str
    version: int
    data: Dict[str, Any]
    changed_at: datetime
    changed_by: str = ""
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "version": self.version,
            "data": _deep_plain(self.data),
            "changed_at": _dt_str(self.changed_at),
            "changed_by": self.changed_by,
            "reason": self.reason,
        }
