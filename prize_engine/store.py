# prize_engine/store.py
from __future__ import annotations

import json
import logging
import sqlite3
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from prize_engine import config
from prize_engine.errors import ConcurrentModificationError, RuleNotFoundError, ValidationError
from prize_engine.models import Rule, RuleVersion, rule_from_dict, scope_to_str, to_datetime
from prize_engine.validation import validate_rule
from prize_engine.versioning import RuleMutation

log = logging.getLogger("prize-engine.store")

_SORT_COLUMNS = {
    "priority": "priority",
    "created_at": "created_ts",
    "name": "name",
    "version": "version",
}


def _row_to_rule(row: sqlite3.Row) -> Rule:
    return rule_from_dict(json.loads(row["data_json"]))


def _row_to_version(row: sqlite3.Row) -> RuleVersion:
    return RuleVersion(
        rule_id=str(row["rule_id"]),
        version=int(row["version"]),
        data=json.loads(row["data_json"]),
        changed_at=to_datetime(row["changed_at"], "changed_at"),
        changed_by=str(row["changed_by"] or ""),
        reason=str(row["reason"] or ""),
    )


def _rule_params(rule: Rule) -> tuple:
    return (
        rule.name,
        scope_to_str(rule.match_type),
        scope_to_str(rule.game_type),
        rule.distribution_type,
        int(rule.priority),
        1 if rule.is_active else 0,
        1 if rule.is_default else 0,
        int(rule.version),
        json.dumps(rule.to_dict(), ensure_ascii=False),
    )


class RuleStore:
    """sqlite-backed rule collection plus the append-only version log.

    Rules are never deleted; soft deactivation goes through ``save``.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path is not None else config.DB_PATH
        self._ready = False

    def _con(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self.db_path)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        return con

    def init_db(self) -> None:
        if self._ready:
            return
        con = self._con()
        try:
            con.executescript("""
            CREATE TABLE IF NOT EXISTS prize_rules(
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                match_type TEXT NOT NULL DEFAULT 'all',
                game_type TEXT NOT NULL DEFAULT 'all',
                distribution_type TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_default INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 1,
                created_ts TEXT NOT NULL,
                data_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS prize_rule_versions(
                rule_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                data_json TEXT NOT NULL,
                changed_at TEXT NOT NULL,
                changed_by TEXT NOT NULL DEFAULT '',
                reason TEXT NOT NULL DEFAULT '',
                PRIMARY KEY(rule_id, version)
            );

            CREATE INDEX IF NOT EXISTS idx_prize_rules_scope ON prize_rules(match_type, game_type, is_active);
            CREATE INDEX IF NOT EXISTS idx_prize_rules_priority ON prize_rules(priority DESC);
            CREATE INDEX IF NOT EXISTS idx_prize_rules_default ON prize_rules(is_default);
            """)
            con.commit()
        finally:
            con.close()
        self._ready = True

    # ---------- writes ----------

    def _insert(self, con: sqlite3.Connection, rule: Rule) -> None:
        try:
            con.execute(
                "INSERT INTO prize_rules(name, match_type, game_type, distribution_type, priority, "
                "is_active, is_default, version, data_json, id, description, created_ts) "
                "VALUES(?,?,?,?,?,?,?,?,?,?,?,?)",
                _rule_params(rule) + (rule.id, rule.description, rule.created_at.isoformat()),
            )
        except sqlite3.IntegrityError:
            raise ValidationError("Rule id already exists", {"rule_id": rule.id})

    def create(self, rule: Rule) -> Rule:
        validate_rule(rule)
        if rule.version != 1:
            raise ValidationError("New rules start at version 1", {"version": rule.version})
        self.init_db()
        con = self._con()
        try:
            self._insert(con, rule)
            con.commit()
        finally:
            con.close()
        log.info("rule created rule_id=%s name=%s type=%s", rule.id, rule.name, rule.distribution_type)
        return rule

    def _apply(self, con: sqlite3.Connection, rule: Rule, expected_version: int,
               entry: Optional[RuleVersion]) -> None:
        cur = con.execute(
            "UPDATE prize_rules SET name=?, match_type=?, game_type=?, distribution_type=?, priority=?, "
            "is_active=?, is_default=?, version=?, data_json=?, description=? "
            "WHERE id=? AND version=?",
            _rule_params(rule) + (rule.description, rule.id, int(expected_version)),
        )
        if cur.rowcount != 1:
            row = con.execute("SELECT version FROM prize_rules WHERE id=?", (rule.id,)).fetchone()
            if row is None:
                raise RuleNotFoundError("Prize distribution rule not found", {"rule_id": rule.id})
            raise ConcurrentModificationError(
                "Rule was modified concurrently; re-read and retry",
                {"rule_id": rule.id, "expected_version": expected_version, "stored_version": int(row["version"])},
            )
        if entry is not None:
            try:
                con.execute(
                    "INSERT INTO prize_rule_versions(rule_id, version, data_json, changed_at, changed_by, reason) "
                    "VALUES(?,?,?,?,?,?)",
                    (entry.rule_id, int(entry.version), json.dumps(entry.data, ensure_ascii=False),
                     entry.changed_at.isoformat(), entry.changed_by, entry.reason),
                )
            except sqlite3.IntegrityError:
                raise ConcurrentModificationError(
                    "Version already recorded", {"rule_id": entry.rule_id, "version": entry.version}
                )

    def save(self, rule: Rule, expected_version: int, entry: Optional[RuleVersion] = None) -> Rule:
        """Compare-and-swap on ``version``; the history entry lands in the same transaction."""
        return self.save_many([RuleMutation(rule=rule, entry=entry, expected_version=expected_version)])[0]

    def save_mutation(self, mutation: RuleMutation) -> Rule:
        return self.save_many([mutation])[0]

    def save_many(self, mutations: Iterable[RuleMutation]) -> List[Rule]:
        """Persist several mutations atomically: all succeed or none do."""
        mutations = list(mutations)
        for m in mutations:
            validate_rule(m.rule)
        self.init_db()
        con = self._con()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                for m in mutations:
                    self._apply(con, m.rule, m.expected_version, m.entry)
            except BaseException:
                con.rollback()
                raise
            con.commit()
        finally:
            con.close()
        for m in mutations:
            log.info("rule saved rule_id=%s version=%s", m.rule.id, m.rule.version)
        return [m.rule for m in mutations]

    def set_default(self, target: Union[Rule, RuleMutation],
                    clear: Callable[[Rule], RuleMutation]) -> Rule:
        """Write ``target`` as the only default rule.

        A Rule is inserted as a new rule, a RuleMutation is saved with the
        version compare-and-swap. The other defaults are read under the same
        write lock and each one is saved through ``clear(rule)``, so the whole
        change commits or rolls back together.
        """
        mutation = target if isinstance(target, RuleMutation) else None
        rule = mutation.rule if mutation is not None else target
        if not rule.is_default:
            raise ValidationError("Target rule is not marked as default", {"rule_id": rule.id})
        validate_rule(rule)
        if mutation is None and rule.version != 1:
            raise ValidationError("New rules start at version 1", {"version": rule.version})
        self.init_db()
        con = self._con()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                if mutation is None:
                    self._insert(con, rule)
                else:
                    self._apply(con, rule, mutation.expected_version, mutation.entry)
                rows = con.execute(
                    "SELECT data_json FROM prize_rules WHERE is_default=1 AND id<>? ORDER BY created_ts, id",
                    (rule.id,),
                ).fetchall()
                cleared = [clear(_row_to_rule(row)) for row in rows]
                for m in cleared:
                    validate_rule(m.rule)
                    self._apply(con, m.rule, m.expected_version, m.entry)
            except BaseException:
                con.rollback()
                raise
            con.commit()
        finally:
            con.close()
        log.info("default rule set rule_id=%s version=%s cleared=%s",
                 rule.id, rule.version, ",".join(m.rule.id for m in cleared) or "-")
        return rule

    # ---------- reads ----------

    def find(self, rule_id: str) -> Optional[Rule]:
        self.init_db()
        con = self._con()
        try:
            row = con.execute("SELECT data_json FROM prize_rules WHERE id=?", (str(rule_id),)).fetchone()
            return _row_to_rule(row) if row else None
        finally:
            con.close()

    def get(self, rule_id: str) -> Rule:
        rule = self.find(rule_id)
        if rule is None:
            raise RuleNotFoundError("Prize distribution rule not found", {"rule_id": str(rule_id)})
        return rule

    def all(self) -> List[Rule]:
        return self.query(lambda r: True)

    def query(self, predicate: Callable[[Rule], bool]) -> List[Rule]:
        """Rules satisfying ``predicate``, evaluated over one consistent read."""
        self.init_db()
        con = self._con()
        try:
            rows = con.execute("SELECT data_json FROM prize_rules ORDER BY created_ts, id").fetchall()
        finally:
            con.close()
        return [r for r in (_row_to_rule(row) for row in rows) if predicate(r)]

    def list_rules(
        self,
        match_type: str | None = None,
        game_type: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        sort_by: str = "priority",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = config.RULES_PAGE_LIMIT,
    ) -> Tuple[List[Rule], int]:
        """Admin listing: filtered, sorted, paginated. Returns (rules, total)."""
        where: list[str] = []
        params: list = []
        if match_type:
            where.append("match_type=?")
            params.append(str(match_type))
        if game_type:
            where.append("game_type=?")
            params.append(str(game_type))
        if is_active is not None:
            where.append("is_active=?")
            params.append(1 if is_active else 0)
        if search:
            where.append("(name LIKE ? OR description LIKE ?)")
            like = f"%{search.strip()}%"
            params.extend([like, like])
        clause = (" WHERE " + " AND ".join(where)) if where else ""

        column = _SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError("Unsupported sort field", {"sort_by": sort_by, "allowed": sorted(_SORT_COLUMNS)})
        direction = "ASC" if str(sort_order).lower() == "asc" else "DESC"
        page = max(1, int(page))
        limit = max(1, min(int(limit), config.RULES_PAGE_LIMIT_MAX))

        self.init_db()
        con = self._con()
        try:
            total = int(con.execute(f"SELECT COUNT(*) FROM prize_rules{clause}", params).fetchone()[0])
            rows = con.execute(
                f"SELECT data_json FROM prize_rules{clause} ORDER BY {column} {direction}, created_ts, id "
                "LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        finally:
            con.close()
        return [_row_to_rule(r) for r in rows], total

    def history(self, rule_id: str) -> List[RuleVersion]:
        self.init_db()
        con = self._con()
        try:
            rows = con.execute(
                "SELECT * FROM prize_rule_versions WHERE rule_id=? ORDER BY version",
                (str(rule_id),),
            ).fetchall()
        finally:
            con.close()
        return [_row_to_version(r) for r in rows]

    def get_version(self, rule_id: str, version: int) -> RuleVersion:
        self.init_db()
        con = self._con()
        try:
            row = con.execute(
                "SELECT * FROM prize_rule_versions WHERE rule_id=? AND version=?",
                (str(rule_id), int(version)),
            ).fetchone()
        finally:
            con.close()
        if row is None:
            raise RuleNotFoundError("Version not found", {"rule_id": str(rule_id), "version": int(version)})
        return _row_to_version(row)

    def stats(self) -> dict:
        self.init_db()
        con = self._con()
        try:
            rows = con.execute(
                "SELECT match_type, game_type, distribution_type, is_active, is_default FROM prize_rules"
            ).fetchall()
        finally:
            con.close()
        total = len(rows)
        active = sum(1 for r in rows if r["is_active"])
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "defaults": sum(1 for r in rows if r["is_default"]),
            "by_match_type": dict(Counter(str(r["match_type"]) for r in rows)),
            "by_game_type": dict(Counter(str(r["game_type"]) for r in rows)),
            "by_distribution_type": dict(Counter(str(r["distribution_type"]) for r in rows)),
        }
