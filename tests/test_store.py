"""
Tests for the sqlite rule store.
"""

from datetime import timedelta

import pytest

from tests.helpers import NOW, T0, kills, make_rule
from prize_engine.errors import ConcurrentModificationError, RuleNotFoundError, ValidationError
from prize_engine.models import Specific
from prize_engine.versioning import VersionTracker


def test_create_and_get_round_trip(store):
    rule = make_rule(name="podium", match_type=Specific("tdm"), priority=3)
    store.create(rule)
    loaded = store.get(rule.id)
    assert loaded == rule
    assert loaded.to_dict() == rule.to_dict()


def test_get_unknown_rule(store):
    with pytest.raises(RuleNotFoundError):
        store.get("missing")
    assert store.find("missing") is None


def test_duplicate_id_is_rejected(store):
    rule = store.create(make_rule())
    with pytest.raises(ValidationError):
        store.create(make_rule(id=rule.id))


def test_new_rules_start_at_version_one(store):
    with pytest.raises(ValidationError):
        store.create(make_rule(version=3))


def test_save_compares_and_swaps_version(store):
    rule = store.create(make_rule(priority=1))
    m = VersionTracker().on_mutate(rule, {"priority": 2}, changed_by="op", reason="r", now=NOW)
    store.save_mutation(m)
    assert store.get(rule.id).version == 2
    history = store.history(rule.id)
    assert [h.version for h in history] == [1]
    assert history[0].data["priority"] == 1
    assert history[0].changed_at == NOW


def test_stale_save_raises_and_writes_nothing(store):
    rule = store.create(make_rule(priority=1))
    tracker = VersionTracker()
    first = tracker.on_mutate(rule, {"priority": 2}, now=NOW)
    second = tracker.on_mutate(rule, {"priority": 3}, now=NOW)
    store.save_mutation(first)
    with pytest.raises(ConcurrentModificationError) as exc:
        store.save_mutation(second)
    assert exc.value.details["stored_version"] == 2
    assert store.get(rule.id).priority == 2
    assert len(store.history(rule.id)) == 1


def test_save_unknown_rule(store):
    rule = make_rule()
    with pytest.raises(RuleNotFoundError):
        store.save(rule, expected_version=1)


def test_save_many_is_atomic(store):
    a = store.create(make_rule(priority=1))
    b = store.create(make_rule(priority=1))
    tracker = VersionTracker()
    ok = tracker.on_mutate(a, {"priority": 5}, now=NOW)
    stale = tracker.on_mutate(b, {"priority": 5}, now=NOW)
    store.save_mutation(tracker.on_mutate(b, {"priority": 2}, now=NOW))
    with pytest.raises(ConcurrentModificationError):
        store.save_many([ok, stale])
    assert store.get(a.id).version == 1
    assert store.history(a.id) == []


def test_query_filters_with_predicate(store):
    store.create(make_rule(is_active=False))
    active = store.create(make_rule())
    assert [r.id for r in store.query(lambda r: r.is_active)] == [active.id]


def test_list_rules_filters_sorts_and_paginates(store):
    for i in range(5):
        store.create(make_rule(name=f"tdm rule {i}", match_type=Specific("tdm"), priority=i,
                               created_at=T0 + timedelta(minutes=i)))
    store.create(make_rule(name="wow special", match_type=Specific("wow"), description="weekly war"))
    store.create(make_rule(name="off", is_active=False))

    rules, total = store.list_rules(match_type="tdm", limit=2, page=1)
    assert total == 5
    assert [r.priority for r in rules] == [4, 3]

    rules, _ = store.list_rules(match_type="tdm", sort_order="asc", limit=2, page=2)
    assert [r.priority for r in rules] == [2, 3]

    rules, total = store.list_rules(search="weekly")
    assert total == 1 and rules[0].name == "wow special"

    _, total = store.list_rules(is_active=False)
    assert total == 1


def test_list_rules_rejects_unknown_sort(store):
    with pytest.raises(ValidationError):
        store.list_rules(sort_by="data_json")


def test_get_version(store):
    rule = store.create(make_rule())
    store.save_mutation(VersionTracker().on_mutate(rule, {"priority": 9}, now=NOW))
    assert store.get_version(rule.id, 1).data["priority"] == 0
    with pytest.raises(RuleNotFoundError):
        store.get_version(rule.id, 2)


def test_stats(store):
    store.create(make_rule(match_type=Specific("tdm")))
    store.create(make_rule(distribution_type="kill_based", kill_config=kills(10)))
    store.create(make_rule(is_active=False, is_default=True))
    stats = store.stats()
    assert stats["total"] == 3
    assert stats["active"] == 2
    assert stats["inactive"] == 1
    assert stats["defaults"] == 1
    assert stats["by_match_type"] == {"tdm": 1, "all": 2}
    assert stats["by_distribution_type"] == {"position_based": 2, "kill_based": 1}


def _clear(rule):
    return VersionTracker().on_mutate(rule, {"is_default": False}, reason="Default moved", now=NOW)


def test_set_default_inserts_and_clears_in_one_step(store):
    old = store.create(make_rule(is_default=True))
    new = store.set_default(make_rule(is_default=True), _clear)
    assert store.get(new.id).is_default is True
    cleared = store.get(old.id)
    assert cleared.is_default is False
    assert cleared.version == 2
    assert [v.reason for v in store.history(old.id)] == ["Default moved"]


def test_set_default_saves_mutation(store):
    old = store.create(make_rule(is_default=True))
    target = store.create(make_rule())
    mutation = VersionTracker().on_mutate(target, {"is_default": True}, now=NOW)
    store.set_default(mutation, _clear)
    assert [r.id for r in store.query(lambda r: r.is_default)] == [target.id]
    assert store.get(target.id).version == 2
    assert store.get(old.id).version == 2


def test_set_default_rolls_back_when_clearing_fails(store):
    old = store.create(make_rule(is_default=True))

    def refuse(rule):
        raise ConcurrentModificationError("stale", {"rule_id": rule.id})

    fresh = make_rule(is_default=True)
    with pytest.raises(ConcurrentModificationError):
        store.set_default(fresh, refuse)
    assert store.find(fresh.id) is None
    assert [r.id for r in store.query(lambda r: r.is_default)] == [old.id]


def test_set_default_rejects_non_default_target(store):
    with pytest.raises(ValidationError):
        store.set_default(make_rule(), _clear)
