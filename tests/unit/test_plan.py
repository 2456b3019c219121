"""
tests/unit/test_plan.py

Unit tests for kelpie_dns/controller/plan.py and conflict.py.
"""

from __future__ import annotations

import logging
import random

import pytest

from kelpie_dns.controller.conflict import ConflictResolver
from kelpie_dns.controller.plan import Plan, get_policy
from kelpie_dns.exceptions import ConfigError
from kelpie_dns.models.domain_filter import DomainFilter
from kelpie_dns.models.models import Endpoint

_OWNER = "owner-a"


def _ep(name, targets, record_type="A", owner=None, resource=None, **kwargs):
    labels = {}
    if owner:
        labels["owner"] = owner
    if resource:
        labels["resource"] = resource
    return Endpoint(
        dnsname=name, targets=list(targets), record_type=record_type, labels=labels, **kwargs
    )


def _plan(current, desired, **kwargs):
    kwargs.setdefault("owner_id", _OWNER)
    return Plan(current, desired, **kwargs)


def _ids(endpoints):
    return [ep.id for ep in endpoints]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_create_when_nothing_exists():
    """Scenario A: a desired record with no current counterpart is created."""
    changes = _plan([], [_ep("a.example.com", ["1.2.3.4"])]).calculate_changes()

    assert _ids(changes.create) == ["a.example.com:A"]
    assert changes.create[0].targets == ["1.2.3.4"]
    assert changes.update_old == changes.update_new == changes.delete == []


def test_update_owned_record():
    """Scenario B: an owned record with different targets yields one update pair."""
    current = [_ep("a.example.com", ["1.2.3.4"], owner=_OWNER, resource="docker/web")]
    desired = [_ep("a.example.com", ["5.6.7.8"], resource="docker/web")]

    changes = _plan(current, desired).calculate_changes()

    assert changes.create == changes.delete == []
    assert len(changes.update_old) == len(changes.update_new) == 1
    assert changes.update_old[0].targets == ["1.2.3.4"]
    assert changes.update_new[0].targets == ["5.6.7.8"]
    assert changes.update_new[0].owner == _OWNER


def test_foreign_record_never_deleted():
    """Scenario C: a record not owned by us survives a sync with empty desired state."""
    current = [_ep("a.example.com", ["1.2.3.4"])]
    changes = _plan(current, [], policy="sync").calculate_changes()
    assert changes.delete == []
    assert not changes.has_changes()


def test_cname_conflict_resolves_to_single_create(caplog):
    """Scenario D: two sources disagreeing on a CNAME produce one deterministic create."""
    desired = [
        _ep("b.example.com", ["y.example.net"], "CNAME", resource="static/second"),
        _ep("b.example.com", ["x.example.net"], "CNAME", resource="docker/first"),
    ]

    with caplog.at_level(logging.WARNING, logger="kelpie-dns.plan.conflict"):
        changes = _plan([], desired).calculate_changes()

    assert len(changes.create) == 1
    assert changes.create[0].targets == ["x.example.net"]
    assert changes.create[0].resource == "docker/first"
    assert "Conflicting desired endpoints" in caplog.text


def test_out_of_filter_endpoint_is_ignored():
    """Scenario E: desired endpoints outside the domain filter never reach the changes."""
    desired = [_ep("c.other.org", ["9.9.9.9"]), _ep("a.example.com", ["1.2.3.4"])]
    changes = _plan(
        [], desired, domain_filter=DomainFilter(["example.com"])
    ).calculate_changes()
    assert _ids(changes.create) == ["a.example.com:A"]


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_equal_state_is_idempotent():
    current = [
        _ep("a.example.com", ["1.2.3.4", "5.6.7.8"], owner=_OWNER),
        _ep("b.example.com", ["a.example.com"], "CNAME", owner=_OWNER),
    ]
    desired = [
        _ep("A.example.com.", ["5.6.7.8", "1.2.3.4"]),
        _ep("b.example.com", ["A.example.com."], "CNAME"),
    ]
    assert not _plan(current, desired).calculate_changes().has_changes()


def test_plan_is_deterministic_under_input_permutation():
    current = [
        _ep(f"old{i}.example.com", ["10.0.0.1"], owner=_OWNER) for i in range(5)
    ] + [_ep("keep.example.com", ["10.0.0.2"], owner=_OWNER)]
    desired = [_ep(f"new{i}.example.com", [f"10.1.0.{i}"]) for i in range(5)] + [
        _ep("keep.example.com", ["10.0.0.3"]),
        _ep("multi.example.com", ["10.2.0.1"], resource="a"),
        _ep("multi.example.com", ["10.2.0.2"], resource="b"),
    ]

    baseline = _plan(current, desired).calculate_changes()
    rng = random.Random(42)
    for _ in range(10):
        shuffled_current = current[:]
        shuffled_desired = desired[:]
        rng.shuffle(shuffled_current)
        rng.shuffle(shuffled_desired)
        changes = _plan(shuffled_current, shuffled_desired).calculate_changes()
        assert changes == baseline


def test_foreign_differing_record_not_updated(caplog):
    current = [_ep("a.example.com", ["1.2.3.4"], owner="someone-else")]
    desired = [_ep("a.example.com", ["5.6.7.8"])]
    with caplog.at_level(logging.WARNING, logger="kelpie-dns.plan"):
        changes = _plan(current, desired).calculate_changes()
    assert not changes.has_changes()
    assert "not owned" in caplog.text


def test_owned_undesired_record_deleted():
    current = [_ep("gone.example.com", ["1.2.3.4"], owner=_OWNER)]
    changes = _plan(current, []).calculate_changes()
    assert _ids(changes.delete) == ["gone.example.com:A"]


def test_unmanaged_record_type_is_ignored():
    current = [_ep("a.example.com", ["v=spf1 -all"], "TXT", owner=_OWNER)]
    desired = [_ep("mx.example.com", ["10 mail.example.com"], "MX")]
    assert not _plan(current, desired).calculate_changes().has_changes()


def test_managed_types_can_be_extended():
    desired = [_ep("mx.example.com", ["10 mail.example.com"], "MX")]
    changes = _plan([], desired, managed_types=["A", "MX"]).calculate_changes()
    assert _ids(changes.create) == ["mx.example.com:MX"]


def test_owned_record_outside_domain_filter_not_deleted():
    current = [_ep("a.other.org", ["1.2.3.4"], owner=_OWNER)]
    changes = _plan(
        current, [], domain_filter=DomainFilter(["example.com"])
    ).calculate_changes()
    assert changes.delete == []


def test_set_identifier_distinguishes_records():
    current = [_ep("a.example.com", ["1.1.1.1"], owner=_OWNER, set_identifier="eu")]
    desired = [
        _ep("a.example.com", ["1.1.1.1"], set_identifier="eu"),
        _ep("a.example.com", ["2.2.2.2"], set_identifier="us"),
    ]
    changes = _plan(current, desired).calculate_changes()
    assert _ids(changes.create) == ["a.example.com:A:us"]
    assert changes.update_new == changes.delete == []


def test_ttl_change_triggers_update():
    current = [_ep("a.example.com", ["1.2.3.4"], owner=_OWNER, record_ttl=300)]
    desired = [_ep("a.example.com", ["1.2.3.4"], record_ttl=600)]
    changes = _plan(current, desired).calculate_changes()
    assert [ep.record_ttl for ep in changes.update_new] == [600]


def test_invalid_desired_endpoint_is_dropped_and_reported():
    desired = [
        _ep("bad.example.com", ["a.example.net", "b.example.net"], "CNAME"),
        _ep("good.example.com", ["1.2.3.4"]),
    ]
    plan = _plan([], desired)
    changes = plan.calculate_changes()
    assert _ids(changes.create) == ["good.example.com:A"]
    assert [error.endpoint_id for error in plan.errors] == ["bad.example.com:CNAME"]


def test_multi_value_conflict_merges_targets():
    desired = [
        _ep("a.example.com", ["2.2.2.2"], resource="static/b"),
        _ep("a.example.com", ["1.1.1.1"], resource="docker/a"),
    ]
    changes = _plan([], desired).calculate_changes()
    assert len(changes.create) == 1
    assert changes.create[0].targets == ["1.1.1.1", "2.2.2.2"]


def test_conflict_resolution_ignores_candidate_order_when_only_labels_differ():
    first = _ep("a.example.com", ["1.1.1.1"], "CNAME", resource="docker/a")
    first.labels["team"] = "blue"
    second = _ep("a.example.com", ["1.1.1.1"], "CNAME", resource="docker/a")
    second.labels["team"] = "green"

    resolver = ConflictResolver()
    assert resolver.resolve([first, second]).labels["team"] == "blue"
    assert resolver.resolve([second, first]).labels["team"] == "blue"


def test_duplicate_current_prefers_owned_record():
    current = [
        _ep("a.example.com", ["1.2.3.4"], owner=_OWNER),
        _ep("a.example.com", ["1.2.3.4"]),
    ]
    changes = _plan(current, []).calculate_changes()
    assert _ids(changes.delete) == ["a.example.com:A"]


def test_update_merges_current_labels():
    current = [_ep("a.example.com", ["1.2.3.4"], owner=_OWNER, resource="docker/old")]
    desired = [_ep("a.example.com", ["5.6.7.8"], resource="docker/new")]
    changes = _plan(current, desired).calculate_changes()
    assert changes.update_new[0].labels == {"owner": _OWNER, "resource": "docker/new"}


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def _mixed_state():
    current = [
        _ep("update.example.com", ["1.1.1.1"], owner=_OWNER),
        _ep("delete.example.com", ["2.2.2.2"], owner=_OWNER),
    ]
    desired = [
        _ep("update.example.com", ["3.3.3.3"]),
        _ep("create.example.com", ["4.4.4.4"]),
    ]
    return current, desired


def test_sync_policy_allows_everything():
    changes = _plan(*_mixed_state(), policy="sync").calculate_changes()
    assert _ids(changes.create) == ["create.example.com:A"]
    assert _ids(changes.update_new) == ["update.example.com:A"]
    assert _ids(changes.delete) == ["delete.example.com:A"]


def test_upsert_only_policy_never_deletes():
    changes = _plan(*_mixed_state(), policy="upsert-only").calculate_changes()
    assert _ids(changes.create) == ["create.example.com:A"]
    assert _ids(changes.update_new) == ["update.example.com:A"]
    assert changes.delete == []


def test_create_only_policy_only_creates():
    changes = _plan(*_mixed_state(), policy="create-only").calculate_changes()
    assert _ids(changes.create) == ["create.example.com:A"]
    assert changes.update_old == changes.update_new == changes.delete == []


def test_unknown_policy_raises_config_error():
    with pytest.raises(ConfigError):
        get_policy("delete-everything")


# ---------------------------------------------------------------------------
# Conflict resolver
# ---------------------------------------------------------------------------


def test_resolver_tie_break_is_configurable():
    resolver = ConflictResolver(sort_key=lambda ep: [-ord(c) for c in ep.resource])
    desired = [
        _ep("b.example.com", ["x.example.net"], "CNAME", resource="a"),
        _ep("b.example.com", ["y.example.net"], "CNAME", resource="b"),
    ]
    changes = _plan([], desired, resolver=resolver).calculate_changes()
    assert changes.create[0].targets == ["y.example.net"]


def test_resolver_single_candidate_is_copied():
    endpoint = _ep("a.example.com", ["1.2.3.4"])
    resolved = ConflictResolver().resolve([endpoint])
    assert resolved == endpoint
    assert resolved is not endpoint
