"""Unit tests for core/adapters.py -- pure shape normalization, no I/O.

Each upstream generation gets at least one case so a format change shows up
here first.
"""

from datetime import datetime, timezone

from core.adapters import (
    commit_on_branch,
    normalize_attestation,
    normalize_commit,
    normalize_control,
    normalize_result,
    normalize_violation,
    note_uuids,
    parse_control_catalog,
    parse_controls,
    parse_gate,
    parse_metric_entry,
    parse_policy_groups,
    parse_timestamp,
    unwrap_list,
)
from core.models import ControlStatus

# ---------------------------------------------------------------------------
# TestUnwrapList
# ---------------------------------------------------------------------------


class TestUnwrapList:
    def test_top_level_array(self):
        assert unwrap_list([{"a": 1}, {"b": 2}]) == [{"a": 1}, {"b": 2}]

    def test_data_envelope(self):
        assert unwrap_list({"data": [{"a": 1}]}) == [{"a": 1}]

    def test_items_envelope(self):
        assert unwrap_list({"items": [{"a": 1}]}) == [{"a": 1}]

    def test_explicit_keys_take_precedence(self):
        payload = {"data": [{"wrong": 1}], "attestations": [{"right": 1}]}
        assert unwrap_list(payload, "attestations") == [{"right": 1}]

    def test_non_dict_entries_dropped(self):
        assert unwrap_list([{"a": 1}, None, "x", 3]) == [{"a": 1}]

    def test_single_object_wrapped_only_when_requested(self):
        assert unwrap_list({"uuid": "n1"}) == []
        assert unwrap_list({"uuid": "n1"}, wrap_single=True) == [{"uuid": "n1"}]

    def test_garbage_returns_empty(self):
        assert unwrap_list(None) == []
        assert unwrap_list("oops") == []


# ---------------------------------------------------------------------------
# TestParseTimestamp / TestNormalizeResult
# ---------------------------------------------------------------------------


class TestParseTimestamp:
    def test_zulu_suffix(self):
        parsed = parse_timestamp("2026-01-05T10:00:00Z")
        assert parsed.tzinfo == timezone.utc
        assert parsed.hour == 10

    def test_naive_treated_as_utc(self):
        parsed = parse_timestamp("2026-01-05T10:00:00")
        assert parsed.utcoffset().total_seconds() == 0

    def test_offset_converted_to_utc(self):
        parsed = parse_timestamp("2026-01-05T10:00:00+02:00")
        assert parsed.hour == 8

    def test_date_only(self):
        assert parse_timestamp("2026-01-05").day == 5

    def test_invalid_returns_none(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestNormalizeResult:
    def test_pass_spellings(self):
        for value in ("pass", "PASSED", "success"):
            assert normalize_result({"result": value}) == "pass"

    def test_fail_spellings(self):
        for value in ("fail", "Failed", "failure"):
            assert normalize_result({"result": value}) == "fail"

    def test_status_field_used_when_result_missing(self):
        assert normalize_result({"status": "pass"}) == "pass"

    def test_nested_detail_result(self):
        assert normalize_result({"detail": {"result": "fail"}}) == "fail"

    def test_unknown(self):
        assert normalize_result({"result": "skipped"}) == "unknown"
        assert normalize_result({}) == "unknown"
        assert normalize_result(None) == "unknown"


# ---------------------------------------------------------------------------
# TestCommits
# ---------------------------------------------------------------------------


class TestCommits:
    def test_commit_and_timestamp_aliases(self):
        record = normalize_commit({"sha": "abc", "created_at": "2026-01-01", "refs": [{"name": "main"}, "dev"]})
        assert record.commit == "abc"
        assert record.timestamp == "2026-01-01"
        assert record.branches == ["main", "dev"]

    def test_missing_commit_id_returns_none(self):
        assert normalize_commit({"timestamp": "2026-01-01"}) is None
        assert normalize_commit("abc") is None

    def test_branch_membership_fields(self):
        assert commit_on_branch(normalize_commit({"commit": "a", "ref": "main"}), "main")
        assert commit_on_branch(normalize_commit({"commit": "a", "branches": ["main"]}), "main")
        assert commit_on_branch(normalize_commit({"commit": "a", "branches": [{"name": "main"}]}), "main")
        assert not commit_on_branch(normalize_commit({"commit": "a", "branches": ["dev"]}), "main")


# ---------------------------------------------------------------------------
# TestNoteUuids
# ---------------------------------------------------------------------------


class TestNoteUuids:
    def test_filters_by_type(self):
        notes = [
            {"uuid": "o1", "type": "origin"},
            {"uuid": "a1", "type": "attestation"},
            {"note": {"uuid": "a2", "type": "attestation"}},
        ]
        assert note_uuids(notes, "attestation") == ["a1", "a2"]

    def test_no_filter_keeps_all_in_order(self):
        notes = [{"uuid": "o1", "type": "origin"}, {"uuid": "a1", "type": "attestation"}]
        assert note_uuids(notes, None) == ["o1", "a1"]

    def test_nested_attestations_always_included(self):
        notes = [{"uuid": "o1", "type": "origin", "attestations": [{"uuid": "a9"}, {"note": {"uuid": "a8"}}]}]
        assert note_uuids(notes, "attestation") == ["a9", "a8"]

    def test_deduplicates(self):
        notes = [{"uuid": "a1", "type": "attestation"}, {"uuid": "a1", "type": "attestation"}]
        assert note_uuids(notes) == ["a1"]


# ---------------------------------------------------------------------------
# TestNormalizeAttestation
# ---------------------------------------------------------------------------


class TestNormalizeAttestation:
    def test_producer_entity_generation(self):
        detail = {
            "uuid": "n1",
            "result": "pass",
            "timestamp": "2026-01-05T12:00:00Z",
            "producer": {"entity": {"uuid": "c1", "path": "a.b", "name": "AB"}},
            "asset": {"uuid": "asset-1", "version": {"commit": "abc123"}},
        }
        att = normalize_attestation(detail)
        assert att.uuid == "n1"
        assert att.passed
        assert (att.control.uuid, att.control.path, att.control.name) == ("c1", "a.b", "AB")
        assert att.commit == "abc123"
        assert att.asset_uuid == "asset-1"

    def test_metadata_generation(self):
        detail = {"uuid": "n1", "status": "failed", "metadata": {"path": "x.y", "entity": {"displayKey": "XY"}}}
        att = normalize_attestation(detail)
        assert att.result == "fail"
        assert att.control.path == "x.y"
        assert att.control.name == "XY"

    def test_tag_generation_with_stub_fallbacks(self):
        att = normalize_attestation({"tag": "t.z"}, stub={"uuid": "n2", "result": "pass", "commit": "def"})
        assert att.uuid == "n2"
        assert att.control.path == "t.z"
        assert att.result == "pass"
        assert att.commit == "def"

    def test_no_uuid_returns_none(self):
        assert normalize_attestation({"result": "pass"}) is None
        assert normalize_attestation(None) is None


# ---------------------------------------------------------------------------
# TestParsePolicyGroups
# ---------------------------------------------------------------------------


class TestParsePolicyGroups:
    def test_key_fallback_order(self):
        groups = [
            {
                "policyName": "P",
                "controls": [
                    {"path": "p.one", "uuid": "u1"},
                    {"uuid": "u2", "name": "two"},
                    {"name": "three"},
                    {"displayKey": "Four"},
                    {"severity": "high"},
                ],
            }
        ]
        into: dict[str, ControlStatus] = {}
        added = parse_policy_groups(groups, into)
        assert list(into) == ["p.one", "u2", "three", "Four"]
        assert added == 4

    def test_first_writer_wins(self):
        into: dict[str, ControlStatus] = {}
        parse_policy_groups([{"policyName": "First", "controls": [{"path": "a.b", "severity": "low"}]}], into)
        parse_policy_groups([{"policyName": "Second", "controls": [{"path": "a.b", "severity": "high"}]}], into)
        assert into["a.b"].policy_name == "First"
        assert into["a.b"].severity == "low"

    def test_seeded_as_required_not_found(self):
        into: dict[str, ControlStatus] = {}
        parse_policy_groups([{"name": "Gate", "controls": [{"path": "a.b", "displayKey": "AB"}]}], into)
        control = into["a.b"]
        assert control.required is True
        assert control.status == "not_found"
        assert control.name == "AB"
        assert control.control_path == "a.b"
        assert control.policy_name == "Gate"

    def test_policy_name_override(self):
        into: dict[str, ControlStatus] = {}
        parse_policy_groups([{"policyName": "P", "controls": [{"path": "a"}]}], into, policy_name="Gate: prod")
        assert into["a"].policy_name == "Gate: prod"

    def test_garbage_adds_nothing(self):
        into: dict[str, ControlStatus] = {}
        assert parse_policy_groups({"unexpected": True}, into) == 0
        assert into == {}


# ---------------------------------------------------------------------------
# TestGatesAndControls
# ---------------------------------------------------------------------------


class TestGatesAndControls:
    def test_parse_gate(self):
        assert parse_gate({"entityKey": "prod", "displayKey": "Production"}) == {
            "key": "prod",
            "name": "Production",
            "uuid": None,
        }
        assert parse_gate({}) is None

    def test_control_catalog_indexed_three_ways(self):
        index = parse_control_catalog(
            [{"uuid": "u1", "entityId": "e1", "path": "a.b", "displayKey": "AB", "description": "d"}]
        )
        assert index["u1"] is index["e1"] is index["a.b"]
        assert index["u1"]["name"] == "AB"

    def test_controls_list(self):
        controls = parse_controls(
            {
                "data": [
                    {"id": "u1", "path": "a.b", "type": "scan", "framework": "SOC2", "requirements": ["CC7.1"]},
                    "junk",
                    {"uuid": "u2", "displayKey": "Secrets", "severity": "critical", "requirements": "n/a"},
                ]
            }
        )
        assert [(c.uuid, c.name, c.severity) for c in controls] == [
            ("u1", "a.b", "medium"),
            ("u2", "Secrets", "critical"),
        ]
        assert controls[0].category == "scan"
        assert controls[0].requirements == ["CC7.1"]
        assert controls[1].requirements == []
        assert normalize_control(None) is None


# ---------------------------------------------------------------------------
# TestViolations
# ---------------------------------------------------------------------------


class TestNormalizeViolation:
    NOW = datetime(2026, 1, 11, 12, 0, tzinfo=timezone.utc)

    def test_enriched_from_control_index(self):
        index = parse_control_catalog([{"path": "secrets.scan", "displayKey": "Secret Scan", "severity": "high"}])
        note = {
            "uuid": "n1",
            "path": "secrets.scan",
            "timestamp": "2026-01-01T12:00:00Z",
            "asset": {"uuid": "a1", "name": "demo-repo", "type": {"name": "service"}, "version": {"commit": "abc"}},
            "declarations": {"branch": "main"},
            "policy": {"evaluation": {"logs": ["2 secrets found"]}},
        }
        v = normalize_violation(note, index, self.NOW)
        assert (v.control_name, v.severity, v.asset_type) == ("Secret Scan", "high", "service")
        assert (v.commit, v.branch, v.reason, v.age_days) == ("abc", "main", "2 secrets found", 10)

    def test_bare_note(self):
        v = normalize_violation({"uuid": "n2", "tag": "x.y", "asset": "a2"}, {}, self.NOW)
        assert (v.control_path, v.control_name, v.severity) == ("x.y", "x.y", "unset")
        assert (v.asset_uuid, v.asset_name, v.age_days) == ("a2", "Unknown", None)

    def test_verification_failure_reason(self):
        note = {"uuid": "n3", "detail": {"verification": {"valid": False}, "message": "other"}}
        assert normalize_violation(note, {}, self.NOW).reason == "Verification failed"

    def test_no_uuid(self):
        assert normalize_violation({"path": "a.b"}, {}, self.NOW) is None


# ---------------------------------------------------------------------------
# TestMetricEntries
# ---------------------------------------------------------------------------


class TestParseMetricEntry:
    def test_plain_entry(self):
        assert parse_metric_entry({"date": "2026-01-02", "passing": 3, "failing": 1}) == ("2026-01-02", 3, 1)

    def test_alternate_keys_and_string_counts(self):
        assert parse_metric_entry({"date": "2026-01-02", "pass": "7", "fail": 2.0}) == ("2026-01-02", 7, 2)

    def test_unreadable_counts_are_zero(self):
        assert parse_metric_entry({"date": "2026-01-02", "passing": "n/a", "failing": [1]}) == ("2026-01-02", 0, 0)
        assert parse_metric_entry({"date": "2026-01-02", "passing": -4, "failing": True}) == ("2026-01-02", 0, 0)

    def test_day_is_utc_calendar_day(self):
        entry = {"timestamp": "2026-01-02T23:30:00-02:00", "passing": 1}
        assert parse_metric_entry(entry) == ("2026-01-03", 1, 0)

    def test_no_day(self):
        assert parse_metric_entry({"date": {"day": 2}, "passing": 1}) is None
        assert parse_metric_entry({"passing": 1}) is None
        assert parse_metric_entry("2026-01-02") is None
