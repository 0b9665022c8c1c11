"""
adapters.py -- Map heterogeneous registry payloads onto PostureLens records.

The registry serves several API generations side by side: a list may be a
bare array or wrapped in {data|items|notes}, a verdict may live in `result`
or `status`, and a control reference may sit under producer.entity,
metadata.path, control, or a bare tag. Every such shape is handled here and
nowhere else, so upstream format drift touches one module.

All functions are pure and tolerate odd input: unexpected types produce empty
values, never exceptions.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from .models import (
    RESULT_FAIL,
    RESULT_PASS,
    RESULT_UNKNOWN,
    Attestation,
    CommitRecord,
    Control,
    ControlRef,
    ControlStatus,
    PolicyViolation,
)

_LIST_KEYS = ("data", "items", "notes", "attestations", "chain", "assets", "results")

_PASS_VALUES = frozenset({"pass", "passed", "passing", "success", "succeeded"})
_FAIL_VALUES = frozenset({"fail", "failed", "failing", "failure", "error"})


def unwrap_list(payload: Any, *keys: str, wrap_single: bool = False) -> list[dict]:
    """Return the list of records inside payload.

    Accepts a top-level array or an object wrapping the array under one of
    keys (or the usual envelope keys when none are given). With wrap_single,
    a bare object that is not an envelope is returned as a one-item list.
    Non-dict entries are dropped.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []
    for key in keys or _LIST_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    if wrap_single and payload:
        return [payload]
    return []


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or epoch seconds) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def timestamp_sort_key(value: Any) -> float:
    """Epoch seconds for sorting; unparseable timestamps sort as oldest."""
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed is not None else float("-inf")


def normalize_result(raw: Any) -> str:
    """Collapse pass/fail spellings to pass | fail | unknown.

    Reads `result` first, then `status`, then a nested detail.result.
    A bare string is normalized directly.
    """
    if isinstance(raw, dict):
        detail = raw.get("detail") if isinstance(raw.get("detail"), dict) else {}
        value = raw.get("result") or raw.get("status") or detail.get("result")
    else:
        value = raw
    if isinstance(value, bool):
        return RESULT_PASS if value else RESULT_FAIL
    if not isinstance(value, str):
        return RESULT_UNKNOWN
    lowered = value.strip().lower()
    if lowered in _PASS_VALUES:
        return RESULT_PASS
    if lowered in _FAIL_VALUES:
        return RESULT_FAIL
    return RESULT_UNKNOWN


# ---------------------------------------------------------------------------
# Commits
# ---------------------------------------------------------------------------


def _branch_names(values: Any) -> list[str]:
    names: list[str] = []
    if not isinstance(values, list):
        return names
    for value in values:
        if isinstance(value, str):
            names.append(value)
        elif isinstance(value, dict) and isinstance(value.get("name"), str):
            names.append(value["name"])
    return names


def normalize_commit(raw: Any) -> Optional[CommitRecord]:
    """Build a CommitRecord from any commit-list entry, or None if it has no id."""
    if not isinstance(raw, dict):
        return None
    commit = raw.get("commit") or raw.get("sha")
    if not isinstance(commit, str) or not commit:
        return None
    branch = raw.get("branch") or raw.get("ref")
    return CommitRecord(
        commit=commit,
        timestamp=raw.get("timestamp") or raw.get("created_at") or raw.get("date"),
        branch=branch if isinstance(branch, str) else None,
        branches=_branch_names(raw.get("branches") or raw.get("refs")),
    )


def normalize_commits(payload: Any) -> list[CommitRecord]:
    records = (normalize_commit(item) for item in unwrap_list(payload, "commits", "data", "items"))
    return [record for record in records if record is not None]


def commit_on_branch(commit: CommitRecord, branch: str) -> bool:
    """True if any branch-membership hint on commit names branch."""
    return commit.branch == branch or branch in commit.branches


# ---------------------------------------------------------------------------
# Notes and attestations
# ---------------------------------------------------------------------------


def note_uuids(notes: list[dict], note_type: Optional[str] = "attestation") -> list[str]:
    """Extract note UUIDs, de-duplicated in first-seen order.

    With note_type set, only notes of that type are kept. Attestations nested
    under a note's `attestations` array are always included.
    """
    uuids: list[str] = []
    seen: set[str] = set()

    def _add(uuid: Any) -> None:
        if isinstance(uuid, str) and uuid and uuid not in seen:
            seen.add(uuid)
            uuids.append(uuid)

    for note in notes:
        if not isinstance(note, dict):
            continue
        inner = note.get("note") if isinstance(note.get("note"), dict) else {}
        kind = note.get("type") or inner.get("type")
        if note_type is None or kind == note_type:
            _add(note.get("uuid") or inner.get("uuid"))
        for nested in note.get("attestations") or []:
            if isinstance(nested, dict):
                nested_inner = nested.get("note") if isinstance(nested.get("note"), dict) else {}
                _add(nested.get("uuid") or nested_inner.get("uuid"))
    return uuids


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first_str(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def normalize_attestation(detail: Any, stub: Optional[dict] = None) -> Optional[Attestation]:
    """Normalize a note detail (and optionally its list stub) into an Attestation.

    Control reference precedence, newest generation first:
      uuid: producer.entity.uuid, control.uuid
      path: producer.entity.path, metadata.path, control.path, path, tag
      name: producer.entity.name, metadata.entity.displayKey, control.name
    Returns None when neither payload carries a UUID.
    """
    detail = detail if isinstance(detail, dict) else {}
    stub = stub if isinstance(stub, dict) else {}
    uuid = _first_str(detail.get("uuid"), stub.get("uuid"), _dig(detail, "note", "uuid"))
    if uuid is None:
        return None

    control = ControlRef(
        uuid=_first_str(
            _dig(detail, "producer", "entity", "uuid"),
            _dig(detail, "control", "uuid"),
            _dig(stub, "control", "uuid"),
        ),
        path=_first_str(
            _dig(detail, "producer", "entity", "path"),
            _dig(detail, "metadata", "path"),
            _dig(detail, "control", "path"),
            detail.get("path"),
            detail.get("tag"),
            _dig(stub, "control", "path"),
            stub.get("path"),
            stub.get("tag"),
        ),
        name=_first_str(
            _dig(detail, "producer", "entity", "name"),
            _dig(detail, "metadata", "entity", "displayKey"),
            _dig(detail, "control", "name"),
            _dig(stub, "control", "name"),
        ),
    )

    result = normalize_result(detail)
    if result == RESULT_UNKNOWN:
        result = normalize_result(stub)

    asset = detail.get("asset") if isinstance(detail.get("asset"), dict) else {}
    return Attestation(
        uuid=uuid,
        result=result,
        timestamp=_first_str(
            detail.get("timestamp"),
            detail.get("origination"),
            stub.get("timestamp"),
            stub.get("origination"),
        ),
        control=control,
        commit=_first_str(
            _dig(detail, "asset", "version", "commit"),
            detail.get("commit"),
            stub.get("commit"),
        ),
        asset_uuid=_first_str(asset.get("uuid"), detail.get("asset"), stub.get("asset")),
        detail=detail or stub,
    )


# ---------------------------------------------------------------------------
# Policy gates and controls catalog
# ---------------------------------------------------------------------------


def parse_policy_groups(
    groups: Any,
    into: dict[str, ControlStatus],
    policy_name: Optional[str] = None,
) -> int:
    """Merge policy-group controls into `into` as required, not-yet-found controls.

    Each control is keyed by path, else uuid, else name, else displayKey.
    Existing keys are never overwritten (first writer wins). policy_name, when
    given, overrides the group's own policy name. Returns the number of
    controls added.
    """
    added = 0
    for group in unwrap_list(groups, "policies", "data", "items"):
        provenance = policy_name or _first_str(
            group.get("policyName"), group.get("name"), group.get("policyEntityKey")
        ) or "Policy"
        for control in group.get("controls") or []:
            if not isinstance(control, dict):
                continue
            path = _first_str(control.get("path"))
            key = _first_str(path, control.get("uuid"), control.get("name"), control.get("displayKey"))
            if key is None or key in into:
                continue
            into[key] = ControlStatus(
                key=key,
                uuid=_first_str(control.get("uuid")) or "",
                name=_first_str(control.get("displayKey"), control.get("name"), path) or key,
                description=_first_str(control.get("description"), _dig(control, "detail", "description"))
                or f"Path: {path or 'N/A'}",
                severity=_first_str(control.get("severity")) or "medium",
                required=True,
                policy_name=provenance,
                control_path=path,
            )
            added += 1
    return added


def parse_gate(raw: Any) -> Optional[dict[str, Optional[str]]]:
    """Reduce a gate record to {key, name, uuid}; None if it has no usable key."""
    if not isinstance(raw, dict):
        return None
    key = _first_str(raw.get("entityKey"), raw.get("entityId"), raw.get("path"), raw.get("name"))
    if key is None:
        return None
    return {
        "key": key,
        "name": _first_str(raw.get("displayKey"), raw.get("name"), key),
        "uuid": _first_str(raw.get("uuid")),
    }


def parse_control_catalog(payload: Any) -> dict[str, dict[str, str]]:
    """Index the controls catalog by uuid, entity id and path.

    Each value is {name, path, description, severity}.
    """
    index: dict[str, dict[str, str]] = {}
    for control in unwrap_list(payload, "controls", "data", "items"):
        uuid = _first_str(control.get("uuid"), control.get("id"))
        entity_id = _first_str(control.get("entityId"), control.get("entity_id"))
        path = _first_str(control.get("path")) or ""
        info = {
            "name": _first_str(control.get("displayKey"), control.get("name"), path, uuid) or "",
            "path": path,
            "description": _first_str(control.get("description"), _dig(control, "detail", "description")) or "",
            "severity": _first_str(control.get("severity")) or "",
        }
        for key in (uuid, entity_id, path):
            if key:
                index[key] = info
    return index


def normalize_control(raw: Any) -> Optional[Control]:
    """Build a Control from a controls-catalog entry; None for non-objects."""
    if not isinstance(raw, dict):
        return None
    path = _first_str(raw.get("path"))
    requirements = raw.get("requirements")
    return Control(
        uuid=_first_str(raw.get("uuid"), raw.get("id")) or "",
        name=_first_str(raw.get("displayKey"), raw.get("name"), path) or "",
        description=_first_str(raw.get("description"), _dig(raw, "detail", "description")) or "",
        category=_first_str(raw.get("category"), raw.get("type")) or "",
        severity=_first_str(raw.get("severity")) or "medium",
        framework=_first_str(raw.get("framework")) or "",
        requirements=requirements if isinstance(requirements, list) else [],
    )


def parse_controls(payload: Any) -> list[Control]:
    controls = (normalize_control(item) for item in unwrap_list(payload, "controls", "data", "items"))
    return [control for control in controls if control is not None]


def _violation_reason(note: dict) -> Optional[str]:
    if _dig(note, "detail", "verification", "valid") is False:
        return "Verification failed"
    logs = _dig(note, "policy", "evaluation", "logs")
    if isinstance(logs, list) and logs and isinstance(logs[0], str):
        return logs[0]
    return _first_str(_dig(note, "detail", "message"))


def normalize_violation(
    note: Any,
    control_index: dict[str, dict[str, str]],
    now: datetime,
) -> Optional[PolicyViolation]:
    """Map a failing attestation note to a PolicyViolation.

    control_index is the output of parse_control_catalog; the note's path (or
    tag) is looked up there for a display name and severity. Returns None
    when the note has no UUID.
    """
    if not isinstance(note, dict):
        return None
    uuid = _first_str(note.get("uuid"))
    if uuid is None:
        return None
    path = _first_str(note.get("path"), note.get("tag")) or ""
    info = control_index.get(path) or {}
    asset = note.get("asset") if isinstance(note.get("asset"), dict) else {}
    timestamp = _first_str(note.get("timestamp"), note.get("origination"))
    when = parse_timestamp(timestamp)
    return PolicyViolation(
        uuid=uuid,
        control_path=path,
        control_name=info.get("name") or path,
        asset_uuid=_first_str(asset.get("uuid"), note.get("asset")),
        asset_name=_first_str(asset.get("name"), asset.get("repository")) or "Unknown",
        asset_type=_first_str(_dig(asset, "type", "name"), asset.get("type")) or "repository",
        commit=_first_str(_dig(asset, "version", "commit"), _dig(asset, "scm", "repository", "commit")),
        branch=_first_str(_dig(note, "declarations", "branch")),
        timestamp=timestamp,
        severity=info.get("severity") or "unset",
        reason=_violation_reason(note),
        age_days=(now - when).days if when is not None else None,
    )


# ---------------------------------------------------------------------------
# Trend metrics
# ---------------------------------------------------------------------------


def _count(*values: Any) -> int:
    """First value that reads as a count (negatives clamp to 0), else 0. Booleans are skipped."""
    for value in values:
        if isinstance(value, bool) or value is None:
            continue
        try:
            return max(0, int(float(value.strip() if isinstance(value, str) else value)))
        except (TypeError, ValueError, OverflowError):
            continue
    return 0


def parse_metric_entry(raw: Any) -> Optional[tuple[str, int, int]]:
    """Reduce a daily metrics entry to (UTC day, passing, failing).

    The day comes from `date`, else `timestamp`. Counts read `passing` then
    `pass` (and `failing` then `fail`); unreadable counts are 0. Returns None
    when the entry has no parseable day.
    """
    if not isinstance(raw, dict):
        return None
    when = parse_timestamp(raw.get("date")) or parse_timestamp(raw.get("timestamp"))
    if when is None:
        return None
    return (
        when.date().isoformat(),
        _count(raw.get("passing"), raw.get("pass")),
        _count(raw.get("failing"), raw.get("fail")),
    )
