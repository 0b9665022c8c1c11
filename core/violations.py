"""
violations.py -- Failing attestations across the organization.

A violation is an attestation note with result=fail. The registry filters by
result, control path and start time server-side; asset, severity and the
exact `since` cut are applied here. Control names and severities come from
the controls catalog index (adapters.parse_control_catalog).

When no control in the catalog carries a severity, a severity filter would
drop everything, so it is ignored and a warning logged instead.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .adapters import normalize_violation, parse_timestamp, timestamp_sort_key, unwrap_list
from .models import PolicyViolation
from .registry import RegistryClient, RegistryError

logger = logging.getLogger("posturelens.violations")

MAX_VIOLATIONS = 500
# Extra notes requested beyond limit, capped, so client-side filters still fill the page.
_FETCH_HEADROOM = 20
_FETCH_CAP = 150


def _asset_matches(violation: PolicyViolation, asset_uuid: Optional[str], needle: str) -> bool:
    if asset_uuid and violation.asset_uuid == asset_uuid:
        return True
    return needle in violation.asset_name.lower()


def collect_violations(
    registry: RegistryClient,
    control_index: dict[str, dict[str, str]],
    asset_identifier: Optional[str] = None,
    asset_uuid: Optional[str] = None,
    control_path: Optional[str] = None,
    severity: Optional[str] = None,
    since: Optional[str] = None,
    limit: int = 100,
    now: Optional[datetime] = None,
) -> list[PolicyViolation]:
    """Failing attestations, newest first, at most limit of them.

    asset_uuid is the resolved uuid of asset_identifier, if any; a note
    matches the asset by uuid or by a case-insensitive substring of its asset
    name. Raises ValueError for an unparseable since. A failed notes query
    yields an empty list.
    """
    since_dt = parse_timestamp(since) if since else None
    if since and since_dt is None:
        raise ValueError(f"Invalid since date: {since!r}")
    limit = max(1, min(limit, MAX_VIOLATIONS))
    now = now or datetime.now(timezone.utc)

    params = {
        "type": "attestation",
        "result": "fail",
        "limit": min(limit + _FETCH_HEADROOM, _FETCH_CAP),
        "path": control_path,
        "from": since_dt.isoformat() if since_dt else None,
    }
    try:
        notes = unwrap_list(registry.query_notes(params))
    except RegistryError as e:
        logger.warning("Failing attestations unavailable: %s", e)
        return []

    has_severity = any(info.get("severity") for info in control_index.values())
    if severity and not has_severity:
        logger.warning("Severity filter %r ignored: no control in the catalog has a severity", severity)
        severity = None

    needle = (asset_identifier or "").lower()
    violations: list[PolicyViolation] = []
    for note in notes:
        violation = normalize_violation(note, control_index, now)
        if violation is None:
            continue
        if needle and not _asset_matches(violation, asset_uuid, needle):
            continue
        if severity and violation.severity != severity:
            continue
        when = parse_timestamp(violation.timestamp)
        if since_dt is not None and when is not None and when < since_dt:
            continue
        violations.append(violation)
        if len(violations) >= limit:
            break

    violations.sort(key=lambda v: timestamp_sort_key(v.timestamp), reverse=True)
    logger.info("Found %d failing attestations in %d notes", len(violations), len(notes))
    return violations
