"""
aggregator.py -- Project attestation evidence onto required controls.

Required controls (from policy gates) are the spine of a compliance
snapshot. Each attestation is matched to one of them by, in order:

  1. exact key (path, else name, else attestation uuid)
  2. control path
  3. control name
  4. control uuid
  5. linear scan of required controls comparing uuid or path

Step 5 is the degraded path for key-scheme mismatches between the gate and
evidence subsystems. It is logged every time it fires.

Evidence that matches no required control becomes an optional control
(required=False). Required controls with no evidence stay "not_found" and
count against the score even though they are not in the failing tally.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .adapters import normalize_result, parse_control_catalog, timestamp_sort_key
from .models import (
    RESULT_FAIL,
    RESULT_PASS,
    STATUS_FAILING,
    STATUS_NOT_FOUND,
    STATUS_PASSING,
    AssetSummary,
    Attestation,
    ComplianceStatus,
    ControlStatus,
    OrganizationSummary,
)

logger = logging.getLogger("posturelens.aggregator")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _find_required(controls: dict[str, ControlStatus], att: Attestation, key: str) -> Optional[ControlStatus]:
    ref = att.control
    for candidate in (key, ref.path, ref.name, ref.uuid):
        if candidate and candidate in controls:
            return controls[candidate]

    if ref.uuid or ref.path:
        for ctrl_key, ctrl in controls.items():
            if not ctrl.required:
                continue
            if (ref.uuid and ctrl.uuid == ref.uuid) or (ref.path and ctrl.control_path == ref.path):
                logger.info(
                    "Linear scan matched attestation %s to required control %s (uuid=%s path=%s)",
                    att.uuid,
                    ctrl_key,
                    ref.uuid,
                    ref.path,
                )
                return ctrl
    return None


def aggregate(
    required: dict[str, ControlStatus],
    attestations: list[Attestation],
    asset: AssetSummary,
    resolution: Optional[dict[str, Any]] = None,
) -> ComplianceStatus:
    """Fold attestations onto a copy of required and score the result.

    required is not modified, so aggregating the same inputs twice yields
    identical totals. Attestations are folded newest first: a control's
    status reflects its most recent evidence, counters reflect all of it.
    """
    controls = copy.deepcopy(required)
    passing = failing = 0

    for att in sorted(attestations, key=lambda a: timestamp_sort_key(a.timestamp), reverse=True):
        is_passing = att.passed
        if is_passing:
            passing += 1
        else:
            failing += 1

        key = att.control.path or att.control.name or att.uuid
        existing = _find_required(controls, att, key)
        if existing is None:
            controls[key] = ControlStatus(
                key=key,
                uuid=att.control.uuid or att.uuid,
                name=att.control.name or key,
                description=f"Path: {att.control.path}" if att.control.path else f"Control: {key}",
                status=STATUS_PASSING if is_passing else STATUS_FAILING,
                passing_checks=1 if is_passing else 0,
                failing_checks=0 if is_passing else 1,
                total_checks=1,
                required=False,
                control_path=att.control.path,
            )
            continue

        if existing.total_checks == 0:
            existing.status = STATUS_PASSING if is_passing else STATUS_FAILING
        existing.uuid = att.control.uuid or existing.uuid
        if is_passing:
            existing.passing_checks += 1
        else:
            existing.failing_checks += 1
        existing.total_checks += 1

    required_list = [c for c in controls.values() if c.required]
    required_total = len(required_list)
    required_passing = sum(1 for c in required_list if c.status == STATUS_PASSING)
    required_not_found = sum(1 for c in required_list if c.status == STATUS_NOT_FOUND)

    if required_total > 0:
        score = required_passing / required_total
    else:
        total = passing + failing
        score = passing / total if total else 0.0

    return ComplianceStatus(
        asset=asset,
        score=score,
        passing=passing,
        failing=failing,
        total=passing + failing,
        controls=list(controls.values()),
        required_controls=required_total,
        required_passing=required_passing,
        required_not_found=required_not_found,
        last_updated=_now(),
        resolution=dict(resolution or {}),
    )


def enrich_control_names(controls: list[ControlStatus], catalog_payload: Any) -> int:
    """Replace display names and descriptions from the controls catalog.

    Only name and description change; status, counters and score are never
    touched. Returns the number of controls enriched.
    """
    index = parse_control_catalog(catalog_payload)
    if not index:
        return 0
    enriched = 0
    for control in controls:
        info = None
        for candidate in (control.uuid, control.control_path, control.key, control.name):
            if candidate and candidate in index:
                info = index[candidate]
                break
        if info is None:
            continue
        control.name = info["name"] or info["path"] or control.name
        if info["description"]:
            control.description = info["description"]
        elif info["path"]:
            control.description = f"Path: {info['path']}"
        enriched += 1
    logger.debug("Enriched %d of %d controls with catalog names", enriched, len(controls))
    return enriched


def _tally(attestations: Any) -> tuple[int, int]:
    passing = failing = 0
    for att in attestations or []:
        if not isinstance(att, dict):
            continue
        result = normalize_result(att)
        if result == RESULT_PASS:
            passing += 1
        elif result == RESULT_FAIL:
            failing += 1
    return passing, failing


def summarize_organization(applications: list[dict], tenant_id: str) -> OrganizationSummary:
    """Org-wide posture from the compliance catalog.

    Applications and their child assets each count as one asset. An asset is
    compliant with at least one passing and no failing attestation, and
    non-compliant with any failing attestation. Every failing attestation is
    a high issue.
    """
    total_assets = compliant = non_compliant = 0
    total_passing = total_failing = 0

    for app in applications:
        if not isinstance(app, dict):
            continue
        units = [app] + [a for a in app.get("assets") or [] if isinstance(a, dict)]
        for unit in units:
            total_assets += 1
            unit_passing, unit_failing = _tally(unit.get("attestations"))
            total_passing += unit_passing
            total_failing += unit_failing
            if unit_failing:
                non_compliant += 1
            elif unit_passing:
                compliant += 1

    checks = total_passing + total_failing
    return OrganizationSummary(
        tenant_id=tenant_id,
        overall_score=total_passing / checks if checks else 0.0,
        total_assets=total_assets,
        compliant_assets=compliant,
        non_compliant_assets=non_compliant,
        high_issues=total_failing,
        passing=total_passing,
        failing=total_failing,
        last_updated=_now(),
    )
