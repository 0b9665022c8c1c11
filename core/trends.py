"""
trends.py -- Compliance score over time, bucketed by day.

Two sources, tried in order:

  metrics  /metrics/trends/heatbar/control, pre-aggregated daily counts.
           Org-wide only, so it is skipped when an asset filter is given.
  notes    /notes?type=attestation with server-side from/to, filtered by
           asset name or uuid on the client.

Daily buckets are keyed by UTC calendar day. The ordered day list is
down-sampled by taking every k-th bucket, k = ceil(total_days / max_points),
and never exceeds max_points.

Control deltas (notes source only) split the range at its midpoint and
compare early vs late pass rates per control path.
"""

import logging
import math
from datetime import datetime
from typing import Any, Optional

from .adapters import normalize_result, parse_metric_entry, parse_timestamp, unwrap_list
from .config import Settings
from .models import RESULT_PASS, ControlChange, TrendDataPoint, TrendResult
from .registry import RegistryClient
from .strategies import Strategy, first_non_empty

logger = logging.getLogger("posturelens.trends")


def _parse_bound(value: str, name: str) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid {name} date: {value!r}")
    return parsed


def sample_interval(total_days: int, max_points: int) -> int:
    return max(1, math.ceil(total_days / max_points))


def downsample(buckets: dict[str, dict[str, int]], interval: int, max_points: int) -> list[TrendDataPoint]:
    """Every interval-th day bucket in ascending date order, at most max_points."""
    points: list[TrendDataPoint] = []
    days = sorted(buckets)
    for day in days[::interval]:
        counts = buckets[day]
        total = counts["passing"] + counts["failing"]
        points.append(
            TrendDataPoint(
                date=day,
                score=counts["passing"] / total if total else 0.0,
                passing=counts["passing"],
                failing=counts["failing"],
                total=total,
            )
        )
        if len(points) >= max_points:
            break
    return points


def _asset_matches(note: dict, needle: str) -> bool:
    asset = note.get("asset")
    if isinstance(asset, dict):
        fields = (asset.get("name"), asset.get("uuid"))
    else:
        fields = (asset,)
    return any(isinstance(f, str) and needle in f.lower() for f in fields)


class TrendSampler:
    def __init__(self, registry: RegistryClient, settings: Settings) -> None:
        self.registry = registry
        self.settings = settings

    def sample(
        self,
        asset_identifier: Optional[str],
        start: str,
        end: str,
        max_data_points: int = 30,
    ) -> TrendResult:
        """Sample compliance between start and end (inclusive dates or ISO timestamps).

        Raises ValueError for unparseable or inverted dates. Upstream failures
        yield an empty TrendResult.
        """
        start_dt = _parse_bound(start, "start")
        end_dt = _parse_bound(end, "end")
        if end_dt < start_dt:
            raise ValueError("end date is before start date")
        max_points = max(1, max_data_points)
        total_days = max(1, math.ceil((end_dt - start_dt).total_seconds() / 86400))
        interval = sample_interval(total_days, max_points)
        logger.info(
            "Sampling trends asset=%s %s..%s (%d days, every %d day(s))",
            asset_identifier or "all",
            start,
            end,
            total_days,
            interval,
        )

        outcome = first_non_empty(
            [
                Strategy(
                    "metrics",
                    lambda: self._from_metrics(start_dt, end_dt, interval, max_points),
                    applies=not asset_identifier,
                ),
                Strategy(
                    "notes",
                    lambda: self._from_notes(asset_identifier, start_dt, end_dt, interval, max_points),
                ),
            ],
            label="trends",
        )
        return outcome.value or TrendResult()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _from_metrics(
        self, start: datetime, end: datetime, interval: int, max_points: int
    ) -> Optional[TrendResult]:
        payload = self.registry.trend_metrics(start.date().isoformat(), end.date().isoformat())
        buckets: dict[str, dict[str, int]] = {}
        for entry in unwrap_list(payload):
            parsed = parse_metric_entry(entry)
            if parsed is None:
                continue
            day, passing, failing = parsed
            if passing + failing == 0:
                continue
            counts = buckets.setdefault(day, {"passing": 0, "failing": 0})
            counts["passing"] += passing
            counts["failing"] += failing
        points = downsample(buckets, interval, max_points)
        return TrendResult(data_points=points) if points else None

    def _from_notes(
        self,
        asset_identifier: Optional[str],
        start: datetime,
        end: datetime,
        interval: int,
        max_points: int,
    ) -> Optional[TrendResult]:
        notes = unwrap_list(
            self.registry.query_notes(
                {
                    "type": "attestation",
                    "limit": self.settings.trend_notes_limit,
                    "from": start.isoformat(),
                    "to": end.isoformat(),
                }
            )
        )
        if asset_identifier:
            needle = asset_identifier.lower()
            notes = [n for n in notes if _asset_matches(n, needle)]
        logger.debug("Trend notes after asset filter: %d", len(notes))

        midpoint = start + (end - start) / 2
        buckets: dict[str, dict[str, int]] = {}
        per_control: dict[str, dict[str, Any]] = {}

        for note in notes:
            when = parse_timestamp(note.get("timestamp") or note.get("origination"))
            if when is None:
                continue
            passed = normalize_result(note) == RESULT_PASS
            counts = buckets.setdefault(when.date().isoformat(), {"passing": 0, "failing": 0})
            counts["passing" if passed else "failing"] += 1

            control = note.get("control") if isinstance(note.get("control"), dict) else {}
            path = next((p for p in (note.get("path"), control.get("path")) if isinstance(p, str) and p), "unknown")
            stats = per_control.setdefault(
                path,
                {"name": control.get("name") or path, "early": [0, 0], "late": [0, 0]},
            )
            half = stats["early"] if when < midpoint else stats["late"]
            half[1] += 1
            if passed:
                half[0] += 1

        points = downsample(buckets, interval, max_points)
        if not points:
            return None
        improved, declined = self._control_changes(per_control)
        return TrendResult(data_points=points, most_improved=improved, most_declined=declined)

    def _control_changes(self, per_control: dict[str, dict[str, Any]]) -> tuple[list[ControlChange], list[ControlChange]]:
        threshold = self.settings.trend_delta_threshold
        minimum = self.settings.trend_min_observations
        changes: list[ControlChange] = []

        for path, stats in per_control.items():
            early_pass, early_total = stats["early"]
            late_pass, late_total = stats["late"]
            if early_total < minimum or late_total < minimum:
                continue
            early_score = early_pass / early_total * 100
            late_score = late_pass / late_total * 100
            delta = late_score - early_score
            if delta > threshold:
                direction = "improved"
            elif delta < -threshold:
                direction = "declined"
            else:
                direction = "stable"
            changes.append(
                ControlChange(
                    control_path=path,
                    control_name=stats["name"],
                    start_score=round(early_score, 1),
                    end_score=round(late_score, 1),
                    change_percent=round(delta, 1),
                    direction=direction,
                )
            )

        top = self.settings.trend_top_changes
        improved = sorted((c for c in changes if c.direction == "improved"), key=lambda c: -c.change_percent)
        declined = sorted((c for c in changes if c.direction == "declined"), key=lambda c: c.change_percent)
        return improved[:top], declined[:top]
