"""
core/pipeline.py -- ComplianceEngine, the resolve-collect-aggregate pipeline.

No print statements. Designed to be called by the CLI (main.py) or any tool
layer that holds a pre-authenticated Session. All caching policy lives here:
components below never touch the cache except the catalog's read-through.

Cache keys are built from the *resolved* identity wherever one exists, so a
short SHA and its full form share one compliance entry. A commit that could
not be resolved keys on the raw value, so distinct unresolved commits never
share a snapshot:

  resolve:<tenant>:<identifier>:<branch|->:<commit|->
  compliance:<asset uuid|identifier>:<branch|default>:<resolved commit|raw commit|latest>:<tenant>
  trends:<tenant>:<asset|all>:<start>:<end>:<max points>
  summary:<tenant>
  controls:<tenant>                (raw catalog payload)
  controls:<framework|all>:<severity|all>:<tenant>
  org-compliance:<tenant>          (core/catalog.py)
"""

import logging
from dataclasses import asdict
from typing import Any, Optional

from cache.store import Cache

from .adapters import parse_control_catalog, parse_controls
from .aggregator import aggregate, enrich_control_names, summarize_organization
from .authors import commit_author_stats
from .catalog import Catalog
from .config import Settings, get_settings
from .evidence import EvidenceResult, EvidenceRetriever
from .models import (
    ApplicationMatch,
    AssetSummary,
    Attestation,
    AuthorReport,
    CatalogEntry,
    ComplianceStatus,
    Control,
    ControlStatus,
    OrganizationSummary,
    PolicyViolation,
    ResolvedAssetContext,
    TrendResult,
)
from .registry import RegistryClient, RegistryError
from .requirements import RequiredControlsResolver
from .resolver import IdentifierResolver
from .strategies import StrategyOutcome
from .trends import TrendSampler
from .violations import collect_violations

logger = logging.getLogger("posturelens.pipeline")


class ComplianceEngine:
    def __init__(
        self,
        registry: RegistryClient,
        cache: Optional[Cache] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.settings = settings or get_settings()
        self.catalog = Catalog(registry, cache, self.settings)
        self.resolver = IdentifierResolver(registry, self.catalog, self.settings)
        self.requirements = RequiredControlsResolver(registry, self.catalog, self.settings)
        self.evidence = EvidenceRetriever(registry, self.resolver, self.catalog, self.settings)
        self.trends = TrendSampler(registry, self.settings)

    @property
    def tenant_id(self) -> str:
        return self.registry.tenant_id

    def _cached(self, key: str) -> Optional[Any]:
        if self.cache is None:
            return None
        return self.cache.get(key)

    def _store(self, key: str, value: Any, ttl: int) -> None:
        if self.cache is not None:
            self.cache.set(key, value, ttl=ttl)

    # ------------------------------------------------------------------
    # Resolution and compliance
    # ------------------------------------------------------------------

    def resolve(
        self,
        identifier: str,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> ResolvedAssetContext:
        """Resolve identifier/branch/commit, read through the cache.

        Only resolved contexts are cached; an unknown identifier is looked
        up again on the next call. Raises ValueError for an empty identifier.
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValueError("Asset identifier must not be empty")

        key = f"resolve:{self.tenant_id}:{identifier.lower()}:{branch or '-'}:{commit or '-'}"
        cached = self._cached(key)
        if isinstance(cached, dict):
            logger.debug("Resolution cache hit: %s", key)
            return ResolvedAssetContext.from_dict(cached)

        context = self.resolver.resolve(identifier, branch=branch, commit=commit)
        if context.resolved:
            self._store(key, context.to_dict(), self.settings.compliance_ttl)
        return context

    def asset_compliance(
        self,
        identifier: str,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> ComplianceStatus:
        """Compliance snapshot for one asset at a branch head or commit."""
        context = self.resolve(identifier, branch=branch, commit=commit)
        key = (
            f"compliance:{context.asset_uuid or context.asset_identifier.lower()}"
            f":{context.resolved_branch or 'default'}"
            f":{context.resolved_commit or context.original_commit or 'latest'}"
            f":{self.tenant_id}"
        )
        cached = self._cached(key)
        if isinstance(cached, dict):
            logger.debug("Compliance cache hit: %s", key)
            return ComplianceStatus.from_dict(cached)

        asset_uuid = context.asset_uuid or context.asset_identifier
        required = self.requirements.required_controls(asset_uuid)
        requirement_trace = self.requirements.last_outcome
        evidence = self.evidence.collect(context, commit=commit)

        asset = AssetSummary(
            uuid=asset_uuid,
            name=context.asset_name or context.asset_identifier,
            type="repository" if context.repository_name else "unknown",
            branch=context.resolved_branch,
            commit=context.resolved_commit,
        )
        resolution = self._resolution(context, evidence, requirement_trace)
        status = aggregate(required, evidence.attestations, asset, resolution)

        if status.controls:
            self._enrich_names(status.controls)
            self._store(key, status.to_dict(), self.settings.compliance_ttl)
        logger.info(
            "Compliance for %s: score=%.2f required=%d passing=%d not_found=%d",
            asset_uuid,
            status.score,
            status.required_controls,
            status.required_passing,
            status.required_not_found,
        )
        return status

    @staticmethod
    def _resolution(
        context: ResolvedAssetContext,
        evidence: EvidenceResult,
        requirement_trace: Optional[StrategyOutcome],
    ) -> dict[str, Any]:
        return {
            "original_commit": context.original_commit,
            "resolved_commit": context.resolved_commit,
            "original_branch": context.original_branch,
            "resolved_branch": context.resolved_branch,
            "default_branch": context.default_branch,
            "required_controls_strategy": requirement_trace.winner if requirement_trace else None,
            "evidence_strategy": evidence.strategy,
            "evidence_attempts": evidence.attempts,
            "debug": context.debug,
        }

    def _controls_payload(self) -> Optional[Any]:
        """Raw controls catalog, read through the cache. None if unavailable."""
        key = f"controls:{self.tenant_id}"
        payload = self._cached(key)
        if payload is None:
            try:
                payload = self.registry.controls()
            except RegistryError as e:
                logger.info("Controls catalog unavailable: %s", e)
                return None
            self._store(key, payload, self.settings.controls_ttl)
        return payload

    def _enrich_names(self, controls: list[ControlStatus]) -> None:
        payload = self._controls_payload()
        if payload is not None:
            enrich_control_names(controls, payload)

    def find_attestations(
        self,
        identifier: str,
        control_path: Optional[str] = None,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> list[Attestation]:
        context = self.resolve(identifier, branch=branch, commit=commit)
        return self.evidence.collect(context, control_path=control_path, commit=commit).attestations

    def attestations_for_control(self, control_path: str, limit: Optional[int] = None) -> list[Attestation]:
        return self.evidence.attestations_for_control(control_path, limit=limit or self.settings.notes_limit)

    def evidence_chain(self, note_uuid: str) -> list[dict]:
        return self.evidence.evidence_chain(note_uuid)

    def failing_attestations(
        self,
        asset_identifier: Optional[str] = None,
        control_path: Optional[str] = None,
        severity: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 100,
    ) -> list[PolicyViolation]:
        """Failing attestations as policy violations, newest first."""
        asset_uuid = None
        if asset_identifier:
            try:
                asset_uuid = self.resolve(asset_identifier).asset_uuid or None
            except RegistryError as e:
                logger.info("Matching violations by asset name only, resolution failed: %s", e)
        payload = self._controls_payload()
        return collect_violations(
            self.registry,
            parse_control_catalog(payload) if payload is not None else {},
            asset_identifier=asset_identifier,
            asset_uuid=asset_uuid,
            control_path=control_path,
            severity=severity,
            since=since,
            limit=limit,
        )

    def list_controls(self, framework: Optional[str] = None, severity: Optional[str] = None) -> list[Control]:
        """Controls applicable to the tenant. Raises RegistryError if the registry call fails."""
        key = f"controls:{framework or 'all'}:{severity or 'all'}:{self.tenant_id}"
        cached = self._cached(key)
        if isinstance(cached, list):
            return [Control(**c) for c in cached]
        controls = parse_controls(self.registry.controls(framework=framework, severity=severity))
        if controls:
            self._store(key, [asdict(c) for c in controls], self.settings.controls_ttl)
        return controls

    # ------------------------------------------------------------------
    # Organization views
    # ------------------------------------------------------------------

    def compliance_trends(
        self,
        start: str,
        end: str,
        asset_identifier: Optional[str] = None,
        max_data_points: int = 30,
    ) -> TrendResult:
        key = f"trends:{self.tenant_id}:{asset_identifier or 'all'}:{start}:{end}:{max_data_points}"
        cached = self._cached(key)
        if isinstance(cached, dict):
            return TrendResult.from_dict(cached)
        result = self.trends.sample(asset_identifier, start, end, max_data_points=max_data_points)
        if result.data_points:
            self._store(key, result.to_dict(), self.settings.trends_ttl)
        return result

    def compliance_summary(self) -> OrganizationSummary:
        """Org-wide posture. Raises RegistryError if the catalog cannot be fetched."""
        key = f"summary:{self.tenant_id}"
        cached = self._cached(key)
        if isinstance(cached, dict):
            return OrganizationSummary(**cached)
        summary = summarize_organization(self.catalog.applications(), self.tenant_id)
        self._store(key, summary.to_dict(), self.settings.summary_ttl)
        return summary

    def list_assets(self, search: Optional[str] = None) -> list[CatalogEntry]:
        return self.catalog.list_assets(search)

    def resolve_application(self, term: str) -> ApplicationMatch:
        return self.catalog.resolve_application(term)

    def list_gates(self) -> list[dict]:
        return self.requirements.list_gates()

    def gate_required_controls(self, gate_key: str) -> list[ControlStatus]:
        return list(self.requirements.gate_required_controls(gate_key).values())

    def commit_authors(
        self,
        asset_identifier: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: int = 500,
    ) -> AuthorReport:
        return commit_author_stats(self.registry, asset_identifier, start=start, end=end, limit=limit)
