"""
evidence.py -- Find attestation evidence for a resolved asset.

List endpoints only return note stubs; the full evidence payload (measured
values, thresholds, evaluation narrative) comes from /evidence/notes/{uuid}.
Retrieval is therefore two-phase:

  1. Collect attestation UUIDs from the first strategy that finds any:
       notes-by-repository-commit    /notes?repositoryId&commit&type=attestation (+chain)
       evidence-by-project-commit    /evidence/notes?project&repository&commit (+chain)
       evidence-by-commit            /evidence/notes?commit (org-wide, +chain)
       evidence-latest               /evidence/notes?repositoryId&type=attestation
       asset-attestations            /evidence/assets/{uuid}/attestations
       attestation-snapshot          /evidence/assets/{uuid}/attestations/snapshot
       catalog                       attestations embedded in the org catalog
  2. Fetch details in fixed-size concurrent batches, then apply the
     client-side control-path and commit filters and sort newest first.

When a query returns notes but none of them is an attestation (origin or
occurrence notes), each note's chain is walked to find descendant
attestations, up to a configured number of notes.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

from .adapters import normalize_attestation, note_uuids, timestamp_sort_key, unwrap_list
from .catalog import Catalog
from .config import Settings
from .models import Attestation, ResolvedAssetContext
from .registry import RegistryClient, RegistryError
from .resolver import IdentifierResolver
from .strategies import Strategy, first_non_empty

logger = logging.getLogger("posturelens.evidence")

_NON_PATH_CHARS = re.compile(r"[^a-z0-9.]")

# Only the newest N notes get a detail fetch in org-wide control lookups.
_CONTROL_DETAIL_LIMIT = 20


@dataclass
class EvidenceResult:
    attestations: list[Attestation] = field(default_factory=list)
    strategy: Optional[str] = None
    attempts: list[dict[str, Any]] = field(default_factory=list)


def normalize_control_path(value: Optional[str]) -> str:
    return _NON_PATH_CHARS.sub("", (value or "").lower())


def filter_by_control(attestations: list[Attestation], control_path: Optional[str]) -> list[Attestation]:
    """Keep attestations whose control path or name overlaps control_path in either direction."""
    needle = normalize_control_path(control_path)
    if not needle:
        return attestations
    kept = []
    for att in attestations:
        candidates = [normalize_control_path(att.control.path), normalize_control_path(att.control.name)]
        if any(c and (needle in c or c in needle) for c in candidates):
            kept.append(att)
    return kept


def filter_by_commit(attestations: list[Attestation], commit: Optional[str]) -> list[Attestation]:
    """Keep attestations whose commit shares a prefix with commit.

    If none match, the input is returned unchanged: the commit field on
    evidence is not reliable enough to justify returning nothing.
    """
    if not commit or not attestations:
        return attestations
    wanted = commit.lower()
    kept = [
        att
        for att in attestations
        if att.commit and (att.commit.lower().startswith(wanted) or wanted.startswith(att.commit.lower()))
    ]
    if not kept:
        logger.info("No attestations matched commit %s, keeping all %d", commit, len(attestations))
        return attestations
    return kept


class EvidenceRetriever:
    def __init__(
        self,
        registry: RegistryClient,
        resolver: IdentifierResolver,
        catalog: Catalog,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.catalog = catalog
        self.settings = settings

    def find_attestations(
        self,
        identifier: str,
        control_path: Optional[str] = None,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> list[Attestation]:
        context = self.resolver.resolve(identifier, branch=branch, commit=commit)
        return self.collect(context, control_path=control_path, commit=commit).attestations

    def collect(
        self,
        context: ResolvedAssetContext,
        control_path: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> EvidenceResult:
        """Run the UUID strategies for context, fetch details and filter.

        commit is the caller-supplied commit (possibly short); it defaults to
        context.original_commit.
        """
        raw_commit = commit or context.original_commit
        repo_id = context.repository_id or context.asset_uuid
        scoped_commit = context.resolved_commit or raw_commit
        snapshot_commit = raw_commit or context.resolved_commit

        outcome = first_non_empty(
            [
                Strategy(
                    "notes-by-repository-commit",
                    lambda: self._notes_with_chain(
                        self.registry.query_notes(
                            {"repositoryId": repo_id, "commit": context.resolved_commit, "type": "attestation"}
                        ),
                        self.settings.chain_follow_limit,
                    ),
                    applies=bool(context.resolved_commit),
                ),
                Strategy(
                    "evidence-by-project-commit",
                    lambda: self._notes_with_chain(
                        self.registry.query_evidence_notes(
                            {
                                "project": context.project_name,
                                "repository": context.repository_name,
                                "commit": scoped_commit,
                            }
                        ),
                        self.settings.chain_follow_limit,
                    ),
                    applies=bool(context.project_name and context.repository_name and scoped_commit),
                ),
                Strategy(
                    "evidence-by-commit",
                    lambda: self._notes_with_chain(
                        self.registry.query_evidence_notes({"commit": raw_commit}),
                        self.settings.broad_chain_follow_limit,
                    ),
                    applies=bool(raw_commit),
                ),
                Strategy(
                    "evidence-latest",
                    lambda: note_uuids(
                        unwrap_list(
                            self.registry.query_evidence_notes({"repositoryId": repo_id, "type": "attestation"})
                        ),
                        None,
                    ),
                    applies=bool(repo_id),
                ),
                Strategy(
                    "asset-attestations",
                    lambda: note_uuids(
                        unwrap_list(
                            self.registry.asset_attestations(context.asset_uuid, snapshot_commit),
                            "attestations",
                            "notes",
                            "data",
                        ),
                        None,
                    ),
                    applies=bool(context.asset_uuid),
                ),
                Strategy(
                    "attestation-snapshot",
                    lambda: note_uuids(
                        unwrap_list(
                            self.registry.attestation_snapshot(context.asset_uuid, snapshot_commit),
                            "attestations",
                        ),
                        None,
                    ),
                    applies=bool(context.asset_uuid),
                ),
                Strategy(
                    "catalog",
                    lambda: self.catalog.attestation_uuids(context.asset_identifier),
                    applies=bool(context.asset_identifier),
                ),
            ],
            label=f"evidence {context.asset_identifier}",
        )

        result = EvidenceResult(strategy=outcome.winner, attempts=outcome.trace())
        uuids: list[str] = outcome.value or []
        if not uuids:
            logger.info("No attestation UUIDs found for %r", context.asset_identifier)
            return result

        attestations = self.fetch_details(uuids)
        logger.info("Fetched details for %d of %d attestations", len(attestations), len(uuids))

        attestations = filter_by_control(attestations, control_path)
        attestations = filter_by_commit(attestations, raw_commit)
        attestations.sort(key=lambda a: timestamp_sort_key(a.timestamp), reverse=True)
        result.attestations = attestations
        return result

    def fetch_details(self, uuids: list[str]) -> list[Attestation]:
        """Fetch and normalize note details, batch by batch. Failed fetches are dropped."""
        size = self.settings.detail_batch_size
        attestations: list[Attestation] = []
        with ThreadPoolExecutor(max_workers=size) as executor:
            for start in range(0, len(uuids), size):
                batch = uuids[start : start + size]
                for att in executor.map(self._detail, batch):
                    if att is not None:
                        attestations.append(att)
        return attestations

    def _detail(self, note_uuid: str) -> Optional[Attestation]:
        try:
            payload = self.registry.note_detail(note_uuid)
        except RegistryError as e:
            logger.warning("Failed to fetch attestation %s: %s", note_uuid, e)
            return None
        return normalize_attestation(payload, {"uuid": note_uuid})

    def _notes_with_chain(self, payload: Any, chain_limit: int) -> list[str]:
        notes = unwrap_list(payload)
        found = note_uuids(notes, "attestation")
        if found:
            return found

        origins = note_uuids(notes, None)[:chain_limit]
        for origin in origins:
            try:
                chain = unwrap_list(self.registry.note_chain(origin), "chain", "notes", "data", wrap_single=True)
            except RegistryError as e:
                logger.debug("Chain lookup failed for %s: %s", origin, e)
                continue
            for uuid in note_uuids(chain, "attestation"):
                if uuid not in found:
                    found.append(uuid)
        if origins:
            logger.debug("Chain walk over %d notes found %d attestations", len(origins), len(found))
        return found

    # ------------------------------------------------------------------
    # Org-wide lookups
    # ------------------------------------------------------------------

    def attestations_for_control(self, control_path: str, limit: int = 100) -> list[Attestation]:
        """Latest evidence for one control across the organization, newest first."""
        try:
            notes = unwrap_list(
                self.registry.query_notes({"type": "attestation", "path": control_path, "limit": limit})
            )
        except RegistryError as e:
            logger.warning("Attestations for control %s unavailable: %s", control_path, e)
            return []

        attestations: list[Attestation] = []
        detailed = {a.uuid: a for a in self.fetch_details(note_uuids(notes[:_CONTROL_DETAIL_LIMIT], None))}
        for index, note in enumerate(notes):
            att = detailed.get(note.get("uuid")) if index < _CONTROL_DETAIL_LIMIT else None
            if att is None:
                att = normalize_attestation(note)
            if att is None:
                continue
            if not att.control.path:
                att.control.path = control_path
            attestations.append(att)

        attestations.sort(key=lambda a: timestamp_sort_key(a.timestamp), reverse=True)
        return attestations

    def evidence_chain(self, note_uuid: str) -> list[dict]:
        """Lineage of a note, origin first."""
        try:
            payload = self.registry.note_chain(note_uuid)
        except RegistryError as e:
            logger.warning("Evidence chain for %s unavailable: %s", note_uuid, e)
            return []
        return unwrap_list(payload, "chain", "notes", "data", wrap_single=True)
