"""
resolver.py -- Turn a free-text (identifier, branch, commit) into canonical identity.

Resolution is best-effort and never raises for "not found". Each step
records what it did under ResolvedAssetContext.debug:

  asset_resolution   catalog match (application or child asset)
  commit_resolution  short-to-full SHA expansion, or full SHA used as-is
  branch_resolution  newest commit on the target branch

A supplied commit always wins over a supplied branch; branch resolution only
runs when no commit was given.
"""

import logging
from typing import Optional

from .adapters import commit_on_branch, normalize_commits, timestamp_sort_key, unwrap_list
from .catalog import Catalog, CatalogMatch
from .config import Settings
from .models import FULL_COMMIT_LENGTH, CommitRecord, ResolvedAssetContext
from .registry import RegistryClient, RegistryError

logger = logging.getLogger("posturelens.resolver")


def _is_repository(asset: dict) -> bool:
    return asset.get("type") == "repository" or bool(asset.get("repository"))


class IdentifierResolver:
    def __init__(self, registry: RegistryClient, catalog: Catalog, settings: Settings) -> None:
        self.registry = registry
        self.catalog = catalog
        self.settings = settings

    def resolve(
        self,
        identifier: str,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> ResolvedAssetContext:
        identifier = identifier.strip()
        branch = branch or None
        commit = commit.strip() if commit else None
        ctx = ResolvedAssetContext(
            asset_identifier=identifier,
            asset_name=identifier,
            resolved_branch=branch,
            original_branch=branch,
            original_commit=commit,
        )
        logger.info(
            "Resolving asset=%r branch=%s commit=%s", identifier, branch or "default", commit or "latest"
        )

        self._resolve_asset(ctx)
        if not ctx.resolved:
            logger.info("Could not resolve asset %r", identifier)
            return ctx

        self._resolve_metadata(ctx)

        if commit and len(commit) >= FULL_COMMIT_LENGTH:
            ctx.resolved_commit = commit
            ctx.debug["commit_resolution"] = {"type": "full_sha", "status": "used_as_is"}
        else:
            try:
                commits = normalize_commits(self.registry.asset_commits(ctx.asset_uuid))
            except RegistryError as e:
                logger.warning("Commit list unavailable for %s: %s", ctx.asset_uuid, e)
                key = "commit_resolution" if commit else "branch_resolution"
                ctx.debug[key] = {"status": "error", "error": str(e)}
            else:
                if commit:
                    self._expand_short_commit(ctx, commit, commits)
                else:
                    self._latest_on_branch(ctx, branch, commits)

        logger.info(
            "Resolved %r -> asset=%s commit=%s branch=%s",
            identifier,
            ctx.asset_uuid,
            ctx.resolved_commit,
            ctx.resolved_branch,
        )
        return ctx

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_asset(self, ctx: ResolvedAssetContext) -> None:
        try:
            hit = self.catalog.match(ctx.asset_identifier)
        except RegistryError as e:
            logger.warning("Catalog lookup failed for %r: %s", ctx.asset_identifier, e)
            ctx.debug["asset_resolution"] = {"found": False, "error": str(e)}
            return

        if hit is not None:
            self._apply_match(ctx, hit)
        ctx.debug["asset_resolution"] = {
            "found": ctx.resolved,
            "matched": hit.kind if hit is not None else None,
            "asset_uuid": ctx.asset_uuid,
            "asset_name": ctx.asset_name,
            "project_name": ctx.project_name,
            "repository_name": ctx.repository_name,
        }

    def _apply_match(self, ctx: ResolvedAssetContext, hit: CatalogMatch) -> None:
        app = hit.application
        ctx.application_version_uuid = app.get("version_uuid")

        if hit.asset is not None:
            asset = hit.asset
            ctx.asset_name = asset.get("name") or ctx.asset_identifier
        else:
            ctx.asset_name = app.get("app_name") or str(app.get("app_code") or "") or ctx.asset_identifier
            children = [a for a in app.get("assets") or [] if isinstance(a, dict)]
            asset = next((a for a in children if _is_repository(a)), None)
            if asset is None and children:
                asset = children[0]

        if asset is not None:
            ctx.asset_uuid = asset.get("uuid") or ""
            ctx.project_name = asset.get("project")
            ctx.repository_name = asset.get("repository") or asset.get("name")
        if not ctx.asset_uuid and hit.asset is None:
            # Application without usable children: the application is the asset.
            ctx.asset_uuid = app.get("identifier") or app.get("version_uuid") or ""

    def _resolve_metadata(self, ctx: ResolvedAssetContext) -> None:
        repository = ctx.repository_name or ctx.asset_identifier
        try:
            payload = self.registry.asset_metadata(repository)
        except RegistryError as e:
            logger.info("Asset metadata unavailable for %s: %s", repository, e)
            return

        for asset in unwrap_list(payload, "assets", "data", "items", wrap_single=True):
            scm = asset.get("scm") if isinstance(asset.get("scm"), dict) else {}
            default_branch = scm.get("defaultBranch") or asset.get("defaultBranch")
            if default_branch and not ctx.default_branch:
                ctx.default_branch = default_branch
            if asset.get("repositoryId") and not ctx.repository_id:
                ctx.repository_id = asset["repositoryId"]
            if ctx.default_branch:
                break
        logger.debug("Default branch=%s repositoryId=%s", ctx.default_branch, ctx.repository_id)

    def _expand_short_commit(self, ctx: ResolvedAssetContext, short: str, commits: list[CommitRecord]) -> None:
        prefix = short.lower()
        match = next((c for c in commits if c.commit.lower().startswith(prefix)), None)
        if match is None:
            logger.info("Short commit %s not found among %d commits", short, len(commits))
            ctx.debug["commit_resolution"] = {
                "type": "short_to_full",
                "short_commit": short,
                "status": "not_found",
                "commits_checked": len(commits),
            }
            return
        ctx.resolved_commit = match.commit
        ctx.debug["commit_resolution"] = {
            "type": "short_to_full",
            "short_commit": short,
            "full_commit": match.commit,
            "status": "resolved",
        }

    def _latest_on_branch(
        self, ctx: ResolvedAssetContext, branch: Optional[str], commits: list[CommitRecord]
    ) -> None:
        target = branch or ctx.default_branch or self.settings.fallback_branch
        ctx.resolved_branch = target

        on_branch = [c for c in commits if commit_on_branch(c, target)]
        # Missing branch metadata means "could be on any branch", not "no commits".
        candidates = on_branch or list(commits)
        candidates.sort(key=lambda c: timestamp_sort_key(c.timestamp), reverse=True)

        if not candidates:
            ctx.debug["branch_resolution"] = {"branch": target, "status": "no_commits_found", "total_commits": 0}
            return
        ctx.resolved_commit = candidates[0].commit
        ctx.debug["branch_resolution"] = {
            "branch": target,
            "latest_commit": ctx.resolved_commit,
            "commits_on_branch": len(on_branch),
            "total_commits": len(commits),
            "status": "resolved",
        }
