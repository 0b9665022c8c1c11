"""
catalog.py -- The organization-wide compliance catalog.

The catalog is a tree: applications (app_name, app_code, identifier,
version_uuid, attestations) each holding child assets (uuid, name,
repository, project, type, attestations). It is the only place a free-text
identifier can be matched against, so every resolution starts here.

Matching is case-insensitive substring, applications before child assets,
first match wins. There is no ranking: two applications whose names both
contain the search term resolve to whichever the registry lists first.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from cache.store import Cache

from .adapters import note_uuids, unwrap_list
from .config import Settings
from .models import ApplicationMatch, CatalogEntry
from .registry import RegistryClient

logger = logging.getLogger("posturelens.catalog")


@dataclass
class CatalogMatch:
    """A catalog hit. asset is None when the application itself matched."""

    application: dict
    asset: Optional[dict] = None

    @property
    def kind(self) -> str:
        return "asset" if self.asset is not None else "application"


def _text(value: Any) -> str:
    return str(value).lower() if value not in (None, "") else ""


def _contains(needle: str, *fields: Any) -> bool:
    return any(needle in _text(f) for f in fields if _text(f))


def _children(app: dict) -> list[dict]:
    return [a for a in app.get("assets") or [] if isinstance(a, dict)]


class Catalog:
    def __init__(self, registry: RegistryClient, cache: Optional[Cache], settings: Settings) -> None:
        self.registry = registry
        self.cache = cache
        self.settings = settings

    def applications(self) -> list[dict]:
        """Return the org catalog, read through the cache.

        Raises RegistryError when the catalog is not cached and the registry
        call fails.
        """
        key = f"org-compliance:{self.registry.tenant_id}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if isinstance(cached, list):
                return cached

        apps = unwrap_list(self.registry.catalog(), "applications", "data", "items")
        logger.info("Loaded %d applications from compliance catalog", len(apps))
        if self.cache is not None:
            self.cache.set(key, apps, ttl=self.settings.catalog_ttl)
        return apps

    def match(self, identifier: str) -> Optional[CatalogMatch]:
        """Find the first application, then the first child asset, matching identifier."""
        needle = identifier.strip().lower()
        if not needle:
            return None
        apps = self.applications()

        for app in apps:
            if _contains(needle, app.get("app_name"), app.get("app_code"), app.get("identifier")):
                logger.debug("Identifier %r matched application %s", identifier, app.get("app_name"))
                return CatalogMatch(application=app)

        for app in apps:
            for asset in _children(app):
                if _contains(needle, asset.get("name"), asset.get("repository"), asset.get("uuid")):
                    logger.debug("Identifier %r matched asset %s", identifier, asset.get("name"))
                    return CatalogMatch(application=app, asset=asset)

        return None

    def children_of(self, asset_uuid: str) -> list[dict]:
        """Child assets of the application identified by asset_uuid (identifier or version_uuid)."""
        for app in self.applications():
            if asset_uuid in (app.get("identifier"), app.get("version_uuid")):
                return _children(app)
        return []

    def attestation_uuids(self, identifier: str) -> list[str]:
        """Attestation UUIDs embedded in the catalog for the matched application or asset."""
        hit = self.match(identifier)
        if hit is None:
            return []
        if hit.asset is not None:
            return note_uuids(hit.asset.get("attestations") or [], None)
        records = list(hit.application.get("attestations") or [])
        for asset in _children(hit.application):
            records.extend(asset.get("attestations") or [])
        return note_uuids(records, None)

    def list_assets(self, search: Optional[str] = None) -> list[CatalogEntry]:
        """Flatten applications and their child assets, optionally filtered by search."""
        needle = (search or "").strip().lower()
        entries: list[CatalogEntry] = []
        for app in self.applications():
            candidates = [
                CatalogEntry(
                    identifier=str(app.get("identifier") or app.get("app_code") or ""),
                    name=str(app.get("app_name") or app.get("app_code") or ""),
                    type=app.get("type") or "application",
                    uuid=app.get("version_uuid"),
                )
            ]
            for asset in _children(app):
                candidates.append(
                    CatalogEntry(
                        identifier=str(asset.get("repository") or asset.get("name") or ""),
                        name=str(asset.get("name") or ""),
                        type=asset.get("type") or "repository",
                        uuid=asset.get("uuid"),
                    )
                )
            for entry in candidates:
                if not needle or _contains(needle, entry.identifier, entry.name):
                    entries.append(entry)
        return entries

    def resolve_application(self, term: str) -> ApplicationMatch:
        """Match an application by name, code or identifier and list its child assets."""
        needle = term.strip().lower()
        if not needle:
            return ApplicationMatch(found=False)
        for app in self.applications():
            if not _contains(needle, app.get("app_name"), app.get("app_code"), app.get("identifier")):
                continue
            assets = [
                CatalogEntry(
                    identifier=str(a.get("repository") or a.get("name") or a.get("uuid") or ""),
                    name=str(a.get("name") or a.get("repository") or a.get("uuid") or ""),
                    type=a.get("type") or "repository",
                    uuid=a.get("uuid"),
                )
                for a in _children(app)
            ]
            return ApplicationMatch(
                found=True,
                uuid=app.get("identifier") or app.get("version_uuid"),
                name=app.get("app_name"),
                code=str(app.get("app_code") or ""),
                type=app.get("type") or "application",
                assets=assets,
            )
        logger.info("No application found for %r", term)
        return ApplicationMatch(found=False)
