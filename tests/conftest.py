"""
tests/conftest.py -- Shared fixtures for PostureLens tests.

This module provides:
  - RouteTable: a stand-in for RegistryClient.get_json keyed by request path.
    Endpoint wrappers and shape adapters run for real; only the HTTP seam is
    replaced. Every call is recorded as (path, params) for assertions.
  - settings / session / registry: a RegistryClient wired to a RouteTable
  - base_routes(): a small registry with one application ("Payments
    Platform") holding a repository asset "demo-repo", its commit history,
    one required control and one passing attestation at FULL_COMMIT.

No test touches the network. HTTP-level behavior (headers, status mapping)
is tested in test_registry.py by patching the requests.Session instead.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Union
from unittest.mock import MagicMock

import pytest

from core.config import Settings
from core.models import Session
from core.registry import RegistryClient, RegistryError

# ---------------------------------------------------------------------------
# Canonical fixture identities
# ---------------------------------------------------------------------------

FULL_COMMIT = "3e2ab4d9c1f0a7b5e6d4c3b2a1908f7e6d5c4b3a"
SHORT_COMMIT = "3e2ab4d"
OLD_MAIN_COMMIT = "9f8e7d6c5b4a39281706f5e4d3c2b1a098765432"
FEATURE_COMMIT = "c0ffee00112233445566778899aabbccddeeff00"

APP_UUID = "app-pay-0001"
REPO_ASSET_UUID = "asset-repo-0001"
REPOSITORY_ID = "repo-id-0001"
COVERAGE_PATH = "github.repo.coverage"

CATALOG = [
    {
        "app_name": "Payments Platform",
        "app_code": "PAY",
        "identifier": APP_UUID,
        "version_uuid": "ver-pay-0001",
        "attestations": [{"uuid": "cat-att-app", "status": "pass"}],
        "assets": [
            {"uuid": "asset-docs-0001", "name": "payments-docs", "type": "documentation", "attestations": []},
            {
                "uuid": REPO_ASSET_UUID,
                "name": "demo-repo",
                "repository": "demo-repo",
                "project": "payments",
                "type": "repository",
                "attestations": [{"uuid": "cat-att-repo", "result": "fail"}],
            },
        ],
    },
    {
        "app_name": "Ledger",
        "app_code": "LDG",
        "identifier": "app-ldg-0002",
        "version_uuid": "ver-ldg-0002",
        "assets": [],
    },
]

COMMITS = [
    {"commit": OLD_MAIN_COMMIT, "timestamp": "2026-01-01T10:00:00Z", "branches": ["main"]},
    {"commit": FULL_COMMIT, "timestamp": "2026-01-05T10:00:00Z", "branches": [{"name": "main"}]},
    {"sha": FEATURE_COMMIT, "created_at": "2026-01-09T10:00:00Z", "branch": "feature/login"},
]

REQUIRED_GATES = [
    {
        "policyName": "Baseline",
        "controls": [
            {"path": COVERAGE_PATH, "uuid": "ctl-cov", "displayKey": "Code Coverage", "severity": "high"},
        ],
    }
]


def attestation_detail(
    uuid: str,
    result: str = "pass",
    path: str = COVERAGE_PATH,
    control_uuid: str = "ctl-cov",
    commit: str = FULL_COMMIT,
    timestamp: str = "2026-01-05T12:00:00Z",
    name: str = "Code Coverage",
) -> dict:
    """Full note detail in the producer.entity generation."""
    return {
        "uuid": uuid,
        "type": "attestation",
        "result": result,
        "timestamp": timestamp,
        "producer": {"entity": {"uuid": control_uuid, "path": path, "name": name}},
        "asset": {"uuid": REPO_ASSET_UUID, "name": "demo-repo", "version": {"commit": commit}},
    }


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------

Route = Union[Any, Callable[[dict], Any], Exception]


class RouteTable:
    """Replacement for RegistryClient.get_json.

    A route value may be a JSON payload, a callable taking the params dict,
    or an exception instance to raise. Unknown paths raise a 404 RegistryError.
    """

    def __init__(self, routes: dict[str, Route]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, path: str, params: dict | None = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        self.calls.append((path, query))
        if path not in self.routes:
            raise RegistryError(path, 404, "404 Not Found")
        route = self.routes[path]
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(query)
        return copy.deepcopy(route)

    def paths(self) -> list[str]:
        return [path for path, _ in self.calls]

    def count(self, path: str) -> int:
        return self.paths().count(path)


def _metadata(params: dict) -> list[dict]:
    if params.get("repository") == "demo-repo":
        return [{"scm": {"defaultBranch": "main"}, "repositoryId": REPOSITORY_ID}]
    return []


def _notes(params: dict) -> list[dict]:
    if params.get("commit") == FULL_COMMIT and params.get("repositoryId") == REPOSITORY_ID:
        return [{"uuid": "att-cov-1", "type": "attestation"}]
    return []


def base_routes() -> dict[str, Route]:
    """Routes for the demo-repo registry. Tests copy and override entries."""
    return {
        "/evidence/assets/compliance": copy.deepcopy(CATALOG),
        "/assets": _metadata,
        f"/assets/{REPO_ASSET_UUID}/commits": copy.deepcopy(COMMITS),
        f"/assets/{REPO_ASSET_UUID}/gates/policies/controls": copy.deepcopy(REQUIRED_GATES),
        "/notes": _notes,
        "/evidence/notes/att-cov-1": attestation_detail("att-cov-1"),
        "/console/controls": [
            {"uuid": "ctl-cov", "path": COVERAGE_PATH, "displayKey": "Code Coverage >= 80%", "description": "Unit test coverage"}
        ],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, registry_url="https://registry.test/api/")


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-42", tenant_id="tenant-a", access_token="tok-secret")


@pytest.fixture
def routes() -> RouteTable:
    return RouteTable(base_routes())


@pytest.fixture
def audit() -> MagicMock:
    return MagicMock()


@pytest.fixture
def registry(settings: Settings, session: Session, routes: RouteTable, audit: MagicMock) -> RegistryClient:
    client = RegistryClient(settings, session, audit=audit, http=MagicMock())
    client.get_json = routes  # type: ignore[method-assign]
    return client


class MemoryCache:
    """Dict-backed Cache for engine tests; records every set()."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.sets: list[tuple[str, int | None]] = []

    def get(self, key: str) -> Any:
        value = self.data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self.data[key] = copy.deepcopy(value)
        self.sets.append((key, ttl))


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()
