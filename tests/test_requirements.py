"""Tests for core/requirements.py -- the four-tier required controls lookup."""

import pytest
from conftest import APP_UUID, COVERAGE_PATH, REPO_ASSET_UUID

from core.catalog import Catalog
from core.registry import RegistryError
from core.requirements import RequiredControlsResolver


def _requirements(registry, settings) -> RequiredControlsResolver:
    return RequiredControlsResolver(registry, Catalog(registry, None, settings), settings)


def _group(policy: str, *paths: str) -> list[dict]:
    return [{"policyName": policy, "controls": [{"path": p, "uuid": f"u-{p}"} for p in paths]}]


def _gone(path: str) -> RegistryError:
    return RegistryError(path, 404, "404 Not Found")


# ---------------------------------------------------------------------------
# Tier order
# ---------------------------------------------------------------------------


class TestTiers:
    def test_direct_gates(self, registry, settings):
        resolver = _requirements(registry, settings)
        controls = resolver.required_controls(REPO_ASSET_UUID)
        assert list(controls) == [COVERAGE_PATH]
        assert controls[COVERAGE_PATH].required
        assert controls[COVERAGE_PATH].status == "not_found"
        assert resolver.last_outcome.winner == "direct"

    def test_children_endpoint_when_direct_empty(self, registry, settings, routes):
        routes.routes[f"/assets/{APP_UUID}/gates/policies/controls"] = []
        routes.routes[f"/assets/children/{APP_UUID}/gates/policies/controls"] = _group("Child", "c.one")
        resolver = _requirements(registry, settings)
        controls = resolver.required_controls(APP_UUID)
        assert list(controls) == ["c.one"]
        assert resolver.last_outcome.winner == "children"

    def test_catalog_children_queried_individually(self, registry, settings, routes):
        # Direct and children endpoints missing: each catalog child is asked.
        routes.routes["/assets/asset-docs-0001/gates/policies/controls"] = _group("Docs", "docs.readme")
        resolver = _requirements(registry, settings)
        controls = resolver.required_controls(APP_UUID)
        assert set(controls) == {"docs.readme", COVERAGE_PATH}
        assert resolver.last_outcome.winner == "catalog-children"
        attempts = {a.name: a.status for a in resolver.last_outcome.attempts}
        assert attempts["direct"] == "error"
        assert attempts["children"] == "error"

    def test_catalog_child_failure_does_not_abort_tier(self, registry, settings, routes):
        routes.routes["/assets/asset-docs-0001/gates/policies/controls"] = _gone("docs")
        controls = _requirements(registry, settings).required_controls(APP_UUID)
        assert list(controls) == [COVERAGE_PATH]

    def test_global_gates_capped_and_tagged(self, registry, settings, routes):
        routes.routes[f"/assets/{REPO_ASSET_UUID}/gates/policies/controls"] = []
        routes.routes["/console/gates"] = [
            {"entityKey": f"gate-{i}", "displayKey": f"Stage {i}"} for i in range(7)
        ]
        for i in range(7):
            routes.routes[f"/console/gates/gate-{i}/policies/controls"] = _group("ignored", f"g{i}.ctl")

        resolver = _requirements(registry, settings)
        controls = resolver.required_controls(REPO_ASSET_UUID)

        assert len(controls) == settings.gate_fallback_limit
        assert controls["g0.ctl"].policy_name == "Gate: Stage 0"
        assert "g5.ctl" not in controls
        assert routes.count("/console/gates/gate-5/policies/controls") == 0
        assert resolver.last_outcome.winner == "global-gates"

    def test_first_gate_to_claim_a_control_wins(self, registry, settings, routes):
        routes.routes[f"/assets/{REPO_ASSET_UUID}/gates/policies/controls"] = []
        routes.routes["/console/gates"] = [
            {"entityKey": "dev", "displayKey": "Dev"},
            {"entityKey": "prod", "displayKey": "Prod"},
        ]
        routes.routes["/console/gates/dev/policies/controls"] = _group("x", "shared.ctl")
        routes.routes["/console/gates/prod/policies/controls"] = _group("x", "shared.ctl", "prod.only")
        controls = _requirements(registry, settings).required_controls(REPO_ASSET_UUID)
        assert controls["shared.ctl"].policy_name == "Gate: Dev"
        assert controls["prod.only"].policy_name == "Gate: Prod"

    def test_total_failure_yields_empty(self, registry, settings, routes):
        routes.routes[f"/assets/{REPO_ASSET_UUID}/gates/policies/controls"] = _gone("direct")
        resolver = _requirements(registry, settings)
        assert resolver.required_controls(REPO_ASSET_UUID) == {}
        assert not resolver.last_outcome.found

    def test_empty_uuid_makes_no_calls(self, registry, settings, routes):
        assert _requirements(registry, settings).required_controls("") == {}
        assert routes.calls == []


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


class TestGates:
    def test_list_gates(self, registry, settings, routes):
        routes.routes["/console/gates"] = {"data": [{"entityKey": "prod", "displayKey": "Production"}, {}]}
        assert _requirements(registry, settings).list_gates() == [
            {"key": "prod", "name": "Production", "uuid": None}
        ]

    def test_list_gates_propagates_errors(self, registry, settings):
        with pytest.raises(RegistryError):
            _requirements(registry, settings).list_gates()

    def test_gate_required_controls_tolerates_failure(self, registry, settings):
        assert _requirements(registry, settings).gate_required_controls("prod") == {}

    def test_gate_required_controls(self, registry, settings, routes):
        routes.routes["/console/gates/prod/policies/controls"] = _group("Prod policy", "a.b")
        controls = _requirements(registry, settings).gate_required_controls("prod")
        assert controls["a.b"].policy_name == "Prod policy"
