"""
requirements.py -- Which controls does policy require of an asset?

Policy gates can be attached to an asset, to its child repositories, or only
to the organization's gates. Four tiers are tried in order, the first that
yields any control wins:

  1. direct          /assets/{uuid}/gates/policies/controls
  2. children        /assets/children/{uuid}/gates/policies/controls
  3. catalog-children  each child from the catalog, queried individually
  4. global-gates    first N org gates, tagged "Gate: <name>"

All tiers share adapters.parse_policy_groups(), so a control is keyed the
same way regardless of where it came from.
"""

import logging
from typing import Optional

from .adapters import parse_gate, parse_policy_groups, unwrap_list
from .catalog import Catalog
from .config import Settings
from .models import ControlStatus
from .registry import RegistryClient, RegistryError
from .strategies import Strategy, StrategyOutcome, first_non_empty

logger = logging.getLogger("posturelens.requirements")


class RequiredControlsResolver:
    def __init__(self, registry: RegistryClient, catalog: Catalog, settings: Settings) -> None:
        self.registry = registry
        self.catalog = catalog
        self.settings = settings
        self.last_outcome: Optional[StrategyOutcome] = None

    def required_controls(self, asset_uuid: str) -> dict[str, ControlStatus]:
        """Return required controls keyed by path/uuid/name. Empty dict on total failure."""
        if not asset_uuid:
            return {}
        outcome = first_non_empty(
            [
                Strategy("direct", lambda: self._direct(asset_uuid)),
                Strategy("children", lambda: self._children(asset_uuid)),
                Strategy("catalog-children", lambda: self._catalog_children(asset_uuid)),
                Strategy("global-gates", self._global_gates),
            ],
            label=f"required-controls {asset_uuid}",
        )
        self.last_outcome = outcome
        controls = outcome.value or {}
        logger.info("Found %d required controls for %s via %s", len(controls), asset_uuid, outcome.winner)
        return controls

    def gate_required_controls(self, gate_key: str) -> dict[str, ControlStatus]:
        """Controls required by one gate: what blocks deployment to it."""
        controls: dict[str, ControlStatus] = {}
        try:
            parse_policy_groups(self.registry.gate_controls(gate_key), controls)
        except RegistryError as e:
            logger.warning("Controls for gate %s unavailable: %s", gate_key, e)
        return controls

    def list_gates(self) -> list[dict]:
        gates = (parse_gate(g) for g in unwrap_list(self.registry.gates(), "gates", "data", "items"))
        return [g for g in gates if g is not None]

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _direct(self, asset_uuid: str) -> dict[str, ControlStatus]:
        controls: dict[str, ControlStatus] = {}
        parse_policy_groups(self.registry.asset_gate_controls(asset_uuid), controls)
        return controls

    def _children(self, asset_uuid: str) -> dict[str, ControlStatus]:
        controls: dict[str, ControlStatus] = {}
        parse_policy_groups(self.registry.child_gate_controls(asset_uuid), controls)
        return controls

    def _catalog_children(self, asset_uuid: str) -> dict[str, ControlStatus]:
        controls: dict[str, ControlStatus] = {}
        for child in self.catalog.children_of(asset_uuid):
            child_uuid = child.get("uuid")
            if not child_uuid:
                continue
            try:
                parse_policy_groups(self.registry.asset_gate_controls(child_uuid), controls)
            except RegistryError as e:
                logger.debug("Gates for child asset %s failed: %s", child.get("name") or child_uuid, e)
        return controls

    def _global_gates(self) -> dict[str, ControlStatus]:
        controls: dict[str, ControlStatus] = {}
        gates = self.list_gates()[: self.settings.gate_fallback_limit]
        for gate in gates:
            try:
                payload = self.registry.gate_controls(gate["key"])
            except RegistryError as e:
                logger.debug("Controls for gate %s failed: %s", gate["key"], e)
                continue
            parse_policy_groups(payload, controls, policy_name=f"Gate: {gate['name']}")
        logger.info("Global gate fallback found %d controls from %d gates", len(controls), len(gates))
        return controls
