"""
SystemRegistry Class - Catalog of systems, modules and endpoints

Holds the live routing table. Readers take the current snapshot without
locking; registration builds a complete new snapshot and swaps it in, so a
reader sees either the full old or the full new state of a system.
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, List, Optional

from sapmock.errors import ConfigurationConflict, NotFoundError
from sapmock.models.data_models import ResolvedEndpoint, SAPModule, SAPSystem

logger = logging.getLogger(__name__)

# First path segments taken by the fixed API routes
RESERVED_SYSTEM_IDS = frozenset({"systems", "monitor", "health"})


def default_health_check(system: SAPSystem) -> bool:
    """A system is considered healthy when it exposes at least one module"""
    return len(system.modules) > 0


def _detached(system: SAPSystem) -> SAPSystem:
    """Copy handed to callers; modules are frozen, the parameters dict is not"""
    return replace(system, connection_parameters=dict(system.connection_parameters))


def validate_module(module: SAPModule) -> None:
    """
    Reject duplicate (method, path) pairs and templates of one method that
    could match the same path with equal specificity.
    """
    endpoints = list(module.endpoints)
    for i, first in enumerate(endpoints):
        for second in endpoints[i + 1:]:
            if first.method != second.method:
                continue
            if first.template.shape == second.template.shape:
                raise ConfigurationConflict(
                    f"Duplicate endpoint {first.method} {first.path} in module "
                    f"{module.system_id}/{module.module_id}"
                )
            if first.template.wildcards == second.template.wildcards and first.template.overlaps(second.template):
                raise ConfigurationConflict(
                    f"Ambiguous endpoints {first.method} {first.path} and {second.path} in module "
                    f"{module.system_id}/{module.module_id}"
                )


class SystemRegistry:
    """
    Thread-safe registry of mocked systems.
    Responsibilities:
    - Register or replace whole systems atomically
    - Add modules to a registered system
    - Look up systems and modules
    - Resolve a request to its endpoint
    - Aggregate per-system health
    """

    def __init__(self):
        self._systems: Dict[str, SAPSystem] = {}
        self._write_lock = threading.Lock()

    # ── writes ────────────────────────────────────────────────────────────────

    def register_system(self, system: SAPSystem) -> bool:
        """Insert or replace a system. Raises ConfigurationConflict and leaves state untouched."""
        if system is None:
            raise ValueError("system is required")
        if not system.system_id or not system.system_id.strip():
            raise ValueError("System ID cannot be null or empty.")
        if system.system_id in RESERVED_SYSTEM_IDS:
            raise ValueError(f"System ID {system.system_id!r} is reserved")

        prepared = self._prepare(system, system.modules)

        with self._write_lock:
            snapshot = dict(self._systems)
            replaced = system.system_id in snapshot
            snapshot[system.system_id] = prepared
            self._systems = snapshot

        logger.info(
            "%s SAP system: %s - %s (%d modules)",
            "Replaced" if replaced else "Registered",
            prepared.system_id,
            prepared.name,
            len(prepared.modules),
        )
        return True

    def register_module(self, system_id: str, module: SAPModule) -> bool:
        """Add a module to an existing system, replacing one with the same id"""
        with self._write_lock:
            current = self._systems.get(system_id)
            if current is None:
                raise NotFoundError(f"System {system_id} not found")

            modules = [m for m in current.modules if m.module_id != module.module_id]
            modules.append(module)
            prepared = self._prepare(current, modules)

            snapshot = dict(self._systems)
            snapshot[system_id] = prepared
            self._systems = snapshot

        logger.info("Registered module %s/%s (%d endpoints)", system_id, module.module_id, len(module.endpoints))
        return True

    @staticmethod
    def _prepare(system: SAPSystem, modules) -> SAPSystem:
        """Build the stored copy; validation happens before anything is published"""
        seen = set()
        owned: List[SAPModule] = []
        for module in modules:
            if module.module_id in seen:
                raise ConfigurationConflict(f"Duplicate module {module.module_id} in system {system.system_id}")
            seen.add(module.module_id)

            module = replace(module, system_id=system.system_id)
            validate_module(module)
            owned.append(module)

        return replace(
            system,
            connection_parameters=dict(system.connection_parameters),
            modules=tuple(owned),
        )

    # ── reads ─────────────────────────────────────────────────────────────────

    def get_system(self, system_id: str) -> Optional[SAPSystem]:
        system = self._systems.get(system_id)
        return _detached(system) if system is not None else None

    def get_all_systems(self) -> List[SAPSystem]:
        return [_detached(s) for s in self._systems.values()]

    def get_modules_for_system(self, system_id: str) -> List[SAPModule]:
        system = self._systems.get(system_id)
        if system is None:
            raise NotFoundError(f"System {system_id} not found")
        return list(system.modules)

    def is_system_healthy(self, system_id: str) -> bool:
        system = self._systems.get(system_id)
        if system is None:
            logger.warning("Health check failed: System %s not found", system_id)
            return False

        check = system.health_check or default_health_check
        try:
            healthy = bool(check(_detached(system)))
        except Exception:
            logger.exception("Health check raised for system %s", system_id)
            return False

        if not healthy:
            logger.warning("Health check failed for system %s", system_id)
        return healthy

    def get_system_health_status(self) -> Dict[str, bool]:
        return {system_id: self.is_system_healthy(system_id) for system_id in list(self._systems)}

    def endpoint_count(self) -> int:
        return sum(len(m.endpoints) for s in self._systems.values() for m in s.modules)

    # ── resolution ────────────────────────────────────────────────────────────

    def resolve(self, system_id: str, module_id: str, method: str, path: str) -> ResolvedEndpoint:
        """
        Match method + path inside one module. The most specific template
        (fewest parameter segments) wins.
        """
        system = self._systems.get(system_id)
        if system is None:
            raise NotFoundError(f"System {system_id} not found")

        module = system.get_module(module_id)
        if module is None:
            raise NotFoundError(f"Module {module_id} not found in system {system_id}")

        method = method.upper()
        best = None
        best_params: Dict[str, str] = {}
        for endpoint in module.endpoints:
            if endpoint.method != method:
                continue
            params = endpoint.template.match(path)
            if params is None:
                continue
            if best is None or endpoint.template.wildcards < best.template.wildcards:
                best, best_params = endpoint, params

        if best is None:
            raise NotFoundError(f"No endpoint {method} {path} in {system_id}/{module_id}")

        return ResolvedEndpoint(system=_detached(system), module=module, endpoint=best, route_parameters=best_params)
