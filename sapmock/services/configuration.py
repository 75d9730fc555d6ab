"""
ConfigurationService Class - Builds systems from a JSON description

Document shape::

    {"systems": [{"system_id": "ERP01", "name": "...", "type": "ERP",
                  "connection_parameters": {"client": "100"},
                  "modules": [{"module_id": "MM", "name": "...",
                               "handler": "MMHandler"}]}]}

Entries with ``"enabled": false`` are skipped. Without a file the built-in
ERP01 landscape is used.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Type

from sapmock.models.data_models import SAPModule, SAPSystem
from sapmock.services.data_provider import MockDataProvider
from sapmock.services.materials import MaterialsManagementHandler
from sapmock.services.module_handler import ModuleHandler
from sapmock.services.sales import SalesDistributionHandler

logger = logging.getLogger(__name__)

DEFAULT_CONFIGURATION: Dict[str, Any] = {
    "systems": [
        {
            "system_id": "ERP01",
            "name": "SAP ERP Development",
            "type": "ERP",
            "connection_parameters": {"host": "erp01.mock.local", "client": "100", "system_number": "00"},
            "modules": [
                {"module_id": "MM", "name": "Materials Management", "handler": "MMHandler"},
                {"module_id": "SD", "name": "Sales and Distribution", "handler": "SDHandler"},
            ],
        }
    ]
}


class HandlerFactory:
    """Maps handler type names to module handler classes"""

    HANDLERS: Dict[str, Type[ModuleHandler]] = {
        "MMHandler": MaterialsManagementHandler,
        "MaterialsHandler": MaterialsManagementHandler,
        "MaterialsManagementHandler": MaterialsManagementHandler,
        "SDHandler": SalesDistributionHandler,
        "SalesDistributionHandler": SalesDistributionHandler,
    }

    def __init__(self, provider: MockDataProvider):
        self.provider = provider

    def create(self, handler_type: str, system_id: str, module_id: Optional[str] = None) -> Optional[ModuleHandler]:
        handler_cls = self.HANDLERS.get(handler_type)
        if handler_cls is None:
            return None
        return handler_cls(self.provider, system_id, module_id)


class ConfigurationService:
    """
    Turns configuration documents into SAPSystem objects.
    Responsibilities:
    - Read the JSON configuration file
    - Skip disabled systems and modules
    - Bind each module to its handler through the HandlerFactory
    """

    def __init__(self, factory: HandlerFactory, config_file: Optional[str] = None):
        self.factory = factory
        self.config_file = config_file

    def load_document(self) -> Dict[str, Any]:
        if not self.config_file or not os.path.exists(self.config_file):
            logger.info("No configuration file at %s, using built-in systems", self.config_file)
            return DEFAULT_CONFIGURATION
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as exc:
            logger.error("Error loading system configuration from %s: %s", self.config_file, exc)
            return {"systems": []}
        if not isinstance(document, dict):
            logger.error("Configuration in %s is not a JSON object", self.config_file)
            return {"systems": []}
        return document

    def load_systems(self) -> List[SAPSystem]:
        systems: List[SAPSystem] = []
        for entry in self.load_document().get("systems", []):
            if not entry.get("enabled", True):
                continue
            try:
                systems.append(self.build_system(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Skipping invalid system configuration %r: %s", entry.get("system_id"), exc)
        return systems

    def load_modules(self, system_id: str) -> List[SAPModule]:
        """Modules configured for one system, used when a system is re-registered without modules"""
        for entry in self.load_document().get("systems", []):
            if entry.get("system_id") == system_id and entry.get("enabled", True):
                return self.build_modules(system_id, entry.get("modules", []))
        return []

    def build_system(self, entry: Dict[str, Any]) -> SAPSystem:
        system_id = str(entry["system_id"])
        return SAPSystem(
            system_id=system_id,
            name=str(entry.get("name", system_id)),
            type=str(entry.get("type", "")),
            connection_parameters={str(k): str(v) for k, v in (entry.get("connection_parameters") or {}).items()},
            modules=self.build_modules(system_id, entry.get("modules", [])),
        )

    def build_modules(self, system_id: str, entries: List[Dict[str, Any]]) -> List[SAPModule]:
        modules: List[SAPModule] = []
        for entry in entries:
            if not entry.get("enabled", True):
                continue
            module_id = str(entry["module_id"])
            handler_type = str(entry.get("handler", ""))
            handler = self.factory.create(handler_type, system_id, module_id)
            if handler is None:
                raise ValueError(f"Unknown handler type {handler_type!r} for module {system_id}/{module_id}")
            modules.append(handler.build_module(entry.get("name")))
        return modules
