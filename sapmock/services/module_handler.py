"""
ModuleHandler Class - Base for built-in business modules

A module handler owns the endpoints of one module and reads/writes its
records through the mock data provider under
``{system}/{module}/{collection}/{id}``. Handlers run on worker threads;
read-modify-write flows hold ``write_lock`` so number allocation and
status changes are not interleaved.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sapmock.errors import ProviderFailure
from sapmock.models.data_models import EndpointRequest, SAPEndpoint, SAPModule
from sapmock.services.data_provider import MockDataProvider
from sapmock.utils.helpers import safe_int

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


class ModuleHandler(ABC):
    """Shared plumbing for module handlers"""

    default_module_id = ""
    default_name = ""

    def __init__(self, provider: MockDataProvider, system_id: str, module_id: Optional[str] = None):
        self.provider = provider
        self.system_id = system_id
        self.module_id = module_id or self.default_module_id
        self.write_lock = threading.RLock()

    @abstractmethod
    def get_endpoints(self) -> List[SAPEndpoint]:
        ...

    def build_module(self, name: Optional[str] = None) -> SAPModule:
        return SAPModule(
            module_id=self.module_id,
            name=name or self.default_name,
            system_id=self.system_id,
            endpoints=tuple(self.get_endpoints()),
        )

    # ── storage ───────────────────────────────────────────────────────────────

    def key(self, collection: str, record_id: str) -> str:
        return f"{self.prefix(collection)}{record_id}"

    def prefix(self, collection: str) -> str:
        return f"{self.system_id}/{self.module_id}/{collection}/"

    def load(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.provider.read(self.key(collection, record_id))

    def save(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        key = self.key(collection, record_id)
        if not self.provider.write(key, record):
            raise ProviderFailure(f"Failed to store {key}")

    def load_all(self, collection: str, **where: Any) -> List[Dict[str, Any]]:
        return self.provider.list(self.prefix(collection), where or None)

    def next_number(self, collection: str, pattern: str) -> str:
        """First free id of the form pattern % n"""
        n = len(self.load_all(collection)) + 1
        while self.load(collection, pattern % n) is not None:
            n += 1
        return pattern % n

    # ── request helpers ───────────────────────────────────────────────────────

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def route_id(request: EndpointRequest) -> str:
        value = (request.route_parameters.get("id") or "").strip()
        if not value:
            raise ValueError("Record id is required")
        return value

    @staticmethod
    def paginate(request: EndpointRequest, items: List[Any]) -> Tuple[List[Any], int, int]:
        page = safe_int(request.query_parameters.get("page"), 1) or 1
        page_size = safe_int(request.query_parameters.get("page_size"), DEFAULT_PAGE_SIZE)
        if page < 1:
            page = 1
        if page_size is None or page_size < 1 or page_size > MAX_PAGE_SIZE:
            page_size = DEFAULT_PAGE_SIZE
        start = (page - 1) * page_size
        return items[start:start + page_size], page, page_size
