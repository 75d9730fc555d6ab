"""
Data Models (DTOs - Data Transfer Objects)

This module contains the dataclasses shared by the registry, the resolver
and the request monitor.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from sapmock.utils.routing import PathTemplate


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# Endpoint handlers
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class EndpointRequest:
    """What an endpoint handler receives"""
    system_id: str
    module_id: str
    method: str
    path: str
    body: Any = None
    route_parameters: Dict[str, str] = field(default_factory=dict)
    query_parameters: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


@runtime_checkable
class EndpointHandler(Protocol):
    """Capability bound to an endpoint; may return a value or an awaitable"""

    def handle(self, request: EndpointRequest) -> Union[Any, Awaitable[Any]]:
        ...


class FunctionHandler:
    """Adapts a plain callable to the EndpointHandler capability"""

    def __init__(self, func: Callable[[EndpointRequest], Any]):
        self.func = func

    def handle(self, request: EndpointRequest) -> Any:
        return self.func(request)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__name__', self.func)!r})"


# ──────────────────────────────────────────────────────────────────────────────
# System -> Module -> Endpoint
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SAPEndpoint:
    """A single routable operation with its bound handler"""
    path: str
    method: str
    handler: Any
    request_type: Optional[type] = None
    response_type: Optional[type] = None
    creates: Optional[bool] = None
    template: PathTemplate = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "template", PathTemplate(self.path))
        if self.creates is None:
            object.__setattr__(self, "creates", self.method == "POST")
        if not isinstance(self.handler, EndpointHandler):
            if not callable(self.handler):
                raise TypeError(f"handler for {self.method} {self.path} is not callable")
            object.__setattr__(self, "handler", FunctionHandler(self.handler))

    @property
    def request_type_name(self) -> str:
        return self.request_type.__name__ if self.request_type else "object"

    @property
    def response_type_name(self) -> str:
        return self.response_type.__name__ if self.response_type else "object"


@dataclass(frozen=True)
class SAPModule:
    """A functional grouping of endpoints within a system"""
    module_id: str
    name: str
    system_id: str = ""
    endpoints: Tuple[SAPEndpoint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoints", tuple(self.endpoints))


@dataclass
class SAPSystem:
    """A mocked backend installation owning its modules"""
    system_id: str
    name: str
    type: str
    connection_parameters: Dict[str, str] = field(default_factory=dict)
    modules: Tuple[SAPModule, ...] = ()
    health_check: Optional[Callable[["SAPSystem"], bool]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.modules = tuple(self.modules)

    def get_module(self, module_id: str) -> Optional[SAPModule]:
        for module in self.modules:
            if module.module_id == module_id:
                return module
        return None


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Outcome of matching a request against the registry"""
    system: SAPSystem
    module: SAPModule
    endpoint: SAPEndpoint
    route_parameters: Dict[str, str]


# ──────────────────────────────────────────────────────────────────────────────
# Request log
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestLogEntry:
    """One completed HTTP transaction; never mutated once created"""
    method: str
    path: str
    status_code: int
    response_time_ms: float
    system: str = ""
    module: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    request_body: str = ""
    response_body: str = ""
    user_agent: str = ""
    remote_ip_address: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class SAPErrorResponse:
    """SAP-style error body (BAPIRET-like message fields)"""
    code: str
    message: str
    category: str = ""
    type: str = "E"
    severity: str = "Error"
    message_class: str = ""
    message_number: str = ""
    message_variables: List[str] = field(default_factory=list)
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


# ──────────────────────────────────────────────────────────────────────────────
# Statistics
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class Metrics:
    """Aggregated metrics over the current request log"""
    total_requests: int
    error_count: int
    error_rate: float
    simulated_errors: int
    avg_response_time: float
    p50_response_time: float
    p95_response_time: float
    p99_response_time: float
    requests_by_status: Dict[str, int]
    requests_by_method: Dict[str, int]
    requests_by_system: Dict[str, int]


@dataclass
class EndpointStat:
    """Per-route statistics"""
    system: str
    module: str
    path: str
    count: int
    errors: int
    avg_response_time: float
    p95_response_time: float
    error_rate: float
