"""
API Models

Request/response bodies of the management API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from sapmock.models.data_models import SAPModule, SAPSystem


class ModuleRequest(BaseModel):
    module_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    handler: str = Field(..., min_length=1)
    enabled: bool = True


class SystemRequest(BaseModel):
    system_id: str = Field(..., min_length=1)
    name: str = ""
    type: str = ""
    connection_parameters: Dict[str, str] = Field(default_factory=dict)
    modules: Optional[List[ModuleRequest]] = None


class SystemResponse(BaseModel):
    system_id: str
    name: str
    type: str
    connection_parameters: Dict[str, str]

    @classmethod
    def from_system(cls, system: SAPSystem) -> "SystemResponse":
        return cls(
            system_id=system.system_id,
            name=system.name,
            type=system.type,
            connection_parameters=dict(system.connection_parameters),
        )


class EndpointResponse(BaseModel):
    path: str
    method: str
    request_type: str
    response_type: str


class ModuleResponse(BaseModel):
    module_id: str
    name: str
    system_id: str
    endpoints: List[EndpointResponse]

    @classmethod
    def from_module(cls, module: SAPModule) -> "ModuleResponse":
        return cls(
            module_id=module.module_id,
            name=module.name,
            system_id=module.system_id,
            endpoints=[
                EndpointResponse(
                    path=e.path,
                    method=e.method,
                    request_type=e.request_type_name,
                    response_type=e.response_type_name,
                )
                for e in module.endpoints
            ],
        )


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    systems: Dict[str, bool]
