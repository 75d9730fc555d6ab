"""
EndpointResolver Class - Endpoint Resolution Protocol

Resolves a request against the registry, applies header-driven error
simulation, invokes the bound handler and converts every outcome into an
``EndpointResult``. Nothing raised below this boundary reaches the
transport, except cancellation of the request task.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from sapmock.errors import HandlerFailure, NotFoundError, ProviderFailure, SimulatedError
from sapmock.models.data_models import EndpointRequest, ResolvedEndpoint, SAPErrorResponse
from sapmock.services.error_simulation import ErrorSimulator
from sapmock.services.registry import SystemRegistry
from sapmock.utils.helpers import to_jsonable

logger = logging.getLogger(__name__)


@dataclass
class EndpointResult:
    """Status and JSON payload produced for one dynamic request"""
    status_code: int
    body: Any
    system_id: str = ""
    module_id: str = ""
    handler_invoked: bool = False


def _error_body(code: str, message: str, category: str, message_class: str = "", details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return SAPErrorResponse(
        code=code,
        message=message,
        category=category,
        message_class=message_class,
        message_number=code,
        details=details,
    ).to_dict()


def decode_json_body(raw: Any) -> Any:
    """Bytes/str → decoded JSON; empty bodies decode to None"""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        if not raw.strip():
            return None
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise HandlerFailure(f"Malformed JSON body: {exc}", code="INVALID_JSON") from exc
    return raw


class EndpointResolver:
    """
    Dispatches dynamic requests.
    Responsibilities:
    - Find the endpoint (NotFound → 404)
    - Short-circuit simulated errors before the handler (408/401/400/500)
    - Bind and validate the request payload
    - Invoke the handler and map its failures (400/500)
    - Pick 200 or 201 for successful results
    """

    def __init__(self, registry: SystemRegistry, error_simulator: Optional[ErrorSimulator] = None):
        self.registry = registry
        self.error_simulator = error_simulator or ErrorSimulator()

    async def dispatch(
        self,
        system_id: str,
        module_id: str,
        method: str,
        path: str,
        body: Any = None,
        query_parameters: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> EndpointResult:
        headers = dict(headers or {})
        path = "/" + path.lstrip("/")

        try:
            resolved = self.registry.resolve(system_id, module_id, method, path)
        except NotFoundError as exc:
            logger.debug("Resolution failed: %s", exc)
            return EndpointResult(404, _error_body("NOT_FOUND", str(exc), "Routing"))

        result = EndpointResult(0, None, system_id=system_id, module_id=module_id)
        try:
            await self.error_simulator.raise_if_requested(headers, system_id, module_id, resolved.endpoint.path)

            request = EndpointRequest(
                system_id=system_id,
                module_id=module_id,
                method=resolved.endpoint.method,
                path=path,
                body=self._bind(resolved, decode_json_body(body)),
                route_parameters=dict(resolved.route_parameters),
                query_parameters=dict(query_parameters or {}),
                headers=headers,
            )
            result.handler_invoked = True
            payload = await self._invoke(resolved, request)

        except SimulatedError as exc:
            result.status_code, result.body = exc.status_code, exc.response.to_dict()
        except NotFoundError as exc:
            result.status_code = 404
            result.body = _error_body("NOT_FOUND", str(exc), "Business", module_id)
        except ValidationError as exc:
            errors = [{"loc": [str(p) for p in e["loc"]], "msg": e["msg"]} for e in exc.errors()]
            result.status_code = 400
            result.body = _error_body("INVALID_PAYLOAD", "Request payload does not match the expected shape", "Request", module_id, {"errors": errors})
        except HandlerFailure as exc:
            result.status_code = 400
            result.body = _error_body(exc.code, str(exc), "Request", exc.message_class or module_id)
        except ProviderFailure as exc:
            logger.error("Data provider failure on %s %s%s: %s", method, system_id, path, exc)
            result.status_code = 500
            result.body = _error_body("PROVIDER_FAILURE", str(exc), "System", module_id)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Handler rejected %s %s/%s%s: %s", method, system_id, module_id, path, exc)
            result.status_code = 400
            result.body = _error_body("BAD_REQUEST", str(exc), "Request", module_id)
        except Exception as exc:
            logger.exception("Error handling request for %s %s on system %s, module %s", method, path, system_id, module_id)
            result.status_code = 500
            result.body = _error_body("INTERNAL_ERROR", str(exc) or exc.__class__.__name__, "System", module_id)
        else:
            result.status_code = 201 if resolved.endpoint.creates else 200
            result.body = to_jsonable(payload)

        return result

    @staticmethod
    def _bind(resolved: ResolvedEndpoint, body: Any) -> Any:
        request_type = resolved.endpoint.request_type
        if isinstance(request_type, type) and issubclass(request_type, BaseModel):
            return request_type.model_validate(body)
        return body

    @staticmethod
    async def _invoke(resolved: ResolvedEndpoint, request: EndpointRequest) -> Any:
        handle = resolved.endpoint.handler.handle
        if inspect.iscoroutinefunction(handle):
            return await handle(request)

        outcome = await run_in_threadpool(handle, request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome
