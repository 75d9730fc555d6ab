from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sapmock.config import Settings
from sapmock.errors import ConfigurationConflict, NotFoundError
from sapmock.models.api_models import HealthResponse, ModuleResponse, SystemRequest, SystemResponse
from sapmock.models.data_models import SAPSystem
from sapmock.services.aggregator import Aggregator, RequestCounters
from sapmock.services.configuration import ConfigurationService, HandlerFactory
from sapmock.services.data_provider import FileBasedMockDataProvider, MockDataProvider
from sapmock.services.error_simulation import ErrorSimulator
from sapmock.services.middleware import STATE_MODULE, STATE_SYSTEM, RequestLoggingMiddleware
from sapmock.services.monitor import RequestMonitor
from sapmock.services.observers import WebSocketObserverHub
from sapmock.services.registry import SystemRegistry
from sapmock.services.resolver import EndpointResolver
from sapmock.utils.helpers import parse_ts

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────────────────────

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("sapmock")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


# ──────────────────────────────────────────────────────────────────────────────
# Dependencies (long-lived objects live on app.state)
# ──────────────────────────────────────────────────────────────────────────────

def get_registry(request: Request) -> SystemRegistry:
    return request.app.state.registry


def get_monitor(request: Request) -> RequestMonitor:
    return request.app.state.monitor


def get_resolver(request: Request) -> EndpointResolver:
    return request.app.state.resolver


def get_configuration(request: Request) -> ConfigurationService:
    return request.app.state.configuration


# ──────────────────────────────────────────────────────────────────────────────
# Systems / health
# ──────────────────────────────────────────────────────────────────────────────

def build_systems_router() -> APIRouter:
    router = APIRouter(tags=["systems"])

    @router.get("/systems")
    def list_systems(registry: SystemRegistry = Depends(get_registry)) -> List[Dict[str, Any]]:
        return [SystemResponse.from_system(s).model_dump() for s in registry.get_all_systems()]

    @router.get("/systems/{system_id}")
    def get_system(system_id: str, registry: SystemRegistry = Depends(get_registry)) -> Dict[str, Any]:
        system = registry.get_system(system_id)
        if system is None:
            raise HTTPException(status_code=404, detail=f"System {system_id} not found")
        return SystemResponse.from_system(system).model_dump()

    @router.get("/systems/{system_id}/modules")
    def get_system_modules(system_id: str, registry: SystemRegistry = Depends(get_registry)) -> List[Dict[str, Any]]:
        try:
            modules = registry.get_modules_for_system(system_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        return [ModuleResponse.from_module(m).model_dump() for m in modules]

    @router.post("/systems", status_code=201)
    def register_system(
        body: SystemRequest,
        request: Request,
        response: Response,
        registry: SystemRegistry = Depends(get_registry),
        configuration: ConfigurationService = Depends(get_configuration),
    ) -> Dict[str, Any]:
        try:
            if body.modules is None:
                modules = configuration.load_modules(body.system_id)
            else:
                modules = configuration.build_modules(body.system_id, [m.model_dump() for m in body.modules])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        system = SAPSystem(
            system_id=body.system_id,
            name=body.name or body.system_id,
            type=body.type,
            connection_parameters=dict(body.connection_parameters),
            modules=modules,
        )
        try:
            registry.register_system(system)
        except ConfigurationConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        prefix = request.app.state.settings.api_prefix
        response.headers["Location"] = f"{prefix}/systems/{system.system_id}"
        return SystemResponse.from_system(system).model_dump()

    @router.get("/health")
    def health(registry: SystemRegistry = Depends(get_registry)) -> Dict[str, Any]:
        systems = registry.get_system_health_status()
        status = "healthy" if all(systems.values()) else "degraded"
        return HealthResponse(
            status=status,
            timestamp=datetime.now(timezone.utc),
            systems=systems,
        ).model_dump(mode="json")

    return router


# ──────────────────────────────────────────────────────────────────────────────
# Request monitor
# ──────────────────────────────────────────────────────────────────────────────

def build_monitor_router() -> APIRouter:
    router = APIRouter(prefix="/monitor", tags=["monitor"])

    @router.get("/requests")
    def recent_requests(
        count: int = Query(100, ge=1, le=10000),
        since: Optional[str] = Query(None, description="ISO-8601 lower bound on timestamp"),
        monitor: RequestMonitor = Depends(get_monitor),
    ) -> Dict[str, Any]:
        entries = monitor.get_recent_requests(count)
        if since is not None:
            since_ts = parse_ts(since)
            if since_ts is None:
                raise HTTPException(status_code=400, detail=f"Invalid timestamp: {since}")
            entries = Aggregator.filter_since(entries, since_ts)
        return {"requests": [e.to_dict() for e in entries], "count": len(entries)}

    @router.get("/requests/count")
    def request_count(monitor: RequestMonitor = Depends(get_monitor)) -> Dict[str, Any]:
        return {"count": monitor.get_total_request_count(), "max_requests": monitor.max_requests}

    @router.delete("/requests")
    def clear_requests(monitor: RequestMonitor = Depends(get_monitor)) -> Dict[str, Any]:
        monitor.clear_requests()
        return {"status": "cleared"}

    @router.get("/stats")
    def stats(
        request: Request,
        limit: int = Query(10, ge=1, le=200),
        sort_by: str = Query("count"),  # "count" or "p95"
        order: str = Query("desc"),     # "asc" or "desc"
        monitor: RequestMonitor = Depends(get_monitor),
    ) -> Dict[str, Any]:
        aggregator: Aggregator = request.app.state.aggregator
        entries = monitor.get_recent_requests(monitor.max_requests)
        return {
            "metrics": asdict(aggregator.compute_metrics(entries)),
            "endpoints": [asdict(s) for s in aggregator.compute_endpoints(entries, limit, sort_by, order)],
            "lifetime": request.app.state.counters.snapshot(),
            "observers": monitor.observer_count,
            "dropped_broadcasts": monitor.dropped_count,
        }

    return router


# ──────────────────────────────────────────────────────────────────────────────
# Dynamic SAP endpoints: /api/{system_id}/{module_id}{endpoint_path}
# ──────────────────────────────────────────────────────────────────────────────

def build_dynamic_router() -> APIRouter:
    router = APIRouter(tags=["sap"])

    @router.api_route("/{system_id}/{module_id}/{endpoint_path:path}", methods=["GET", "POST", "PUT", "DELETE"])
    async def sap_endpoint(
        system_id: str,
        module_id: str,
        endpoint_path: str,
        request: Request,
        resolver: EndpointResolver = Depends(get_resolver),
    ) -> JSONResponse:
        result = await resolver.dispatch(
            system_id,
            module_id,
            request.method,
            endpoint_path,
            body=await request.body(),
            query_parameters=dict(request.query_params),
            headers=dict(request.headers),
        )
        if result.system_id:
            setattr(request.state, STATE_SYSTEM, result.system_id)
            setattr(request.state, STATE_MODULE, result.module_id)
        return JSONResponse(status_code=result.status_code, content=result.body)

    return router


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    await app.state.monitor.start()
    logger.info(
        "SAP mock ready: %d endpoints from %d systems",
        app.state.registry.endpoint_count(),
        len(app.state.registry.get_all_systems()),
    )
    try:
        yield
    finally:
        await app.state.monitor.stop()


def register_configured_systems(registry: SystemRegistry, configuration: ConfigurationService) -> int:
    registered = 0
    for system in configuration.load_systems():
        try:
            registry.register_system(system)
            registered += 1
        except (ConfigurationConflict, ValueError) as exc:
            logger.error("Skipping system %s: %s", system.system_id, exc)
    return registered


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[MockDataProvider] = None,
    registry: Optional[SystemRegistry] = None,
    monitor: Optional[RequestMonitor] = None,
    load_configured_systems: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    provider = provider or FileBasedMockDataProvider(settings.data_path, settings.enable_extensions)
    registry = registry or SystemRegistry()
    monitor = monitor or RequestMonitor(settings.max_requests, settings.observer_timeout_ms / 1000.0)
    configuration = ConfigurationService(HandlerFactory(provider), settings.config_file)

    if load_configured_systems:
        register_configured_systems(registry, configuration)

    app = FastAPI(title="SAP Mock (dynamic endpoints + request monitor)", lifespan=lifespan)
    app.state.settings = settings
    app.state.provider = provider
    app.state.registry = registry
    app.state.monitor = monitor
    app.state.configuration = configuration
    app.state.resolver = EndpointResolver(registry, ErrorSimulator(settings.timeout_delay_ms))
    app.state.hub = WebSocketObserverHub(monitor)
    app.state.aggregator = Aggregator()
    app.state.counters = RequestCounters()
    monitor.subscribe(app.state.counters)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # dev OK; lock down in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, monitor_getter=lambda: app.state.monitor)

    # Fixed routes first; the dynamic catch-all must not shadow them
    app.include_router(build_systems_router(), prefix=settings.api_prefix)
    app.include_router(build_monitor_router(), prefix=settings.api_prefix)
    app.include_router(build_dynamic_router(), prefix=settings.api_prefix)

    @app.websocket("/hubs/requests")
    async def request_hub(websocket: WebSocket) -> None:
        await websocket.app.state.hub.serve(websocket)

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("sapmock.main:app", host="0.0.0.0", port=8000)


app = create_app()
