"""
WebSocketObserverHub Class - Real-time request feed

Each connected WebSocket is registered on the monitor as an observer and
receives ``{"event": "ReceiveRequest", "data": <entry>}`` for every logged
request. Sockets that fail to receive are dropped.
"""

import logging
from typing import Dict

from fastapi import WebSocket, WebSocketDisconnect

from sapmock.models.data_models import RequestLogEntry
from sapmock.services.monitor import RequestMonitor

logger = logging.getLogger(__name__)

RECEIVE_REQUEST_EVENT = "ReceiveRequest"


class WebSocketObserver:
    """Observer capability bound to one client socket"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def __call__(self, entry: RequestLogEntry) -> None:
        await self.websocket.send_json({"event": RECEIVE_REQUEST_EVENT, "data": entry.to_dict()})


class WebSocketObserverHub:
    """
    Connects WebSocket clients to the request monitor.
    Responsibilities:
    - Register/unregister one observer per connection
    - Keep the connection open until the client leaves
    """

    def __init__(self, monitor: RequestMonitor):
        self.monitor = monitor
        self._connections: Dict[int, WebSocket] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> int:
        await websocket.accept()
        token = self.monitor.add_observer(self._guarded(websocket))
        self._connections[token] = websocket
        logger.debug("Client connected to request hub: %s", token)
        return token

    def disconnect(self, token: int) -> None:
        self.monitor.remove_observer(token)
        if self._connections.pop(token, None) is not None:
            logger.debug("Client disconnected from request hub: %s", token)

    async def serve(self, websocket: WebSocket) -> None:
        """Hold the connection; inbound messages are ignored"""
        token = await self.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(token)

    def _guarded(self, websocket: WebSocket):
        observer = WebSocketObserver(websocket)

        async def deliver(entry: RequestLogEntry) -> None:
            try:
                await observer(entry)
            except Exception:
                token = next((t for t, ws in self._connections.items() if ws is websocket), None)
                if token is not None:
                    self.disconnect(token)
                raise

        return deliver
