"""
RequestMonitor Class - Bounded request log with live fan-out

``log_request`` appends under a lock, evicts the oldest entries beyond
capacity, raises the synchronous in-process event, then hands the entry to
a fan-out task that pushes it to every observer. Observer failures are
logged and never reach the caller. An observer that does not finish within
`observer_timeout` seconds is removed. The fan-out queue holds at most
`queue_size` entries; when it is full the oldest pending entry is dropped.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from sapmock.models.data_models import RequestLogEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 1000
DEFAULT_OBSERVER_TIMEOUT = 5.0

Listener = Callable[[RequestLogEntry], None]
Observer = Callable[[RequestLogEntry], Awaitable[None]]


class RequestMonitor:
    """
    Captures completed HTTP transactions.
    Responsibilities:
    - Keep the most recent `max_requests` entries (FIFO eviction)
    - Notify synchronous listeners on every append
    - Broadcast entries to async observers off the request path
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        observer_timeout: float = DEFAULT_OBSERVER_TIMEOUT,
        queue_size: Optional[int] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be positive")
        if observer_timeout <= 0:
            raise ValueError("observer_timeout must be positive")
        self.max_requests = max_requests
        self.observer_timeout = observer_timeout
        self.queue_size = max(1, queue_size or max_requests)
        self.dropped_count = 0
        self._requests: Deque[RequestLogEntry] = deque()
        self._lock = threading.Lock()

        self._listeners: Dict[int, Listener] = {}
        self._observers: Dict[int, Observer] = {}
        self._tokens = itertools.count(1)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[Optional[RequestLogEntry]]"] = None
        self._fanout_task: Optional["asyncio.Task[None]"] = None

    # ── log ───────────────────────────────────────────────────────────────────

    def log_request(self, entry: RequestLogEntry) -> None:
        with self._lock:
            self._requests.append(entry)
            while len(self._requests) > self.max_requests:
                self._requests.popleft()

        for listener in list(self._listeners.values()):
            try:
                listener(entry)
            except Exception:
                logger.exception("Request listener failed")

        self._publish(entry)

    def get_recent_requests(self, count: int = 100) -> List[RequestLogEntry]:
        if count <= 0:
            return []
        with self._lock:
            snapshot = list(self._requests)
        return list(reversed(snapshot[-count:]))

    def clear_requests(self) -> None:
        with self._lock:
            self._requests.clear()
        logger.info("All request logs cleared")

    def get_total_request_count(self) -> int:
        with self._lock:
            return len(self._requests)

    # ── subscriptions ─────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Synchronous per-entry event; returns an unsubscribe callable"""
        token = next(self._tokens)
        self._listeners[token] = listener
        return lambda: self._listeners.pop(token, None)

    def add_observer(self, observer: Observer) -> int:
        token = next(self._tokens)
        self._observers[token] = observer
        return token

    def remove_observer(self, token: int) -> None:
        self._observers.pop(token, None)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # ── fan-out ───────────────────────────────────────────────────────────────

    async def notify_observers(self, entry: RequestLogEntry) -> None:
        observers = list(self._observers.items())
        if not observers:
            return

        results = await asyncio.gather(
            *(self._deliver(token, observer, entry) for token, observer in observers),
            return_exceptions=True,
        )
        for (token, _), result in zip(observers, results):
            if isinstance(result, BaseException):
                logger.error("Failed to notify observer %s about request %s: %r", token, entry.id, result)

    async def _deliver(self, token: int, observer: Observer, entry: RequestLogEntry) -> None:
        try:
            await asyncio.wait_for(self._call(observer, entry), self.observer_timeout)
        except asyncio.TimeoutError:
            self.remove_observer(token)
            logger.warning(
                "Observer %s did not accept request %s within %.2fs; removed",
                token, entry.id, self.observer_timeout,
            )

    @staticmethod
    async def _call(observer: Observer, entry: RequestLogEntry) -> None:
        outcome = observer(entry)
        if inspect.isawaitable(outcome):
            await outcome

    async def start(self) -> None:
        """Start the fan-out task on the running loop"""
        if self._fanout_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._fanout_task = asyncio.create_task(self._fanout())
        logger.info(
            "Request monitor started (max_requests=%d, queue_size=%d)", self.max_requests, self.queue_size
        )

    async def stop(self) -> None:
        if self._fanout_task is None:
            return
        await self._queue.put(None)
        try:
            await self._fanout_task
        finally:
            self._fanout_task = None
            self._queue = None
            self._loop = None
        logger.info("Request monitor stopped")

    def _publish(self, entry: RequestLogEntry) -> None:
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            return
        try:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                self._enqueue(entry)
            else:
                loop.call_soon_threadsafe(self._enqueue, entry)
        except RuntimeError:
            logger.warning("Fan-out loop closed; request %s not broadcast", entry.id)

    def _enqueue(self, entry: Optional[RequestLogEntry]) -> None:
        """Runs on the fan-out loop; drops the oldest pending entry when full"""
        queue = self._queue
        if queue is None:
            return
        while queue.full():
            dropped = queue.get_nowait()
            if dropped is None:
                # stopping: the sentinel stays last
                queue.put_nowait(None)
                return
            self.dropped_count += 1
            logger.warning("Fan-out queue full; dropped request %s", dropped.id)
        queue.put_nowait(entry)

    async def _fanout(self) -> None:
        queue = self._queue
        while True:
            entry = await queue.get()
            if entry is None:
                return
            try:
                await self.notify_observers(entry)
            except Exception:
                logger.exception("Broadcast of request %s failed", entry.id)
