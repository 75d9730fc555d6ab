"""
Aggregator Class - Computes metrics and statistics

This module aggregates request log entries into metrics and statistics.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from sapmock.models.data_models import EndpointStat, Metrics, RequestLogEntry
from sapmock.services.error_simulation import ERROR_HEADER
from sapmock.utils.helpers import count_by, header_lookup, quantile


class Aggregator:
    """
    Aggregates request log entries into metrics and statistics.
    Responsibilities:
    - Filter entries by timestamp
    - Compute overall metrics
    - Compute per-route statistics
    """

    @staticmethod
    def filter_since(entries: List[RequestLogEntry], since: Optional[datetime]) -> List[RequestLogEntry]:
        if since is None:
            return list(entries)
        return [e for e in entries if e.timestamp >= since]

    @staticmethod
    def is_error(entry: RequestLogEntry) -> bool:
        return entry.status_code >= 400

    @staticmethod
    def is_simulated(entry: RequestLogEntry) -> bool:
        return bool(header_lookup(entry.headers, ERROR_HEADER))

    def compute_metrics(self, entries: List[RequestLogEntry]) -> Metrics:
        """Compute aggregated metrics from log entries"""
        total = len(entries)

        error_count = sum(1 for e in entries if self.is_error(e))
        error_rate = (error_count / total * 100.0) if total else 0.0
        simulated = sum(1 for e in entries if self.is_simulated(e))

        durations = sorted(e.response_time_ms for e in entries)
        avg_response = (sum(durations) / len(durations)) if durations else 0.0

        return Metrics(
            total_requests=total,
            error_count=error_count,
            error_rate=error_rate,
            simulated_errors=simulated,
            avg_response_time=avg_response,
            p50_response_time=quantile(durations, 0.50),
            p95_response_time=quantile(durations, 0.95),
            p99_response_time=quantile(durations, 0.99),
            requests_by_status=count_by([str(e.status_code) for e in entries]),
            requests_by_method=count_by([e.method for e in entries if e.method]),
            requests_by_system=count_by([e.system for e in entries if e.system]),
        )

    def compute_endpoints(
        self,
        entries: List[RequestLogEntry],
        limit: int = 10,
        sort_by: str = "count",
        order: str = "desc",
    ) -> List[EndpointStat]:
        """Compute per-route statistics for dynamically resolved requests"""
        buckets: Dict[tuple, List[RequestLogEntry]] = {}
        for e in entries:
            if e.system and e.module:
                buckets.setdefault((e.system, e.module, e.method, e.path), []).append(e)

        stats: List[EndpointStat] = []
        for (system, module, method, path), items in buckets.items():
            count = len(items)
            errors = sum(1 for e in items if self.is_error(e))
            durs = sorted(e.response_time_ms for e in items)

            stats.append(
                EndpointStat(
                    system=system,
                    module=module,
                    path=f"{method} {path}",
                    count=count,
                    errors=errors,
                    avg_response_time=sum(durs) / count,
                    p95_response_time=quantile(durs, 0.95),
                    error_rate=errors / count * 100.0,
                )
            )

        reverse = order.lower() != "asc"
        key_fn = (
            (lambda x: x.p95_response_time)
            if sort_by.lower() == "p95"
            else (lambda x: x.count)
        )
        stats.sort(key=key_fn, reverse=reverse)

        return stats[:limit]


class RequestCounters:
    """
    Lifetime counters fed by the monitor's synchronous event.
    Unlike the log they survive eviction and clears.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.total = 0
        self.by_status: Dict[str, int] = {}

    def __call__(self, entry: RequestLogEntry) -> None:
        key = str(entry.status_code)
        with self._lock:
            self.total += 1
            self.by_status[key] = self.by_status.get(key, 0) + 1

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {"total": self.total, "by_status": dict(self.by_status)}
