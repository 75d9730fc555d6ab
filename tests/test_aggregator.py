"""Unit tests for request log aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from sapmock.models.data_models import RequestLogEntry
from sapmock.services.aggregator import Aggregator, RequestCounters


def _entry(path, status_code=200, ms=10.0, system='ERP01', module='MM', method='GET', headers=None, ts=None):
    kwargs = {'timestamp': ts} if ts is not None else {}
    return RequestLogEntry(
        method=method,
        path=path,
        status_code=status_code,
        response_time_ms=ms,
        system=system,
        module=module,
        headers=headers or {},
        **kwargs
    )


class TestAggregator:
    """Test cases for Aggregator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.aggregator = Aggregator()
        self.entries = [
            _entry('/api/ERP01/MM/materials', ms=10.0),
            _entry('/api/ERP01/MM/materials', ms=30.0),
            _entry('/api/ERP01/MM/materials/X', status_code=404, ms=5.0),
            _entry('/api/ERP01/MM/materials/Y', status_code=408, ms=2.0,
                   headers={'x-sap-mock-error': 'Timeout'}),
            _entry('/api/systems', ms=1.0, system='', module=''),
        ]

    def test_compute_metrics(self):
        """Test overall metrics."""
        metrics = self.aggregator.compute_metrics(self.entries)

        assert metrics.total_requests == 5
        assert metrics.error_count == 2
        assert metrics.error_rate == pytest.approx(40.0)
        assert metrics.simulated_errors == 1
        assert metrics.avg_response_time == pytest.approx(9.6)
        assert metrics.p50_response_time == 5.0
        assert metrics.requests_by_status == {'200': 3, '404': 1, '408': 1}
        assert metrics.requests_by_system == {'ERP01': 4}

    def test_compute_metrics_empty(self):
        """Test metrics of an empty log."""
        metrics = self.aggregator.compute_metrics([])

        assert metrics.total_requests == 0
        assert metrics.error_rate == 0.0
        assert metrics.p95_response_time == 0.0

    def test_compute_endpoints(self):
        """Test per-route buckets skip unresolved requests."""
        stats = self.aggregator.compute_endpoints(self.entries)

        assert stats[0].path == 'GET /api/ERP01/MM/materials'
        assert stats[0].count == 2
        assert stats[0].avg_response_time == 20.0
        assert len(stats) == 3
        assert all(s.system == 'ERP01' for s in stats)

    def test_compute_endpoints_sort_and_limit(self):
        """Test sorting by p95 ascending with a limit."""
        stats = self.aggregator.compute_endpoints(self.entries, limit=1, sort_by='p95', order='asc')

        assert [s.path for s in stats] == ['GET /api/ERP01/MM/materials/Y']

    def test_filter_since(self):
        """Test timestamp filtering."""
        now = datetime.now(timezone.utc)
        old = _entry('/old', ts=now - timedelta(hours=2))
        new = _entry('/new', ts=now)

        assert Aggregator.filter_since([old, new], now - timedelta(hours=1)) == [new]
        assert Aggregator.filter_since([old, new], None) == [old, new]


class TestRequestCounters:
    """Test cases for RequestCounters."""

    def test_counts_by_status(self):
        """Test lifetime counting."""
        counters = RequestCounters()
        counters(_entry('/a'))
        counters(_entry('/b', status_code=500))
        counters(_entry('/c'))

        assert counters.snapshot() == {'total': 3, 'by_status': {'200': 2, '500': 1}}
