"""Tests for metrics recorders."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from ratelimiter.limiter.metrics import (
    CALL_COUNTER,
    LATENCY,
    InMemoryMetricsRecorder,
    MetricsRecorder,
    NoOpMetricsRecorder,
)


class TestNoOpMetricsRecorder:
    """Tests for the default recorder."""

    def test_satisfies_protocol(self):
        assert isinstance(NoOpMetricsRecorder(), MetricsRecorder)

    def test_discards_everything(self):
        recorder = NoOpMetricsRecorder()
        assert recorder.add(CALL_COUNTER, 1, {"namespace": "ip"}) is None
        assert recorder.observe(LATENCY, 0.1, {}) is None


class TestInMemoryMetricsRecorder:
    """Tests for InMemoryMetricsRecorder."""

    @pytest.fixture
    def recorder(self):
        return InMemoryMetricsRecorder()

    def test_satisfies_protocol(self, recorder):
        assert isinstance(recorder, MetricsRecorder)

    def test_counters_filter_by_tags(self, recorder):
        recorder.add(CALL_COUNTER, 1, {"namespace": "ip", "status": "allowed"})
        recorder.add(CALL_COUNTER, 1, {"namespace": "ip", "status": "denied"})
        recorder.add(CALL_COUNTER, 2, {"namespace": "user", "status": "allowed"})

        assert recorder.counter(CALL_COUNTER) == 4
        assert recorder.counter(CALL_COUNTER, namespace="ip") == 2
        assert recorder.counter(CALL_COUNTER, status="allowed") == 3
        assert recorder.counter(CALL_COUNTER, namespace="user", status="denied") == 0
        assert recorder.counter("unknown") == 0

    def test_observations_filter_by_tags(self, recorder):
        recorder.observe(LATENCY, 0.1, {"namespace": "ip", "status": "allowed"})
        recorder.observe(LATENCY, 0.3, {"namespace": "ip", "status": "error"})

        assert sorted(recorder.observations(LATENCY)) == [0.1, 0.3]
        assert recorder.observations(LATENCY, status="error") == [0.3]

    def test_summary(self, recorder):
        recorder.add(CALL_COUNTER, 1, {"status": "allowed"})
        recorder.observe(LATENCY, 0.2, {"status": "allowed"})
        recorder.observe(LATENCY, 0.4, {"status": "allowed"})

        summary = recorder.get_summary()

        assert summary["counters"][CALL_COUNTER] == [{"tags": {"status": "allowed"}, "value": 1}]
        latency = summary["distributions"][LATENCY][0]
        assert latency["count"] == 2
        assert latency["max"] == pytest.approx(0.4)
        assert latency["avg"] == pytest.approx(0.3)

    def test_reset(self, recorder):
        recorder.add(CALL_COUNTER, 1, {})
        recorder.reset()
        assert recorder.get_summary() == {"counters": {}, "distributions": {}}

    def test_thread_safe_counting(self, recorder):
        def work(_):
            for _ in range(100):
                recorder.add(CALL_COUNTER, 1, {"namespace": "ip"})

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(work, range(8)))

        assert recorder.counter(CALL_COUNTER) == 800
