"""Tests for the in-process performance monitor."""

from fhir_record_api.monitoring import (
    PerformanceMonitor,
    get_monitor,
    initialize_monitor,
)


class TestPerformanceMonitor:
    def test_endpoint_metrics(self):
        monitor = PerformanceMonitor()
        monitor.record_endpoint_request("POST /api/parser/parse", 0.010, 200)
        monitor.record_endpoint_request("POST /api/parser/parse", 0.030, 400)
        monitor.record_endpoint_request("GET /health", 0.001, 200)

        summary = monitor.get_performance_summary()
        assert summary["api"]["total_requests"] == 3

        top = summary["api"]["top_endpoints"][0]
        assert top["endpoint"] == "POST /api/parser/parse"
        assert top["requests"] == 2
        assert top["avg_response_time_ms"] == 20.0
        assert top["error_rate"] == 50.0
        assert summary["errors"]["recent_errors_by_status"] == {400: 1}

    def test_operation_metrics(self):
        monitor = PerformanceMonitor()
        monitor.record_operation("validate", 0.002)
        monitor.record_operation("validate", 0.006, success=False)

        validate = monitor.get_performance_summary()["operations"]["validate"]
        assert validate == {
            "calls": 2,
            "failures": 1,
            "avg_duration_ms": 4.0,
            "max_duration_ms": 6.0,
        }

    def test_detailed_tracking_can_be_disabled(self):
        monitor = PerformanceMonitor(enable_detailed_tracking=False)
        monitor.record_endpoint_request("GET /health", 0.001)
        assert len(monitor.endpoint_metrics["GET /health"].response_times) == 0

    def test_reset(self):
        monitor = PerformanceMonitor()
        monitor.record_operation("parse", 0.001)
        monitor.record_endpoint_request("GET /health", 0.001, 500)
        monitor.reset_metrics()

        summary = monitor.get_performance_summary()
        assert summary["operations"] == {}
        assert summary["api"]["total_requests"] == 0
        assert summary["errors"]["total_recent_errors"] == 0


def test_global_monitor_is_shared():
    assert get_monitor() is get_monitor()


def test_initialize_monitor_replaces_global():
    previous = get_monitor()
    fresh = initialize_monitor(enable_detailed_tracking=False)
    try:
        assert get_monitor() is fresh
        assert fresh is not previous
        assert fresh.enable_detailed_tracking is False
    finally:
        initialize_monitor()
