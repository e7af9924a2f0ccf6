"""In-process performance monitoring.

Transports and services record lightweight events here without embedding
aggregation logic. No external backend is required.

Collected domains:
        * Endpoint latency and error rates (REST middleware)
        * Service operation latency and failure counts (parse, convert, validate)
        * Recent activity (fixed-size deques for debugging / introspection)

Example::

        from fhir_record_api.monitoring import get_monitor
        monitor = get_monitor()
        monitor.record_endpoint_request("/api/parser/parse", response_time=0.012, status_code=200)
        monitor.record_operation("validate", duration=0.004, success=False)
        print(monitor.get_performance_summary()["api"]["total_requests"])  # -> 1

Reset with :meth:`PerformanceMonitor.reset_metrics` during integration tests to
guarantee clean baselines.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class EndpointMetrics:
    """Aggregated metrics for a single endpoint.

    Attributes:
        total_requests: Count of invocations.
        total_response_time: Cumulative latency (seconds).
        average_response_time: Mean latency (seconds).
        error_count: Requests answered with HTTP >= 400.
        error_rate: error_count / total_requests (0..1).
        last_accessed: Datetime of the most recent invocation.
        response_times: Rolling window of recent latencies.
    """

    total_requests: int = 0
    total_response_time: float = 0.0
    average_response_time: float = 0.0
    error_count: int = 0
    error_rate: float = 0.0
    last_accessed: Optional[datetime] = None
    response_times: deque = field(default_factory=lambda: deque(maxlen=100))


@dataclass
class OperationMetrics:
    """Aggregated metrics for one service operation (``parse``, ``validate``...)."""

    calls: int = 0
    failures: int = 0
    total_duration: float = 0.0
    max_duration: float = 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.calls if self.calls else 0.0


class PerformanceMonitor:
    """Central coordinator for recording and querying metrics.

    Mutating methods hold a re-entrant lock; summaries are JSON-ready dicts.
    Intended to be shared as a singleton within a process.
    """

    def __init__(self, enable_detailed_tracking: bool = True):
        """Initialize performance monitor.

        Args:
            enable_detailed_tracking: If False, skips per-request latency deque
                population.
        """
        self.enable_detailed_tracking = enable_detailed_tracking
        self.start_time = datetime.now()

        self._lock = threading.RLock()

        self.endpoint_metrics: Dict[str, EndpointMetrics] = defaultdict(EndpointMetrics)
        self.operation_metrics: Dict[str, OperationMetrics] = defaultdict(
            OperationMetrics
        )

        self.recent_requests: deque = deque(maxlen=1000)
        self.recent_errors: deque = deque(maxlen=100)

    def record_endpoint_request(
        self, endpoint: str, response_time: float, status_code: int = 200
    ) -> None:
        """Record an API endpoint invocation.

        Args:
            endpoint: Endpoint path.
            response_time: Seconds spent handling the request.
            status_code: HTTP status (>= 400 counts as an error).
        """
        with self._lock:
            now = datetime.now()
            metrics = self.endpoint_metrics[endpoint]
            metrics.total_requests += 1
            metrics.total_response_time += response_time
            metrics.average_response_time = (
                metrics.total_response_time / metrics.total_requests
            )
            metrics.last_accessed = now

            if self.enable_detailed_tracking:
                metrics.response_times.append(response_time)

            if status_code >= 400:
                metrics.error_count += 1
                self.recent_errors.append(
                    {
                        "endpoint": endpoint,
                        "status_code": status_code,
                        "timestamp": now.isoformat(),
                        "response_time": response_time,
                    }
                )

            metrics.error_rate = metrics.error_count / metrics.total_requests

            self.recent_requests.append(
                {
                    "endpoint": endpoint,
                    "timestamp": now.isoformat(),
                    "response_time": response_time,
                    "status_code": status_code,
                }
            )

    def record_operation(self, name: str, duration: float, success: bool = True) -> None:
        """Record one service operation.

        Args:
            name: Operation name, e.g. ``parse`` or ``validate``.
            duration: Seconds the operation took.
            success: False when the operation reported a failure.
        """
        with self._lock:
            metrics = self.operation_metrics[name]
            metrics.calls += 1
            metrics.total_duration += duration
            metrics.max_duration = max(metrics.max_duration, duration)
            if not success:
                metrics.failures += 1

    def get_performance_summary(self) -> Dict[str, Any]:
        """Return a consolidated snapshot of endpoint and operation metrics."""
        with self._lock:
            top_endpoints = sorted(
                self.endpoint_metrics.items(),
                key=lambda x: x[1].total_requests,
                reverse=True,
            )[:10]

            slowest_endpoints = sorted(
                [(k, v) for k, v in self.endpoint_metrics.items() if v.total_requests > 0],
                key=lambda x: x[1].average_response_time,
                reverse=True,
            )[:5]

            recent_errors_summary: Dict[int, int] = defaultdict(int)
            for error in list(self.recent_errors)[-20:]:
                recent_errors_summary[error["status_code"]] += 1

            uptime = (datetime.now() - self.start_time).total_seconds()
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round(uptime, 2),
                "api": {
                    "total_requests": sum(
                        m.total_requests for m in self.endpoint_metrics.values()
                    ),
                    "top_endpoints": [
                        {
                            "endpoint": endpoint,
                            "requests": metrics.total_requests,
                            "avg_response_time_ms": round(
                                metrics.average_response_time * 1000, 2
                            ),
                            "error_rate": round(metrics.error_rate * 100, 2),
                        }
                        for endpoint, metrics in top_endpoints
                    ],
                    "slowest_endpoints": [
                        {
                            "endpoint": endpoint,
                            "avg_response_time_ms": round(
                                metrics.average_response_time * 1000, 2
                            ),
                            "total_requests": metrics.total_requests,
                        }
                        for endpoint, metrics in slowest_endpoints
                    ],
                },
                "operations": {
                    name: {
                        "calls": metrics.calls,
                        "failures": metrics.failures,
                        "avg_duration_ms": round(metrics.average_duration * 1000, 2),
                        "max_duration_ms": round(metrics.max_duration * 1000, 2),
                    }
                    for name, metrics in self.operation_metrics.items()
                },
                "errors": {
                    "recent_errors_by_status": dict(recent_errors_summary),
                    "total_recent_errors": len(self.recent_errors),
                },
            }

    def reset_metrics(self) -> None:
        """Reset all counters (primarily for tests or manual re-baselining)."""
        with self._lock:
            self.endpoint_metrics.clear()
            self.operation_metrics.clear()
            self.recent_requests.clear()
            self.recent_errors.clear()
            self.start_time = datetime.now()


# Global performance monitor instance
_monitor: Optional[PerformanceMonitor] = None


def get_monitor() -> PerformanceMonitor:
    """Return (and lazily initialize) the process-wide monitor."""
    global _monitor
    if _monitor is None:
        _monitor = PerformanceMonitor()
    return _monitor


def initialize_monitor(enable_detailed_tracking: bool = True) -> PerformanceMonitor:
    """Force (re-)initialization of the global monitor."""
    global _monitor
    _monitor = PerformanceMonitor(enable_detailed_tracking)
    return _monitor
