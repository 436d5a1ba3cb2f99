"""
In-process statistics for collaborator calls and pipeline outcomes.

Collaborators (platform API, sandbox) record latency and success per call;
the dispatcher records one outcome per processed event. The runner logs a
snapshot on shutdown.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class ServiceStats:
    """Stats for a single collaborator (twitter, sandbox)."""

    name: str
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    latencies: deque = field(default_factory=lambda: deque(maxlen=500))
    last_error: str | None = None
    last_error_time: datetime | None = None

    def record_request(
        self,
        latency_ms: float,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Record a single call."""
        self.request_count += 1
        self.total_latency_ms += latency_ms
        self.latencies.append(latency_ms)
        self.max_latency_ms = max(self.max_latency_ms, latency_ms)

        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Export stats as a dictionary."""
        avg_latency = (
            self.total_latency_ms / self.request_count
            if self.request_count > 0
            else 0.0
        )

        p50 = p95 = 0.0
        if self.latencies:
            sorted_latencies = sorted(self.latencies)
            n = len(sorted_latencies)
            p50 = sorted_latencies[int(n * 0.50)]
            p95 = sorted_latencies[min(n - 1, int(n * 0.95))]

        return {
            "service": self.name,
            "requests": {
                "total": self.request_count,
                "success": self.success_count,
                "failure": self.failure_count,
            },
            "latency_ms": {
                "avg": round(avg_latency, 1),
                "max": round(self.max_latency_ms, 1),
                "p50": round(p50, 1),
                "p95": round(p95, 1),
            },
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_time.isoformat() if self.last_error_time else None
            ),
        }


class StatsCollector:
    """Global stats collector singleton."""

    _instance: "StatsCollector | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "StatsCollector":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._start_time = datetime.now(timezone.utc)
        self._services: dict[str, ServiceStats] = {}
        self._outcomes: Counter[str] = Counter()
        self._recent_errors: deque[dict[str, Any]] = deque(maxlen=50)
        self._lock = threading.Lock()

    @property
    def start_time(self) -> datetime:
        return self._start_time

    def get_service_stats(self, name: str) -> ServiceStats:
        """Get or create stats for a service."""
        with self._lock:
            if name not in self._services:
                self._services[name] = ServiceStats(name=name)
            return self._services[name]

    def record_outcome(self, outcome: str) -> None:
        """Count one processed event by its terminal state."""
        with self._lock:
            self._outcomes[outcome] += 1

    def record_error(self, service: str, error: str, context: dict[str, Any] | None = None) -> None:
        """Record an error for debugging."""
        with self._lock:
            self._recent_errors.append({
                "time": datetime.now(timezone.utc).isoformat(),
                "service": service,
                "error": error,
                "context": context or {},
            })

    def get_all_stats(self) -> dict[str, Any]:
        """Get a stats snapshot."""
        now = datetime.now(timezone.utc)
        uptime_seconds = int((now - self._start_time).total_seconds())

        with self._lock:
            return {
                "start_time": self._start_time.isoformat(),
                "uptime_seconds": uptime_seconds,
                "outcomes": dict(self._outcomes),
                "services": {
                    name: service.to_dict()
                    for name, service in self._services.items()
                },
                "recent_errors": list(self._recent_errors),
            }

    def reset(self) -> None:
        """Clear all counters (used by tests)."""
        with self._lock:
            self._services.clear()
            self._outcomes.clear()
            self._recent_errors.clear()


# Global instance
stats = StatsCollector()
