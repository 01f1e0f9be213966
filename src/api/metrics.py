"""Metrics service for PathRec.

Singleton service counting storefront recommendation reads (with latency)
and job outcomes.
"""

import threading
from typing import Dict


class MetricsService:
    """Singleton service for tracking API and worker metrics.

    Thread-safe counters; the worker records job outcomes from the event loop
    while request handlers may run in the thread pool.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._read_count = 0
        self._cache_hits = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._jobs: Dict[str, int] = {"complete": 0, "failed": 0}

    def record_read(self, latency_ms: float, cache_hit: bool = False) -> None:
        """Record a storefront recommendation read.

        Args:
            latency_ms: Latency in milliseconds
            cache_hit: Whether the response came from the in-process cache
        """
        with self._lock:
            self._read_count += 1
            if cache_hit:
                self._cache_hits += 1
            self._total_latency_ms += latency_ms
            self._min_latency_ms = min(self._min_latency_ms, latency_ms)
            self._max_latency_ms = max(self._max_latency_ms, latency_ms)

    def record_job(self, status: str) -> None:
        """Count a finished job by terminal status."""
        with self._lock:
            self._jobs[status] = self._jobs.get(status, 0) + 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with:
            - recommendation_reads: Total storefront reads
            - cache_hits: Reads served from the response cache
            - average_latency_ms / min_latency_ms / max_latency_ms
            - jobs: Count of finished jobs per terminal status
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._read_count
                if self._read_count > 0
                else 0.0
            )
            min_latency = (
                self._min_latency_ms if self._min_latency_ms != float("inf") else 0.0
            )

            return {
                "recommendation_reads": self._read_count,
                "cache_hits": self._cache_hits,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(min_latency, 2),
                "max_latency_ms": round(self._max_latency_ms, 2),
                "jobs": dict(self._jobs),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
