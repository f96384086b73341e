"""Prometheus metrics for the fleet.

Each ``FleetMetrics`` owns its own ``CollectorRegistry`` so several instances
(one per server, one per test) never collide on metric names.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Histogram, generate_latest

INSTANCE_LABELS = ("pool_id", "os", "arch", "provider")

# Percent buckets: usage tiers are 50/70/90, so keep resolution around them.
PERCENT_BUCKETS = (10.0, 25.0, 50.0, 60.0, 70.0, 80.0, 90.0, 95.0, 100.0)


class FleetMetrics:
    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.cpu_percentile = Histogram(
            "vmfleet_max_cpu_usage_percent",
            "Peak CPU usage reported by the in-guest agent at teardown",
            labelnames=INSTANCE_LABELS,
            buckets=PERCENT_BUCKETS,
            registry=self.registry,
        )
        self.memory_percentile = Histogram(
            "vmfleet_max_mem_usage_percent",
            "Peak memory usage reported by the in-guest agent at teardown",
            labelnames=INSTANCE_LABELS,
            buckets=PERCENT_BUCKETS,
            registry=self.registry,
        )

    def observe_usage(
        self,
        *,
        pool_id: str,
        os: str,
        arch: str,
        provider: str,
        max_cpu_pct: float,
        max_mem_pct: float,
    ) -> None:
        labels = (pool_id, os, arch, provider)
        self.cpu_percentile.labels(*labels).observe(max_cpu_pct)
        self.memory_percentile.labels(*labels).observe(max_mem_pct)

    def render(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)
