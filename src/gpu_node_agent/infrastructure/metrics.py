"""Prometheus metrics for the node agent."""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)


class MetricsRegistry:
    """Node agent metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or REGISTRY

        self.allocation_requests_total = Counter("gpu_allocation_requests_total", "Allocation requests by outcome", ["outcome"], registry=self._registry)
        self.reserved_gpus = Gauge("gpu_reserved", "GPUs reserved in the cluster domain", registry=self._registry)
        self.available_gpus = Gauge("gpu_available", "GPUs free in both domains", registry=self._registry)
        self.released_gpus_total = Counter("gpu_released_total", "GPUs released", registry=self._registry)
        self.reservation_latency_seconds = Histogram("gpu_reservation_latency_seconds", "Reservation latency", buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0), registry=self._registry)

        self.reconcile_passes_total = Counter("cache_reconcile_passes_total", "Reconcile passes by outcome", ["outcome"], registry=self._registry)
        self.reconcile_duration_seconds = Histogram("cache_reconcile_duration_seconds", "Reconcile pass duration", buckets=(0.1, 1, 10, 60, 300, 900), registry=self._registry)
        self.item_syncs_total = Counter("cache_item_syncs_total", "Item syncs by type and status", ["item_type", "status"], registry=self._registry)
        self.status_errors = Gauge("cache_status_errors", "Errors in the last published status", registry=self._registry)

        self.info = Info("gpu_node_agent", "Node agent info", registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry


_metrics: MetricsRegistry | None = None


def setup_metrics(port: int) -> MetricsRegistry:
    """Serve the global registry on its own port."""
    metrics = get_metrics()
    start_http_server(port, registry=metrics.registry)
    return metrics


def get_metrics() -> MetricsRegistry:
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
