"""Cache reconciler service.

Runs the cache reconciler on a fixed poll period, records pass metrics and
spans, and keeps going when a pass fails.
"""

from __future__ import annotations

import sys
import threading
import time
from contextlib import nullcontext
from typing import Optional

import structlog
from opentelemetry import trace

from gpu_node_agent.domain.entities.cache_status import NodeCacheStatus, SyncStatus
from gpu_node_agent.domain.services.cache_reconciler import CacheReconciler
from gpu_node_agent.infrastructure.logging import get_logger
from gpu_node_agent.infrastructure.metrics import MetricsRegistry


class ReconcilerService:
    """Drives CacheReconciler passes with observability."""

    def __init__(
        self,
        reconciler: CacheReconciler,
        poll_interval: float = 30.0,
        metrics: Optional[MetricsRegistry] = None,
        tracer: Optional[trace.Tracer] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self._reconciler = reconciler
        self._poll_interval = poll_interval
        self._metrics = metrics
        self._tracer = tracer
        self._logger = logger or get_logger(__name__)
        self._stop = threading.Event()

    @property
    def reconciler(self) -> CacheReconciler:
        return self._reconciler

    def start(self) -> None:
        """Restore state from the last published status."""
        restored = self._reconciler.hydrate()
        self._logger.info("cache_reconciler_started", restored=restored, poll_interval=self._poll_interval)

    def stop(self) -> None:
        self._stop.set()

    def run_once(self) -> Optional[NodeCacheStatus]:
        """Run one pass. Unexpected errors are logged and reported as None."""
        start = time.perf_counter()
        span = (
            self._tracer.start_as_current_span("cache.reconcile")
            if self._tracer is not None
            else nullcontext()
        )
        try:
            with span:
                status = self._reconciler.reconcile()
        except Exception:
            self._logger.exception("cache_reconcile_pass_failed")
            if self._metrics:
                self._metrics.reconcile_passes_total.labels(outcome="error").inc()
            return None

        self._record(status, time.perf_counter() - start)
        return status

    def _record(self, status: NodeCacheStatus, duration: float) -> None:
        full = self._reconciler.last_pass_was_full
        if full:
            self._logger.info(
                "cache_reconcile_pass_completed",
                images=len(status.images),
                git_repos=len(status.git_repos),
                errors=len(status.errors),
                duration_seconds=round(duration, 3),
            )
        if self._metrics is None:
            return
        outcome = "full" if full else "skipped"
        if status.errors:
            outcome = "degraded"
        self._metrics.reconcile_passes_total.labels(outcome=outcome).inc()
        self._metrics.status_errors.set(len(status.errors))
        if full:
            self._metrics.reconcile_duration_seconds.observe(duration)
            for image in status.images:
                self._record_item("image", image.status)
            for repo in status.git_repos:
                self._record_item("gitRepo", repo.status)

    def _record_item(self, item_type: str, item_status: SyncStatus) -> None:
        self._metrics.item_syncs_total.labels(item_type=item_type, status=item_status.value).inc()

    def run_forever(self) -> None:
        """Run passes until ``stop()`` is called."""
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self._poll_interval)
        self._logger.info("cache_reconciler_stopped")


def main() -> None:
    """Console entry point for the cache reconciler."""
    import signal

    from gpu_node_agent.infrastructure.container import Container
    from gpu_node_agent.infrastructure.metrics import setup_metrics

    try:
        container = Container.create()
        service = container.reconciler_service()
        setup_metrics(container.config.server.metrics_port)
    except Exception as exc:
        get_logger(__name__).error("cache_reconciler_startup_failed", error=str(exc))
        sys.exit(1)

    def _shutdown(signum, frame):
        container.logger.info("shutdown_signal_received", signal=signum)
        service.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    service.start()
    service.run_forever()


if __name__ == "__main__":
    main()
