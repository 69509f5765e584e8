"""GPU Allocation Application Coordinator.

Wraps the domain allocator with metrics, tracing and health reporting.
Implements the AllocationAPI consumed by the REST adapter.
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from typing import ContextManager, Optional, Sequence

from opentelemetry import trace

from gpu_node_agent.domain.entities.gpu_slot import GPUSlotState, NodeGPUStatus
from gpu_node_agent.domain.errors import (
    AllocationError,
    GPUNotAvailable,
    InsufficientGPUs,
    LedgerError,
    ReservationConflict,
)
from gpu_node_agent.domain.services.allocator import GPUAllocator
from gpu_node_agent.infrastructure.metrics import MetricsRegistry
from gpu_node_agent.ports.outbound import LedgerPort

logger = logging.getLogger(__name__)


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, InsufficientGPUs):
        return "insufficient"
    if isinstance(exc, GPUNotAvailable):
        return "unavailable"
    if isinstance(exc, ReservationConflict):
        return "conflict"
    if isinstance(exc, LedgerError):
        return "ledger_error"
    return "error"


class AllocationCoordinator:
    """Coordinates GPU allocation with observability."""

    def __init__(
        self,
        ledger: LedgerPort,
        node_name: str,
        max_attempts: int = 3,
        metrics: Optional[MetricsRegistry] = None,
        tracer: Optional[trace.Tracer] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            ledger: Shared ownership ledger.
            node_name: Name of this node.
            max_attempts: Reservation attempts on conflicts.
            metrics: Metrics registry; metrics are skipped if None.
            tracer: Tracer; spans are skipped if None.
        """
        self._ledger = ledger
        self._allocator = GPUAllocator(ledger, node_name, max_attempts=max_attempts)
        self._metrics = metrics
        self._tracer = tracer

    @property
    def node_name(self) -> str:
        return self._allocator.node_name

    @property
    def metrics(self) -> Optional[MetricsRegistry]:
        return self._metrics

    def _span(self, name: str, **attributes) -> ContextManager:
        if self._tracer is None:
            return nullcontext()
        return self._tracer.start_as_current_span(name, attributes=attributes)

    def _refresh_gauges(self, status: NodeGPUStatus) -> None:
        if self._metrics is None:
            return
        self._metrics.available_gpus.set(len(status.available_gpus))
        self._metrics.reserved_gpus.set(len(status.allocated_gpus))

    def get_available_gpus(self) -> list[int]:
        return self._allocator.get_available_gpus()

    def reserve_gpus_for_claim(
        self,
        claim_id: str,
        count: int,
        gpu_ids: Optional[Sequence[int]] = None,
        pod_name: str = "",
        namespace: str = "",
    ) -> list[int]:
        """Reserve GPUs for a claim.

        Args:
            claim_id: Claim that will own the GPUs.
            count: Number of GPUs when no explicit ids are given.
            gpu_ids: Specific GPUs to reserve.
            pod_name: Pod recorded in reservation metadata.
            namespace: Namespace recorded in reservation metadata.

        Returns:
            Reserved GPU ids.
        """
        start = time.perf_counter()
        with self._span(
            "gpu.reserve",
            **{"claim.id": claim_id, "gpu.count": count, "k8s.namespace": namespace},
        ):
            try:
                allocated = self._allocator.reserve_gpus_for_claim(
                    claim_id, count, gpu_ids=gpu_ids, pod_name=pod_name, namespace=namespace
                )
            except (AllocationError, LedgerError) as exc:
                if self._metrics:
                    self._metrics.allocation_requests_total.labels(outcome=_failure_reason(exc)).inc()
                raise

        if self._metrics:
            self._metrics.allocation_requests_total.labels(outcome="success").inc()
            self._metrics.reservation_latency_seconds.observe(time.perf_counter() - start)
        return allocated

    def release_gpus_for_claim(self, claim_id: str) -> list[int]:
        with self._span("gpu.release", **{"claim.id": claim_id}):
            released = self._allocator.release_gpus_for_claim(claim_id)
        if self._metrics and released:
            self._metrics.released_gpus_total.inc(len(released))
        return released

    def get_gpu_state(self, gpu_id: int) -> GPUSlotState:
        return self._allocator.get_gpu_state(gpu_id)

    def update_heartbeat(self, claim_id: str) -> int:
        return self._allocator.update_heartbeat(claim_id)

    def get_node_status(self) -> NodeGPUStatus:
        status = self._allocator.get_node_status()
        self._refresh_gauges(status)
        return status

    def is_healthy(self) -> bool:
        """Check that the ledger answers."""
        try:
            self._ledger.ping()
        except LedgerError as exc:
            logger.warning(f"Health check failed: {exc}")
            return False
        return True
