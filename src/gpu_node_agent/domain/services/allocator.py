"""GPU allocator backed by the shared resource ledger.

The allocator implements:
1. Cross-domain availability: a GPU is free only if both the cluster-managed
   and the host-managed records say so
2. All-or-nothing reservation: every requested GPU is reserved, or none is
3. Check-then-reserve under optimistic locking: the ledger re-verifies
   availability inside its transaction, and a lost race is retried with a
   fresh view of the pool
4. Idempotent release usable as a compensating action

The allocator holds no state of its own; every call reads the ledger.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from gpu_node_agent.domain.entities.gpu_slot import (
    GPUAllocation,
    GPUSlotState,
    NodeGPUStatus,
    SlotSnapshot,
)
from gpu_node_agent.domain.errors import (
    GPUNotAvailable,
    InsufficientGPUs,
    ReservationConflict,
)
from gpu_node_agent.domain.value_objects.identifiers import MANUAL_OWNER_PREFIX
from gpu_node_agent.ports.outbound import LedgerPort

logger = logging.getLogger(__name__)


class GPUAllocator:
    """Serves allocate/release/status requests against the ledger."""

    def __init__(
        self,
        ledger: LedgerPort,
        node_name: str,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the allocator.

        Args:
            ledger: Shared ownership ledger.
            node_name: Name reported in responses.
            max_attempts: Reservation attempts before giving up on conflicts.
            clock: Source of unix timestamps.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._ledger = ledger
        self.node_name = node_name
        self._max_attempts = max_attempts
        self._clock = clock

    def _snapshots(self) -> list[SlotSnapshot]:
        gpu_count = self._ledger.get_gpu_count()
        return self._ledger.read_slots(range(gpu_count))

    def get_available_gpus(self) -> list[int]:
        """Return ascending ids of GPUs unowned in both domains."""
        return sorted(s.gpu_id for s in self._snapshots() if s.is_available)

    def _select(self, count: int, gpu_ids: Optional[Sequence[int]]) -> list[int]:
        available = self.get_available_gpus()
        if gpu_ids:
            available_set = set(available)
            for gpu_id in gpu_ids:
                if gpu_id not in available_set:
                    raise GPUNotAvailable(gpu_id)
            return list(gpu_ids)
        if len(available) < count:
            raise InsufficientGPUs(count, len(available))
        return available[:count]

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
            gpu_ids: Specific GPUs to reserve; overrides ``count``.
            pod_name: Pod recorded in reservation metadata.
            namespace: Namespace recorded in reservation metadata.

        Returns:
            Reserved GPU ids.

        Raises:
            InsufficientGPUs: Not enough GPUs available.
            GPUNotAvailable: An explicitly requested GPU is owned.
            ReservationConflict: Every attempt lost a race to another writer.
        """
        if not claim_id:
            raise ValueError("claim_id must not be empty")
        requested = list(dict.fromkeys(gpu_ids)) if gpu_ids else None
        if requested is None and count < 1:
            raise ValueError("count must be at least 1")

        last_conflict: Optional[ReservationConflict] = None
        for attempt in range(1, self._max_attempts + 1):
            selected = self._select(count, requested)
            try:
                self._ledger.reserve_slots(
                    selected, claim_id, pod_name, namespace, self._clock()
                )
            except ReservationConflict as exc:
                last_conflict = exc
                logger.warning(
                    f"Reservation for claim {claim_id} lost a race "
                    f"(attempt {attempt}/{self._max_attempts}): {exc}"
                )
                continue
            logger.info(f"Allocated GPUs {selected} for claim {claim_id}")
            return selected

        raise ReservationConflict(
            f"Could not reserve GPUs for claim {claim_id} after "
            f"{self._max_attempts} attempts: {last_conflict}"
        )

    def release_gpus_for_claim(self, claim_id: str) -> list[int]:
        """Release every GPU in a claim's ownership set.

        Returns:
            GPU ids whose owner was cleared.
        """
        released = []
        now = self._clock()
        for gpu_id in self._ledger.claim_gpus(claim_id):
            if self._ledger.release_slot(claim_id, gpu_id, now):
                released.append(gpu_id)
            else:
                logger.warning(
                    f"GPU {gpu_id} listed for claim {claim_id} is owned by someone else; left untouched"
                )
        self._ledger.delete_claim(claim_id)
        if released:
            logger.info(f"Released GPUs {released} for claim {claim_id}")
        return sorted(released)

    def get_gpu_state(self, gpu_id: int) -> GPUSlotState:
        return self._ledger.get_slot_state(gpu_id)

    def update_heartbeat(self, claim_id: str) -> int:
        """Refresh heartbeats on the claim's GPUs; missing slots are skipped."""
        now = self._clock()
        return sum(
            1 for gpu_id in self._ledger.claim_gpus(claim_id)
            if self._ledger.touch_heartbeat(claim_id, gpu_id, now)
        )

    def get_node_status(self) -> NodeGPUStatus:
        snapshots = self._snapshots()
        status = NodeGPUStatus(node_name=self.node_name, total_gpus=len(snapshots))
        for snapshot in snapshots:
            if snapshot.is_available:
                status.available_gpus.append(snapshot.gpu_id)
                continue
            status.allocated_gpus.append(self._describe_allocation(snapshot))
        status.available_gpus.sort()
        return status

    def _describe_allocation(self, snapshot: SlotSnapshot) -> GPUAllocation:
        cluster, host = snapshot.cluster, snapshot.host
        if cluster is not None and cluster.is_owned:
            claim_id = cluster.claim_id
            if claim_id is None:
                return GPUAllocation(snapshot.gpu_id, f"{MANUAL_OWNER_PREFIX}{cluster.owner}")
            allocation = GPUAllocation(snapshot.gpu_id, claim_id)
            info = self._ledger.get_reservation(claim_id, snapshot.gpu_id)
            if info is not None:
                allocation.pod_name = info.pod_name
                allocation.namespace = info.namespace
            return allocation
        if host is not None and host.is_owned:
            return GPUAllocation(snapshot.gpu_id, f"{MANUAL_OWNER_PREFIX}{host.owner}")
        return GPUAllocation(snapshot.gpu_id, "unknown")
