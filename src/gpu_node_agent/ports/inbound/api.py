"""Inbound port interfaces for the node agent.

Inbound ports define what the system offers to external clients.
The REST adapter and the reconcile loop are built against these.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from gpu_node_agent.domain.entities.cache_status import NodeCacheStatus
from gpu_node_agent.domain.entities.gpu_slot import GPUSlotState, NodeGPUStatus


class AllocationAPI(Protocol):
    """GPU allocation operations served per node."""

    node_name: str

    def get_available_gpus(self) -> list[int]:
        """Return ascending ids that both ownership domains report unowned."""
        ...

    def reserve_gpus_for_claim(
        self,
        claim_id: str,
        count: int,
        gpu_ids: Optional[Sequence[int]] = None,
        pod_name: str = "",
        namespace: str = "",
    ) -> list[int]:
        """Reserve GPUs for a claim, all or nothing.

        Raises:
            InsufficientGPUs: If fewer than ``count`` GPUs are available.
            GPUNotAvailable: If an explicitly requested GPU is owned.
            ReservationConflict: If concurrent writers kept winning.
            LedgerUnavailable: If the ledger cannot be reached.
        """
        ...

    def release_gpus_for_claim(self, claim_id: str) -> list[int]:
        """Release every GPU owned by a claim. Releasing twice is a no-op."""
        ...

    def get_gpu_state(self, gpu_id: int) -> GPUSlotState:
        """Return a GPU's cluster-domain state."""
        ...

    def update_heartbeat(self, claim_id: str) -> int:
        """Refresh heartbeats of a claim's GPUs. Returns the number touched."""
        ...

    def get_node_status(self) -> NodeGPUStatus:
        """Return total, available and allocated GPUs."""
        ...

    def is_healthy(self) -> bool:
        """True iff the ledger is reachable."""
        ...


class CacheReconcilerAPI(Protocol):
    """Cache reconciliation entry point."""

    def reconcile(self) -> NodeCacheStatus:
        """Run one reconciliation pass and return the resulting status."""
        ...
