"""Outbound ports - external dependency interfaces of the node agent.

The allocation side depends on a shared ledger. The cache side depends on a
plan source, a status sink, and two tool adapters that touch the local cache.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

from gpu_node_agent.domain.entities.cache_plan import CachePlan
from gpu_node_agent.domain.entities.cache_status import NodeCacheStatus
from gpu_node_agent.domain.entities.gpu_slot import (
    GPUSlotState,
    ReservationInfo,
    SlotSnapshot,
)


# =============================================================================
# Resource Ledger Port
# =============================================================================


class LedgerPort(Protocol):
    """Protocol for the shared GPU ownership ledger.

    Implementations translate connectivity failures into LedgerUnavailable.
    """

    @abstractmethod
    def ping(self) -> None:
        """Check connectivity.

        Raises:
            LedgerUnavailable: If the ledger cannot be reached.
        """
        ...

    @abstractmethod
    def get_gpu_count(self) -> int:
        """Return the pool size.

        Raises:
            PoolNotInitialized: If no count has been recorded.
        """
        ...

    @abstractmethod
    def initialize_pool(self, gpu_count: int) -> bool:
        """Record the pool size if none is recorded yet.

        Returns:
            True if the count was written, False if one already existed.
        """
        ...

    @abstractmethod
    def read_slots(self, gpu_ids: Sequence[int]) -> list[SlotSnapshot]:
        """Read both ownership domains for the given GPUs."""
        ...

    @abstractmethod
    def get_slot_state(self, gpu_id: int) -> GPUSlotState:
        """Return the cluster-domain state, or the zero value if never set."""
        ...

    @abstractmethod
    def reserve_slots(
        self,
        gpu_ids: Sequence[int],
        claim_id: str,
        pod_name: str,
        namespace: str,
        now: float,
    ) -> None:
        """Atomically re-check availability and reserve every GPU, or none.

        Raises:
            ReservationConflict: If any slot is no longer available or was
                written concurrently.
        """
        ...

    @abstractmethod
    def claim_gpus(self, claim_id: str) -> list[int]:
        """Return the GPU ids in a claim's ownership set."""
        ...

    @abstractmethod
    def release_slot(self, claim_id: str, gpu_id: int, now: float) -> bool:
        """Clear a slot owned by the claim and drop its metadata.

        Returns:
            True if the owner was cleared.
        """
        ...

    @abstractmethod
    def delete_claim(self, claim_id: str) -> None:
        """Delete a claim's ownership set."""
        ...

    @abstractmethod
    def touch_heartbeat(self, claim_id: str, gpu_id: int, now: float) -> bool:
        """Refresh the heartbeat of a slot owned by the claim.

        Returns:
            False if the slot is missing, unreadable or owned by someone else.
        """
        ...

    @abstractmethod
    def get_reservation(self, claim_id: str, gpu_id: int) -> Optional[ReservationInfo]:
        """Return reservation metadata, if present."""
        ...


# =============================================================================
# Cache Plan and Status Ports
# =============================================================================


class PlanSourcePort(Protocol):
    """Protocol for fetching the declared cache plan."""

    @abstractmethod
    def fetch_plan(self) -> Optional[CachePlan]:
        """Fetch and decode the current plan.

        Returns:
            The plan, or None if no plan is declared.

        Raises:
            PlanUnavailableError: If the plan cannot be read or decoded.
        """
        ...


class StatusSinkPort(Protocol):
    """Protocol for publishing node cache status."""

    @abstractmethod
    def publish(self, status: NodeCacheStatus) -> bool:
        """Create the status object if absent, else update it in place.

        Returns:
            True if the object was created.

        Raises:
            StatusSinkError: If publishing fails.
        """
        ...

    @abstractmethod
    def load(self) -> Optional[NodeCacheStatus]:
        """Load the last published status, if any.

        Raises:
            StatusSinkError: If the stored object cannot be read.
        """
        ...


# =============================================================================
# Tool Ports
# =============================================================================


class SyncAction(Enum):
    """What the git syncer did to bring a checkout up to date."""
    CLONED = "cloned"
    PULLED = "pulled"
    FORCE_UPDATED = "force-updated"
    RECLONED = "recloned"           # Update failed, directory replaced by a fresh clone


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a successful git sync."""
    path: Path
    action: SyncAction
    commit: Optional[str] = None


class ImagePullerPort(Protocol):
    """Protocol for pulling container images into the node's runtime."""

    @abstractmethod
    def pull(self, ref: str) -> None:
        """Pull an image.

        Raises:
            ImagePullError: If the pull fails.
        """
        ...


class GitSyncerPort(Protocol):
    """Protocol for keeping a git checkout in the local cache current."""

    @abstractmethod
    def sync(self, url: str, branch: str, path_name: str, force: bool = False) -> SyncResult:
        """Clone or update a repository.

        Raises:
            GitSyncError: If the checkout cannot be brought up to date.
        """
        ...
