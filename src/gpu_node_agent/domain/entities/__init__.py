"""Domain entities for the node agent.

- GPUSlotState / SlotSnapshot: ledger ownership records
- CachePlan / CacheItem: declared artifacts
- NodeCacheStatus: observed cache state
"""

from gpu_node_agent.domain.entities.cache_plan import (
    CacheItem,
    CacheItemType,
    CachePlan,
    GitRepoSpec,
    ImageSpec,
    ModelSpec,
    PlanDecodeError,
    UpdateRequest,
    decode_plan,
)
from gpu_node_agent.domain.entities.cache_status import (
    GitRepoStatus,
    ImageStatus,
    NodeCacheStatus,
    SyncStatus,
)
from gpu_node_agent.domain.entities.gpu_slot import (
    GPUAllocation,
    GPUSlotState,
    NodeGPUStatus,
    ReservationInfo,
    SlotSnapshot,
)

__all__ = [
    # GPU slots
    "GPUAllocation",
    "GPUSlotState",
    "NodeGPUStatus",
    "ReservationInfo",
    "SlotSnapshot",
    # Cache plan
    "CacheItem",
    "CacheItemType",
    "CachePlan",
    "GitRepoSpec",
    "ImageSpec",
    "ModelSpec",
    "PlanDecodeError",
    "UpdateRequest",
    "decode_plan",
    # Cache status
    "GitRepoStatus",
    "ImageStatus",
    "NodeCacheStatus",
    "SyncStatus",
]
