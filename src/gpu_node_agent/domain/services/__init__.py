"""Domain services for node agent business logic.

Services implement core workflows:
- GPUAllocator: cross-domain GPU reservation against the shared ledger
- CacheReconciler: hash-gated reconciliation of the local artifact cache
- CacheStatusStore: per-item status memory shared across passes
"""

from gpu_node_agent.domain.services.allocator import GPUAllocator
from gpu_node_agent.domain.services.cache_reconciler import (
    DEFAULT_RESYNC_INTERVAL,
    CacheReconciler,
)
from gpu_node_agent.domain.services.status_store import CacheStatusStore

__all__ = [
    "GPUAllocator",
    "CacheReconciler",
    "CacheStatusStore",
    "DEFAULT_RESYNC_INTERVAL",
]
