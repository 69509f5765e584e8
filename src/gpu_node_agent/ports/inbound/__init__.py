"""Inbound ports - interfaces offered by the node agent."""

from gpu_node_agent.ports.inbound.api import AllocationAPI, CacheReconcilerAPI

__all__ = [
    "AllocationAPI",
    "CacheReconcilerAPI",
]
