"""Application layer for the node agent.

Wraps domain services with observability and runs them as services.
"""

from gpu_node_agent.application.coordinator import AllocationCoordinator
from gpu_node_agent.application.reconciler_service import ReconcilerService

__all__ = [
    "AllocationCoordinator",
    "ReconcilerService",
]
