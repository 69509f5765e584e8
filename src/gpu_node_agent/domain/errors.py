"""Exception hierarchy for the node agent.

Allocation errors are returned to callers for their own retry decisions.
Ledger errors abort the current operation. Reconcile item errors stay
attached to the item that caused them and never abort a reconciliation pass.
"""

from __future__ import annotations


class AllocationError(Exception):
    """A GPU allocation request cannot be satisfied."""
    pass


class InsufficientGPUs(AllocationError):
    """Fewer GPUs are available than were requested."""

    def __init__(self, requested: int, available: int) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough available GPUs: requested {requested}, available {available}"
        )


class GPUNotAvailable(AllocationError):
    """An explicitly requested GPU is owned in at least one domain."""

    def __init__(self, gpu_id: int) -> None:
        self.gpu_id = gpu_id
        super().__init__(f"GPU {gpu_id} is not available")


class ReservationConflict(AllocationError):
    """Another writer changed a candidate slot between check and commit."""
    pass


class LedgerError(Exception):
    """Ledger operation failed."""
    pass


class LedgerUnavailable(LedgerError):
    """The ledger cannot be reached."""
    pass


class PoolNotInitialized(LedgerError):
    """The ledger holds no GPU count for this node."""

    def __init__(self) -> None:
        super().__init__("GPU pool not initialized")


class ReconcileItemError(Exception):
    """Syncing a single cache item failed."""
    pass


class ImagePullError(ReconcileItemError):
    """Container image pull failed."""
    pass


class GitSyncError(ReconcileItemError):
    """Git clone or update failed."""
    pass


class PlanUnavailableError(Exception):
    """The cache plan could not be fetched or decoded."""
    pass


class StatusSinkError(Exception):
    """Publishing or loading the node cache status failed."""
    pass
