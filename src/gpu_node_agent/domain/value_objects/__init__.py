"""Domain value objects for the node agent."""

from gpu_node_agent.domain.value_objects.identifiers import (
    CLAIM_OWNER_PREFIX,
    CLAIM_SLOT_TYPE,
    MANUAL_OWNER_PREFIX,
    ClaimId,
    claim_from_owner,
    owner_for_claim,
)

__all__ = [
    "CLAIM_OWNER_PREFIX",
    "CLAIM_SLOT_TYPE",
    "MANUAL_OWNER_PREFIX",
    "ClaimId",
    "claim_from_owner",
    "owner_for_claim",
]
