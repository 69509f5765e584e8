"""Identifiers shared by the allocation and ledger code.

References:
    - Ledger key layout (owner strings, slot types)
"""

from __future__ import annotations

from typing import NewType, Optional

# Identifier of the external claim that owns GPUs
ClaimId = NewType("ClaimId", str)

CLAIM_OWNER_PREFIX = "claim:"
CLAIM_SLOT_TYPE = "claim"
MANUAL_OWNER_PREFIX = "manual:"


def owner_for_claim(claim_id: str) -> str:
    """Build the owner string recorded on a slot reserved for a claim."""
    return f"{CLAIM_OWNER_PREFIX}{claim_id}"


def claim_from_owner(owner: str) -> Optional[ClaimId]:
    """Extract the claim id from an owner string, or None for other owners."""
    if owner.startswith(CLAIM_OWNER_PREFIX) and len(owner) > len(CLAIM_OWNER_PREFIX):
        return ClaimId(owner[len(CLAIM_OWNER_PREFIX):])
    return None
