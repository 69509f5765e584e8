"""GPU slot entities stored in the resource ledger.

A slot is the ledger record for one GPU index in one ownership domain.
The JSON field names match the ones the legacy host client reads and
writes, so both clients can share the same store.

References:
    - Ledger key layout (per-GPU state blob, per-claim metadata)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from gpu_node_agent.domain.value_objects.identifiers import (
    CLAIM_SLOT_TYPE,
    ClaimId,
    claim_from_owner,
    owner_for_claim,
)


def _parse_timestamp(value: Any) -> Optional[float]:
    """Accept unix seconds or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.replace("Z", "+00:00")
        parsed = datetime.fromisoformat(text)
        # Go's zero time means "unset"
        if parsed.year <= 1:
            return None
        return parsed.timestamp()
    raise ValueError(f"invalid timestamp: {value!r}")


@dataclass
class GPUSlotState:
    """Ownership record of a GPU in one domain. Empty owner means available."""
    owner: str = ""                          # "claim:<id>" or a host user name
    slot_type: str = ""                      # "claim" for this service, host types otherwise
    acquired_at: Optional[float] = None
    last_heartbeat: Optional[float] = None
    released_at: Optional[float] = None

    @property
    def is_owned(self) -> bool:
        return bool(self.owner or self.slot_type)

    @property
    def claim_id(self) -> Optional[ClaimId]:
        """Claim holding this slot, if it was reserved through this service."""
        if self.slot_type != CLAIM_SLOT_TYPE:
            return None
        return claim_from_owner(self.owner)

    def is_owned_by(self, claim_id: str) -> bool:
        return self.owner == owner_for_claim(claim_id)

    @classmethod
    def reserved_for(cls, claim_id: str, now: float) -> GPUSlotState:
        return cls(
            owner=owner_for_claim(claim_id),
            slot_type=CLAIM_SLOT_TYPE,
            acquired_at=now,
            last_heartbeat=now,
        )

    @classmethod
    def released(cls, now: float) -> GPUSlotState:
        return cls(released_at=now)

    def to_json(self) -> str:
        data: dict[str, Any] = {"user": self.owner, "type": self.slot_type}
        if self.acquired_at is not None:
            data["start_time"] = self.acquired_at
        if self.last_heartbeat is not None:
            data["last_heartbeat"] = self.last_heartbeat
        if self.released_at is not None:
            data["last_released"] = self.released_at
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> GPUSlotState:
        """Decode a ledger blob.

        Raises:
            ValueError: If the blob is not a JSON object with valid fields.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("GPU state must be a JSON object")
        owner = data.get("user") or ""
        slot_type = data.get("type") or ""
        if not isinstance(owner, str) or not isinstance(slot_type, str):
            raise ValueError("GPU state user/type must be strings")
        return cls(
            owner=owner,
            slot_type=slot_type,
            acquired_at=_parse_timestamp(data.get("start_time")),
            last_heartbeat=_parse_timestamp(data.get("last_heartbeat")),
            released_at=_parse_timestamp(data.get("last_released")),
        )


@dataclass(frozen=True)
class SlotSnapshot:
    """Both domain records of one GPU read at the same time.

    A domain record of None means the stored blob could not be decoded;
    such a slot is never handed out.
    """
    gpu_id: int
    cluster: Optional[GPUSlotState]
    host: Optional[GPUSlotState]

    @property
    def is_available(self) -> bool:
        if self.cluster is None or self.host is None:
            return False
        return not self.cluster.is_owned and not self.host.is_owned


@dataclass
class ReservationInfo:
    """Per-claim, per-GPU reservation metadata."""
    claim_id: str
    namespace: str = ""
    pod_name: str = ""
    reserved_at: float = 0.0

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "claim_uid": self.claim_id,
            "namespace": self.namespace,
            "reserved_at": self.reserved_at,
        }
        if self.pod_name:
            data["pod_name"] = self.pod_name
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> ReservationInfo:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("reservation info must be a JSON object")
        return cls(
            claim_id=str(data.get("claim_uid", "")),
            namespace=str(data.get("namespace", "")),
            pod_name=str(data.get("pod_name", "")),
            reserved_at=_parse_timestamp(data.get("reserved_at")) or 0.0,
        )


@dataclass
class GPUAllocation:
    """An owned GPU as reported by the status endpoint."""
    gpu_id: int
    claim_id: str
    pod_name: str = ""
    namespace: str = ""


@dataclass
class NodeGPUStatus:
    """Point-in-time view of every GPU on this node."""
    node_name: str
    total_gpus: int
    available_gpus: list[int] = field(default_factory=list)
    allocated_gpus: list[GPUAllocation] = field(default_factory=list)
