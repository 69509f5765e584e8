"""Per-item and per-node cache status entities.

References:
    - NodeCacheStatus output object
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional


class SyncStatus(Enum):
    """Sync state of a cached item."""
    PULLING = "pulling"     # Tool invocation in progress
    READY = "ready"         # Last sync succeeded
    FAILED = "failed"       # Last sync failed, retried on a later pass


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class ImageStatus:
    ref: str
    name: str = ""
    present: bool = False
    status: SyncStatus = SyncStatus.PULLING
    message: str = ""
    last_checked: Optional[datetime] = None

    @property
    def key(self) -> str:
        return self.ref

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "name": self.name,
            "present": self.present,
            "status": self.status.value,
            "message": self.message,
            "lastChecked": _format_time(self.last_checked),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ImageStatus:
        return cls(
            ref=str(data["ref"]),
            name=str(data.get("name", "")),
            present=bool(data.get("present", False)),
            status=SyncStatus(data.get("status", SyncStatus.FAILED.value)),
            message=str(data.get("message", "")),
            last_checked=_parse_time(data.get("lastChecked")),
        )


@dataclass
class GitRepoStatus:
    ref: str                      # Repository URL
    name: str = ""
    branch: str = ""
    present: bool = False
    status: SyncStatus = SyncStatus.PULLING
    message: str = ""
    last_checked: Optional[datetime] = None
    commit: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.ref}#{self.branch}"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "ref": self.ref,
            "name": self.name,
            "branch": self.branch,
            "present": self.present,
            "status": self.status.value,
            "message": self.message,
            "lastChecked": _format_time(self.last_checked),
        }
        if self.commit:
            data["commit"] = self.commit
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GitRepoStatus:
        return cls(
            ref=str(data["ref"]),
            name=str(data.get("name", "")),
            branch=str(data.get("branch", "")),
            present=bool(data.get("present", False)),
            status=SyncStatus(data.get("status", SyncStatus.FAILED.value)),
            message=str(data.get("message", "")),
            last_checked=_parse_time(data.get("lastChecked")),
            commit=data.get("commit") or None,
        )


@dataclass
class NodeCacheStatus:
    """Aggregate cache status published for one node."""
    node_name: str
    images: list[ImageStatus] = field(default_factory=list)
    git_repos: list[GitRepoStatus] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    last_update: Optional[datetime] = None
    plan_hash: Optional[str] = None   # Lets a restarted reconciler skip unchanged items

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "nodeName": self.node_name,
            "images": [image.to_dict() for image in self.images],
            "gitRepos": [repo.to_dict() for repo in self.git_repos],
            "errors": list(self.errors),
            "lastUpdate": _format_time(self.last_update),
        }
        if self.plan_hash:
            data["planHash"] = self.plan_hash
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeCacheStatus:
        return cls(
            node_name=str(data.get("nodeName", "")),
            images=[ImageStatus.from_dict(item) for item in data.get("images") or []],
            git_repos=[GitRepoStatus.from_dict(item) for item in data.get("gitRepos") or []],
            errors=[str(error) for error in data.get("errors") or []],
            last_update=_parse_time(data.get("lastUpdate")),
            plan_hash=data.get("planHash") or None,
        )
