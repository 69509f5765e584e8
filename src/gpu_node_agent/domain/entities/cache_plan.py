"""Cache plan entities.

A cache plan declares the artifacts every node should hold locally. Plans
arrive as loosely-typed JSON objects; ``decode_plan`` turns them into typed
values once, at the boundary, and everything downstream works on those.

Plan object layout::

    {
      "metadata": {"name": ..., "generation": ..., "annotations": {...}},
      "spec": {"items": [
        {"type": "image", "name": ..., "image": {"ref": ...}},
        {"type": "gitRepo", "name": ..., "gitRepo": {"url": ..., "branch": ..., "pathName": ...}},
        {"type": "model", "name": ..., "model": {"repoId": ..., "revision": ...}}
      ]}
    }
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from gpu_node_agent.domain.errors import PlanUnavailableError

logger = logging.getLogger(__name__)

ALL_NODES_SCOPE = "allNodes"
DEFAULT_GIT_BRANCH = "main"
DEFAULT_MODEL_REVISION = "main"

UPDATE_MARKER_PREFIX = "canhazgpu.dev/update-repo-"
FORCE_MARKER_PREFIX = "canhazgpu.dev/force-update-"


class PlanDecodeError(PlanUnavailableError):
    """Plan object is structurally unusable."""
    pass


class CacheItemType(Enum):
    """Kinds of cacheable artifacts."""
    IMAGE = "image"
    GIT_REPO = "gitRepo"
    MODEL = "model"


@dataclass(frozen=True)
class ImageSpec:
    ref: str


@dataclass(frozen=True)
class GitRepoSpec:
    url: str
    branch: str = DEFAULT_GIT_BRANCH
    path_name: str = ""           # Directory name under the git cache root

    @property
    def key(self) -> str:
        """Status store key: one entry per URL and branch."""
        return f"{self.url}#{self.branch}"


@dataclass(frozen=True)
class ModelSpec:
    repo_id: str
    revision: str = DEFAULT_MODEL_REVISION


@dataclass(frozen=True)
class CacheItem:
    """One declared artifact. Exactly one of image/git_repo/model is set."""
    item_type: CacheItemType
    name: str
    scope: str = ""
    image: Optional[ImageSpec] = None
    git_repo: Optional[GitRepoSpec] = None
    model: Optional[ModelSpec] = None

    @property
    def applies_to_all_nodes(self) -> bool:
        return self.scope in ("", ALL_NODES_SCOPE)

    @property
    def reference(self) -> str:
        if self.image is not None:
            return self.image.ref
        if self.git_repo is not None:
            return self.git_repo.key
        if self.model is not None:
            return f"{self.model.repo_id}@{self.model.revision}"
        return self.name

    def to_dict(self) -> dict[str, Any]:
        """Canonical form used for hashing."""
        data: dict[str, Any] = {
            "type": self.item_type.value,
            "name": self.name,
            "scope": self.scope,
        }
        if self.image is not None:
            data["image"] = {"ref": self.image.ref}
        if self.git_repo is not None:
            data["gitRepo"] = {
                "url": self.git_repo.url,
                "branch": self.git_repo.branch,
                "pathName": self.git_repo.path_name,
            }
        if self.model is not None:
            data["model"] = {"repoId": self.model.repo_id, "revision": self.model.revision}
        return data


@dataclass(frozen=True)
class UpdateRequest:
    """Out-of-band request to re-sync one named item."""
    item_name: str
    requested_at: str
    force: bool = False


@dataclass
class CachePlan:
    """Decoded cache plan."""
    name: str
    revision: str                                    # Source revision marker
    items: list[CacheItem] = field(default_factory=list)
    update_requests: dict[str, UpdateRequest] = field(default_factory=dict)
    decode_errors: list[str] = field(default_factory=list)

    def compute_hash(self) -> str:
        """Digest over every item spec plus the revision marker."""
        payload = json.dumps(
            {"revision": self.revision, "items": [item.to_dict() for item in self.items]},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def markers_fingerprint(self) -> str:
        """Digest over the update markers, independent of the plan hash."""
        payload = json.dumps(
            sorted(
                [r.item_name, r.requested_at, r.force]
                for r in self.update_requests.values()
            ),
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def decode_update_requests(annotations: Mapping[str, Any]) -> dict[str, UpdateRequest]:
    """Collect update markers from plan annotations.

    ``canhazgpu.dev/update-repo-<name>`` carries the request timestamp;
    ``canhazgpu.dev/force-update-<name>: "true"`` upgrades it to a forced update.
    """
    requests: dict[str, UpdateRequest] = {}
    for key, value in annotations.items():
        if not key.startswith(UPDATE_MARKER_PREFIX):
            continue
        item_name = key[len(UPDATE_MARKER_PREFIX):]
        if not item_name:
            continue
        force = str(annotations.get(f"{FORCE_MARKER_PREFIX}{item_name}", "")).lower() == "true"
        requests[item_name] = UpdateRequest(
            item_name=item_name,
            requested_at=str(value),
            force=force,
        )
    return requests


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"missing or invalid '{key}'")
    return value


def _optional_str(data: Mapping[str, Any], key: str, default: str) -> str:
    value = data.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValueError(f"invalid '{key}'")
    return value


def decode_item(raw: Any) -> CacheItem:
    """Decode one plan item.

    Raises:
        ValueError: If the item is malformed or of an unknown type.
    """
    if not isinstance(raw, Mapping):
        raise ValueError("item must be an object")
    type_name = _require_str(raw, "type")
    try:
        item_type = CacheItemType(type_name)
    except ValueError:
        raise ValueError(f"unsupported item type '{type_name}'") from None

    name = _optional_str(raw, "name", "")
    scope = _optional_str(raw, "scope", "")

    if item_type is CacheItemType.IMAGE:
        body = raw.get("image")
        if not isinstance(body, Mapping):
            raise ValueError("image item without 'image' spec")
        ref = _require_str(body, "ref")
        return CacheItem(item_type, name or ref, scope, image=ImageSpec(ref=ref))

    if item_type is CacheItemType.GIT_REPO:
        body = raw.get("gitRepo")
        if not isinstance(body, Mapping):
            raise ValueError("gitRepo item without 'gitRepo' spec")
        url = _require_str(body, "url")
        name = name or url
        spec = GitRepoSpec(
            url=url,
            branch=_optional_str(body, "branch", DEFAULT_GIT_BRANCH),
            path_name=_optional_str(body, "pathName", name),
        )
        return CacheItem(item_type, name, scope, git_repo=spec)

    body = raw.get("model")
    if not isinstance(body, Mapping):
        raise ValueError("model item without 'model' spec")
    repo_id = _require_str(body, "repoId")
    spec = ModelSpec(
        repo_id=repo_id,
        revision=_optional_str(body, "revision", DEFAULT_MODEL_REVISION),
    )
    return CacheItem(item_type, name or repo_id, scope, model=spec)


def decode_plan(data: Any) -> CachePlan:
    """Decode a plan object into a CachePlan.

    Malformed items are dropped and reported in ``decode_errors`` so one bad
    entry cannot block the rest of the plan.

    Raises:
        PlanDecodeError: If the plan itself is not an object.
    """
    if not isinstance(data, Mapping):
        raise PlanDecodeError("cache plan must be a JSON object")

    metadata = data.get("metadata") or {}
    spec = data.get("spec") or {}
    if not isinstance(metadata, Mapping) or not isinstance(spec, Mapping):
        raise PlanDecodeError("cache plan metadata/spec must be objects")

    # generation only moves on spec edits; resourceVersion also moves on annotation edits
    revision = metadata.get("generation", metadata.get("resourceVersion", ""))
    annotations = metadata.get("annotations") or {}
    if not isinstance(annotations, Mapping):
        raise PlanDecodeError("cache plan annotations must be an object")

    raw_items = spec.get("items") or []
    if not isinstance(raw_items, list):
        raise PlanDecodeError("cache plan spec.items must be a list")

    plan = CachePlan(
        name=str(metadata.get("name", "default")),
        revision=str(revision),
        update_requests=decode_update_requests(annotations),
    )
    for index, raw in enumerate(raw_items):
        try:
            plan.items.append(decode_item(raw))
        except ValueError as exc:
            message = f"Skipping invalid cache item #{index}: {exc}"
            logger.warning(message)
            plan.decode_errors.append(message)
    return plan
