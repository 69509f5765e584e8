"""In-memory store of per-item cache status.

The store outlives single reconciliation passes so unchanged items can be
reported without re-running their tools. It is owned by whoever builds the
reconciler and can be hydrated from the last published status so a restart
does not forget which items were already ready.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from gpu_node_agent.domain.entities.cache_status import (
    GitRepoStatus,
    ImageStatus,
    NodeCacheStatus,
    SyncStatus,
)


class CacheStatusStore:
    """Per-item status keyed by item reference, plus plan snapshot state."""

    def __init__(self) -> None:
        self._images: dict[str, ImageStatus] = {}        # image ref -> status
        self._git_repos: dict[str, GitRepoStatus] = {}   # "url#branch" -> status
        self.last_hash: Optional[str] = None
        self.markers_fingerprint: Optional[str] = None
        self.last_full_reconcile: Optional[datetime] = None
        self.last_status: Optional[NodeCacheStatus] = None

    def get_image(self, ref: str) -> Optional[ImageStatus]:
        return self._images.get(ref)

    def put_image(self, status: ImageStatus) -> None:
        self._images[status.key] = status

    def get_git_repo(self, key: str) -> Optional[GitRepoStatus]:
        return self._git_repos.get(key)

    def put_git_repo(self, status: GitRepoStatus) -> None:
        self._git_repos[status.key] = status

    def hydrate(self, status: NodeCacheStatus) -> None:
        """Seed the store from a previously published status.

        The plan hash is restored so an unchanged plan is not treated as new,
        but the full-reconcile timestamp is not, so the first pass after a
        restart is still a full pass. Items caught mid-sync are dropped so
        they are synced again.
        """
        for image in status.images:
            if image.status is not SyncStatus.PULLING:
                self.put_image(image)
        for repo in status.git_repos:
            if repo.status is not SyncStatus.PULLING:
                self.put_git_repo(repo)
        self.last_hash = status.plan_hash
        self.last_status = status
