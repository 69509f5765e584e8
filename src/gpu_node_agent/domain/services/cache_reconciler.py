"""Cache plan reconciler.

Drives the node's local artifact cache toward the declared plan:
1. Change detection: a plan hash and an update-marker fingerprint decide
   whether a pass does any work at all
2. Bounded cadence: an unchanged plan is re-synced at most once per interval
3. Item dispatch: images go to the image puller, git repos to the git syncer,
   strictly in declaration order
4. Failure isolation: one item's failure is recorded on that item and in the
   error list, and the pass moves on

Update markers are never cleared here. A marked item is treated as changed on
every full pass until the marker is removed from the plan.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from gpu_node_agent.domain.entities.cache_plan import (
    CacheItem,
    CacheItemType,
    UpdateRequest,
)
from gpu_node_agent.domain.entities.cache_status import (
    GitRepoStatus,
    ImageStatus,
    NodeCacheStatus,
    SyncStatus,
)
from gpu_node_agent.domain.errors import (
    GitSyncError,
    ImagePullError,
    PlanUnavailableError,
    StatusSinkError,
)
from gpu_node_agent.domain.services.status_store import CacheStatusStore
from gpu_node_agent.ports.outbound import (
    GitSyncerPort,
    ImagePullerPort,
    PlanSourcePort,
    StatusSinkPort,
)

logger = logging.getLogger(__name__)

DEFAULT_RESYNC_INTERVAL = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheReconciler:
    """Reconciles the local cache against the declared cache plan."""

    def __init__(
        self,
        node_name: str,
        plan_source: PlanSourcePort,
        status_sink: StatusSinkPort,
        image_puller: ImagePullerPort,
        git_syncer: GitSyncerPort,
        store: Optional[CacheStatusStore] = None,
        resync_interval: timedelta = DEFAULT_RESYNC_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the reconciler.

        Args:
            node_name: Node whose cache this reconciler manages.
            plan_source: Where the plan is fetched from.
            status_sink: Where aggregate status is published.
            image_puller: Adapter that pulls images.
            git_syncer: Adapter that clones/updates git repositories.
            store: Status store; a fresh one is created if omitted.
            resync_interval: Minimum time between full passes of an unchanged plan.
            clock: Source of timezone-aware timestamps.
        """
        self._node_name = node_name
        self._plan_source = plan_source
        self._status_sink = status_sink
        self._image_puller = image_puller
        self._git_syncer = git_syncer
        self._store = store if store is not None else CacheStatusStore()
        self._resync_interval = resync_interval
        self._clock = clock
        self.last_pass_was_full = False
        self._plan_fetch_failed = False
        self._full_pass_errors: Optional[list[str]] = None

    @property
    def store(self) -> CacheStatusStore:
        return self._store

    def hydrate(self) -> bool:
        """Seed the store from the last published status.

        Returns:
            True if a previous status was loaded.
        """
        try:
            previous = self._status_sink.load()
        except StatusSinkError as exc:
            logger.warning(f"Could not load previous cache status: {exc}")
            return False
        if previous is None:
            return False
        self._store.hydrate(previous)
        logger.info(
            f"Restored cache status with {len(previous.images)} images "
            f"and {len(previous.git_repos)} git repos"
        )
        return True

    def reconcile(self) -> NodeCacheStatus:
        """Run one reconciliation pass.

        Returns:
            The status after this pass. For a short-circuited pass this is
            the previous status, unchanged, unless the previous pass could not
            read the plan: then the item statuses are re-published without
            the plan fetch error.
        """
        now = self._clock()
        self.last_pass_was_full = False

        try:
            plan = self._plan_source.fetch_plan()
        except PlanUnavailableError as exc:
            logger.error(f"Failed to get cache plan: {exc}")
            status = self._carry_forward(now, [f"Failed to get cache plan: {exc}"])
            self._publish(status)
            self._store.last_status = status
            self._plan_fetch_failed = True
            return status

        if plan is None:
            logger.debug("No cache plan found, skipping cache reconciliation")
            if self._store.last_status is not None:
                return self._store.last_status
            return NodeCacheStatus(node_name=self._node_name, last_update=now)

        plan_hash = plan.compute_hash()
        fingerprint = plan.markers_fingerprint()
        plan_changed = plan_hash != self._store.last_hash
        markers_changed = fingerprint != self._store.markers_fingerprint
        last_full = self._store.last_full_reconcile
        due = last_full is None or now - last_full >= self._resync_interval

        if not (plan_changed or markers_changed or due) and self._store.last_status is not None:
            if self._plan_fetch_failed:
                return self._republish_after_recovery(plan.decode_errors, now)
            logger.debug(
                f"Skipping reconciliation - last full pass {now - last_full} ago "
                f"and no plan changes"
            )
            return self._store.last_status

        if plan_changed:
            logger.info("Cache plan changed, triggering immediate reconciliation")
        elif markers_changed:
            logger.info("Cache update requests changed, reconciling requested items")
        else:
            logger.info(f"Performing periodic reconciliation (last full pass: {last_full})")

        self.last_pass_was_full = True

        errors = list(plan.decode_errors)
        images: list[ImageStatus] = []
        git_repos: list[GitRepoStatus] = []

        for item in plan.items:
            if not item.applies_to_all_nodes:
                logger.debug(f"Skipping item {item.name} with scope {item.scope}")
                continue
            if item.item_type is CacheItemType.IMAGE:
                images.append(self._reconcile_image(item, plan_changed, errors, now))
            elif item.item_type is CacheItemType.GIT_REPO:
                request = plan.update_requests.get(item.name)
                git_repos.append(
                    self._reconcile_git_repo(item, plan_changed, request, errors, now)
                )
            else:
                logger.debug(f"Skipping unsupported cache item type {item.item_type.value} for {item.name}")

        self._store.last_hash = plan_hash
        self._store.markers_fingerprint = fingerprint
        self._store.last_full_reconcile = now
        self._plan_fetch_failed = False
        self._full_pass_errors = list(errors)

        status = NodeCacheStatus(
            node_name=self._node_name,
            images=images,
            git_repos=git_repos,
            errors=errors,
            last_update=now,
            plan_hash=plan_hash,
        )
        self._publish(status)
        self._store.last_status = status
        return status

    def _reconcile_image(
        self,
        item: CacheItem,
        plan_changed: bool,
        errors: list[str],
        now: datetime,
    ) -> ImageStatus:
        ref = item.image.ref
        cached = self._store.get_image(ref)
        if cached is not None and cached.status is SyncStatus.READY and not plan_changed:
            return cached

        status = ImageStatus(
            ref=ref,
            name=item.name,
            status=SyncStatus.PULLING,
            message="Pulling image...",
            last_checked=now,
        )
        self._store.put_image(status)

        try:
            self._image_puller.pull(ref)
        except ImagePullError as exc:
            logger.error(f"Failed to pull image {ref}: {exc}")
            status = replace(status, status=SyncStatus.FAILED, message=f"Pull failed: {exc}")
            errors.append(f"Failed to pull image {ref}: {exc}")
        else:
            logger.info(f"Successfully pulled image {ref}")
            status = replace(
                status,
                status=SyncStatus.READY,
                present=True,
                message="Pull completed successfully",
            )

        self._store.put_image(status)
        return status

    def _reconcile_git_repo(
        self,
        item: CacheItem,
        plan_changed: bool,
        request: Optional[UpdateRequest],
        errors: list[str],
        now: datetime,
    ) -> GitRepoStatus:
        spec = item.git_repo
        cached = self._store.get_git_repo(spec.key)
        if not plan_changed and request is None and cached is not None:
            return cached

        force = request is not None and request.force
        if force:
            message = f"Force updating repository (branch: {spec.branch})..."
        elif request is not None:
            message = f"Updating repository (branch: {spec.branch})..."
        else:
            message = f"Cloning repository (branch: {spec.branch})..."

        status = GitRepoStatus(
            ref=spec.url,
            name=item.name,
            branch=spec.branch,
            status=SyncStatus.PULLING,
            message=message,
            last_checked=now,
        )
        self._store.put_git_repo(status)

        try:
            result = self._git_syncer.sync(spec.url, spec.branch, spec.path_name, force=force)
        except GitSyncError as exc:
            logger.error(f"Failed to clone git repo {spec.url} (branch: {spec.branch}): {exc}")
            status = replace(status, status=SyncStatus.FAILED, message=f"Clone failed: {exc}")
            errors.append(f"Failed to clone git repo {spec.url} (branch: {spec.branch}): {exc}")
        else:
            logger.info(f"Synced git repo {spec.url} (branch: {spec.branch}, {result.action.value})")
            status = replace(
                status,
                status=SyncStatus.READY,
                present=True,
                message=f"Sync completed successfully (branch: {spec.branch}, {result.action.value})",
                commit=result.commit,
            )

        self._store.put_git_repo(status)
        return status

    def _republish_after_recovery(self, decode_errors: list[str], now: datetime) -> NodeCacheStatus:
        logger.info("Cache plan is readable again, clearing plan fetch error")
        if self._full_pass_errors is not None:
            errors = list(self._full_pass_errors)
        else:
            errors = list(decode_errors)
        status = self._carry_forward(now, errors)
        self._publish(status)
        self._store.last_status = status
        self._plan_fetch_failed = False
        return status

    def _carry_forward(self, now: datetime, errors: list[str]) -> NodeCacheStatus:
        previous = self._store.last_status
        if previous is None:
            return NodeCacheStatus(node_name=self._node_name, errors=errors, last_update=now)
        return NodeCacheStatus(
            node_name=self._node_name,
            images=list(previous.images),
            git_repos=list(previous.git_repos),
            errors=errors,
            last_update=now,
            plan_hash=previous.plan_hash,
        )

    def _publish(self, status: NodeCacheStatus) -> None:
        try:
            created = self._status_sink.publish(status)
        except StatusSinkError as exc:
            logger.error(f"Failed to publish cache status for node {self._node_name}: {exc}")
            return
        logger.info(
            f"{'Created' if created else 'Updated'} cache status for node {self._node_name} "
            f"with {len(status.images)} images and {len(status.git_repos)} git repos"
        )
