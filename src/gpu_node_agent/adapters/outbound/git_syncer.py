"""Git checkout syncer for the local artifact cache.

Each repository lives in ``<cache_root>/<path_name>``:
- no checkout yet: shallow clone of the requested branch
- forced update: fetch the branch and hard-reset onto it
- regular update: pull the branch
A failed update falls back to removing the directory and cloning again.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from gpu_node_agent.adapters.outbound.commands import CommandFailed, run_command
from gpu_node_agent.domain.errors import GitSyncError
from gpu_node_agent.ports.outbound import SyncAction, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 600.0


class GitSyncer:
    """GitSyncerPort that shells out to git."""

    def __init__(
        self,
        cache_root: Path,
        timeout: float = DEFAULT_GIT_TIMEOUT,
        git_path: str = "git",
    ) -> None:
        """Initialize the syncer.

        Args:
            cache_root: Directory holding one checkout per repository.
            timeout: Bound on every git command, in seconds.
            git_path: git binary.
        """
        self._cache_root = Path(cache_root)
        self._timeout = timeout
        self._git_path = git_path

    @property
    def cache_root(self) -> Path:
        return self._cache_root

    def check_available(self) -> bool:
        """Return True if the git binary runs."""
        try:
            run_command([self._git_path, "--version"], timeout=self._timeout)
        except CommandFailed as exc:
            logger.warning(f"git is not available: {exc}")
            return False
        return True

    def resolve_path(self, path_name: str) -> Path:
        """Map a path name to its checkout directory.

        Raises:
            GitSyncError: If the name is empty or escapes the cache root.
        """
        if not path_name:
            raise GitSyncError("empty repository path name")
        try:
            root = self._cache_root.resolve()
            target = (root / path_name).resolve()
        except (OSError, RuntimeError) as exc:
            raise GitSyncError(f"cannot resolve path name {path_name!r}: {exc}") from exc
        if target == root or root not in target.parents:
            raise GitSyncError(f"path name {path_name!r} resolves outside {root}")
        return target

    def sync(self, url: str, branch: str, path_name: str, force: bool = False) -> SyncResult:
        """Clone or update a repository.

        Raises:
            GitSyncError: If neither the update nor a fresh clone succeeds,
                or the cache directory cannot be used.
        """
        target = self.resolve_path(path_name)
        try:
            return self._sync(url, branch, target, force)
        except OSError as exc:
            raise GitSyncError(f"cache directory error for {target}: {exc}") from exc

    def _sync(self, url: str, branch: str, target: Path, force: bool) -> SyncResult:
        self._cache_root.mkdir(parents=True, exist_ok=True)

        if not (target / ".git").is_dir():
            if target.exists():
                logger.warning(f"Removing non-git directory {target} before clone")
                self._remove(target)
            self._clone(url, branch, target)
            return SyncResult(target, SyncAction.CLONED, self._head(target))

        try:
            if force:
                logger.info(f"Force updating {url} (branch: {branch}) in {target}")
                self._git(["fetch", "origin", branch], cwd=target)
                self._git(["reset", "--hard", f"origin/{branch}"], cwd=target)
                action = SyncAction.FORCE_UPDATED
            else:
                logger.info(f"Pulling {url} (branch: {branch}) in {target}")
                self._git(["pull", "origin", branch], cwd=target)
                action = SyncAction.PULLED
        except CommandFailed as exc:
            logger.warning(f"Update of {url} failed, re-cloning: {exc}")
            self._remove(target)
            self._clone(url, branch, target)
            action = SyncAction.RECLONED

        return SyncResult(target, action, self._head(target))

    def _git(self, args: list[str], cwd: Optional[Path] = None) -> str:
        return run_command([self._git_path, *args], timeout=self._timeout, cwd=cwd)

    def _clone(self, url: str, branch: str, target: Path) -> None:
        logger.info(f"Cloning {url} (branch: {branch}) into {target}")
        try:
            self._git(["clone", "--branch", branch, "--depth", "1", url, str(target)])
        except CommandFailed as exc:
            raise GitSyncError(str(exc)) from exc

    def _remove(self, target: Path) -> None:
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise GitSyncError(f"could not remove {target}: {exc}") from exc

    def _head(self, target: Path) -> Optional[str]:
        try:
            return self._git(["rev-parse", "HEAD"], cwd=target).strip() or None
        except CommandFailed as exc:
            logger.warning(f"Could not read HEAD of {target}: {exc}")
            return None
