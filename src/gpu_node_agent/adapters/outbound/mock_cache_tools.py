"""Mock cache tools for testing and development.

These adapters implement ImagePullerPort and GitSyncerPort in memory so the
reconciler can run without crictl, git, or network access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from gpu_node_agent.domain.errors import GitSyncError, ImagePullError
from gpu_node_agent.ports.outbound import SyncAction, SyncResult

logger = logging.getLogger(__name__)


class MockImagePuller:
    """Mock implementation of ImagePullerPort.

    Example:
        puller = MockImagePuller()
        puller.fail("registry.example/broken:1", "manifest unknown")
        puller.pull("registry.example/app:1")
        assert puller.pulled == ["registry.example/app:1"]
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.pulled: list[str] = []
        self._failures: dict[str, str] = {}

    def fail(self, ref: str, reason: str = "pull failed") -> None:
        """Make every pull of ``ref`` fail with ``reason``."""
        self._failures[ref] = reason

    def recover(self, ref: str) -> None:
        self._failures.pop(ref, None)

    def pull(self, ref: str) -> None:
        self.calls.append(ref)
        if ref in self._failures:
            raise ImagePullError(self._failures[ref])
        self.pulled.append(ref)
        logger.debug(f"Mock pulled image {ref}")


@dataclass(frozen=True)
class MockSyncCall:
    """One recorded git sync invocation."""
    url: str
    branch: str
    path_name: str
    force: bool


class MockGitSyncer:
    """Mock implementation of GitSyncerPort.

    Tracks which checkouts exist so repeated syncs report an update instead
    of a clone.
    """

    def __init__(self, cache_root: Path = Path("/tmp/mock-git-cache")) -> None:
        self.cache_root = cache_root
        self.calls: list[MockSyncCall] = []
        self._checkouts: set[str] = set()
        self._failures: dict[str, str] = {}
        self._sequence = 0

    def fail(self, url: str, reason: str = "clone failed") -> None:
        """Make every sync of ``url`` fail with ``reason``."""
        self._failures[url] = reason

    def recover(self, url: str) -> None:
        self._failures.pop(url, None)

    def calls_for(self, url: str) -> list[MockSyncCall]:
        return [call for call in self.calls if call.url == url]

    def sync(self, url: str, branch: str, path_name: str, force: bool = False) -> SyncResult:
        self.calls.append(MockSyncCall(url, branch, path_name, force))
        if url in self._failures:
            raise GitSyncError(self._failures[url])

        if path_name not in self._checkouts:
            self._checkouts.add(path_name)
            action = SyncAction.CLONED
        elif force:
            action = SyncAction.FORCE_UPDATED
        else:
            action = SyncAction.PULLED

        self._sequence += 1
        commit: Optional[str] = f"{self._sequence:040x}"
        return SyncResult(self.cache_root / path_name, action, commit)
