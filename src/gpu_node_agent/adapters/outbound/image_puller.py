"""Container image puller using crictl.

Images are pulled straight into the node's CRI runtime so a later pod start
finds them locally. Success is decided by the tool's exit status alone.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from gpu_node_agent.adapters.outbound.commands import CommandFailed, run_command
from gpu_node_agent.domain.errors import ImagePullError

logger = logging.getLogger(__name__)

DEFAULT_PULL_TIMEOUT = 600.0

# Checked in order; /host paths are the node's runtime mounted into the agent pod
CRI_SOCKET_CANDIDATES = (
    Path("/host/run/crio/crio.sock"),
    Path("/host/run/containerd/containerd.sock"),
    Path("/run/crio/crio.sock"),
    Path("/run/containerd/containerd.sock"),
)


def detect_runtime_endpoint(candidates: Sequence[Path] = CRI_SOCKET_CANDIDATES) -> Optional[str]:
    """Return a unix:// endpoint for the first CRI socket that exists."""
    for socket_path in candidates:
        if socket_path.exists():
            return f"unix://{socket_path}"
    return None


class CrictlImagePuller:
    """ImagePullerPort that shells out to ``crictl pull``."""

    def __init__(
        self,
        runtime_endpoint: Optional[str] = None,
        timeout: float = DEFAULT_PULL_TIMEOUT,
        crictl_path: str = "crictl",
    ) -> None:
        self._runtime_endpoint = runtime_endpoint
        self._timeout = timeout
        self._crictl_path = crictl_path

    @property
    def runtime_endpoint(self) -> Optional[str]:
        if self._runtime_endpoint is None:
            self._runtime_endpoint = detect_runtime_endpoint()
        return self._runtime_endpoint

    def pull(self, ref: str) -> None:
        """Pull an image into the runtime.

        Raises:
            ImagePullError: If no runtime is found or crictl fails.
        """
        try:
            endpoint = self.runtime_endpoint
        except OSError as exc:
            raise ImagePullError(f"cannot check container runtime sockets: {exc}") from exc
        if endpoint is None:
            raise ImagePullError("no container runtime socket found")

        logger.info(f"Pulling image {ref} via {endpoint}")
        try:
            run_command(
                [self._crictl_path, "--runtime-endpoint", endpoint, "pull", ref],
                timeout=self._timeout,
            )
        except CommandFailed as exc:
            raise ImagePullError(str(exc)) from exc
