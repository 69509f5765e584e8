"""Node cache status sink writing a JSON file.

The file holds one status object per node, shaped like the cluster's
NodeCacheStatus resource so it can be applied or scraped as-is.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from gpu_node_agent.domain.entities.cache_status import NodeCacheStatus
from gpu_node_agent.domain.errors import StatusSinkError

logger = logging.getLogger(__name__)

API_VERSION = "canhazgpu.dev/v1alpha1"
KIND = "NodeCacheStatus"
HOSTNAME_LABEL = "kubernetes.io/hostname"


def to_resource(status: NodeCacheStatus) -> dict[str, Any]:
    """Wrap a status in its resource envelope."""
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "metadata": {
            "name": status.node_name,
            "labels": {HOSTNAME_LABEL: status.node_name},
        },
        "status": status.to_dict(),
    }


class JsonFileStatusSink:
    """StatusSinkPort backed by a JSON file, replaced atomically on publish."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, status: NodeCacheStatus) -> bool:
        created = not self._path.exists()
        payload = json.dumps(to_resource(status), indent=2, sort_keys=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StatusSinkError(f"cannot write {self._path}: {exc}") from exc
        return created

    def load(self) -> Optional[NodeCacheStatus]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StatusSinkError(f"cannot read {self._path}: {exc}") from exc

        try:
            data = json.loads(raw.decode("utf-8"))
            return NodeCacheStatus.from_dict(data.get("status") or {})
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StatusSinkError(f"invalid status object in {self._path}: {exc}") from exc
