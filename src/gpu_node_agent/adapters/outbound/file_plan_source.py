"""Cache plan source reading a JSON file.

The plan file is typically a mounted ConfigMap or a copy of the cluster's
plan object kept current by a sidecar.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from gpu_node_agent.domain.entities.cache_plan import CachePlan, decode_plan
from gpu_node_agent.domain.errors import PlanUnavailableError

logger = logging.getLogger(__name__)


class JsonFilePlanSource:
    """PlanSourcePort backed by a JSON file. A missing file means no plan."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def fetch_plan(self) -> Optional[CachePlan]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PlanUnavailableError(f"cannot read {self._path}: {exc}") from exc

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PlanUnavailableError(f"invalid JSON in {self._path}: {exc}") from exc

        plan = decode_plan(data)
        logger.debug(f"Loaded cache plan {plan.name} with {len(plan.items)} items")
        return plan
