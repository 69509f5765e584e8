"""In-memory plan source and status sink for testing and development."""

from __future__ import annotations

import copy
from typing import Any, Optional

from gpu_node_agent.domain.entities.cache_plan import CachePlan, decode_plan
from gpu_node_agent.domain.entities.cache_status import NodeCacheStatus
from gpu_node_agent.domain.errors import PlanUnavailableError, StatusSinkError


class InMemoryPlanSource:
    """PlanSourcePort holding a raw plan object.

    ``set_plan`` takes the same JSON-shaped dict the file source reads, so
    tests exercise the real decoder.
    """

    def __init__(self, plan: Optional[dict[str, Any]] = None) -> None:
        self._plan = copy.deepcopy(plan)
        self._error: Optional[str] = None
        self.fetch_count = 0

    def set_plan(self, plan: Optional[dict[str, Any]]) -> None:
        self._plan = copy.deepcopy(plan)

    def set_error(self, message: Optional[str]) -> None:
        """Make fetches fail until cleared with ``None``."""
        self._error = message

    def fetch_plan(self) -> Optional[CachePlan]:
        self.fetch_count += 1
        if self._error is not None:
            raise PlanUnavailableError(self._error)
        if self._plan is None:
            return None
        return decode_plan(copy.deepcopy(self._plan))


class InMemoryStatusSink:
    """StatusSinkPort keeping every published status."""

    def __init__(self, initial: Optional[NodeCacheStatus] = None) -> None:
        self.published: list[NodeCacheStatus] = []
        self._current = initial
        self._error: Optional[str] = None

    @property
    def current(self) -> Optional[NodeCacheStatus]:
        return self._current

    def set_error(self, message: Optional[str]) -> None:
        self._error = message

    def publish(self, status: NodeCacheStatus) -> bool:
        if self._error is not None:
            raise StatusSinkError(self._error)
        created = self._current is None
        self._current = copy.deepcopy(status)
        self.published.append(self._current)
        return created

    def load(self) -> Optional[NodeCacheStatus]:
        if self._error is not None:
            raise StatusSinkError(self._error)
        return copy.deepcopy(self._current)
