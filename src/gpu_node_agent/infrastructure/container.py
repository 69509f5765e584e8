"""Dependency injection container for the node agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional

import structlog
from opentelemetry import trace

from gpu_node_agent.adapters.outbound.file_plan_source import JsonFilePlanSource
from gpu_node_agent.adapters.outbound.file_status_sink import JsonFileStatusSink
from gpu_node_agent.adapters.outbound.git_syncer import GitSyncer
from gpu_node_agent.adapters.outbound.image_puller import CrictlImagePuller
from gpu_node_agent.adapters.outbound.redis_ledger import RedisLedger
from gpu_node_agent.application.coordinator import AllocationCoordinator
from gpu_node_agent.application.reconciler_service import ReconcilerService
from gpu_node_agent.domain.services.cache_reconciler import CacheReconciler
from gpu_node_agent.infrastructure.config import Config, get_config
from gpu_node_agent.infrastructure.logging import setup_logging
from gpu_node_agent.infrastructure.metrics import MetricsRegistry, get_metrics
from gpu_node_agent.infrastructure.tracing import setup_tracing


@dataclass
class Container:
    """Dependency injection container for node agent components."""

    config: Config
    logger: structlog.stdlib.BoundLogger
    tracer: trace.Tracer
    metrics: MetricsRegistry
    _ledger: Optional[RedisLedger] = field(default=None, repr=False)

    _instance: ClassVar[Optional[Container]] = None

    @classmethod
    def create(cls) -> Container:
        """Create and initialize the container with all dependencies."""
        if cls._instance is not None:
            return cls._instance

        config = get_config()
        logger = setup_logging(
            config.observability.log_level,
            config.observability.log_format,
            node_name=config.node.name,
        )
        tracer = setup_tracing(config)
        metrics = get_metrics()
        metrics.info.info({"node": config.node.name, "environment": config.observability.environment})

        cls._instance = cls(
            config=config,
            logger=logger,
            tracer=tracer,
            metrics=metrics,
        )

        logger.info(
            "gpu_node_agent_container_initialized",
            node=config.node.name,
            environment=config.observability.environment,
        )

        return cls._instance

    @classmethod
    def get(cls) -> Container:
        """Get the singleton container instance."""
        if cls._instance is None:
            return cls.create()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the container (useful for testing)."""
        cls._instance = None

    def ledger(self) -> RedisLedger:
        if self._ledger is None:
            self._ledger = RedisLedger.from_config(self.config.ledger)
        return self._ledger

    def allocation_coordinator(self) -> AllocationCoordinator:
        """Build the allocation coordinator.

        Raises:
            ValueError: If no node name is configured.
            LedgerUnavailable: If the ledger cannot be reached.
        """
        node_name = self.config.require_node_name()
        ledger = self.ledger()
        ledger.ping()
        if self.config.allocation.gpu_count is not None:
            ledger.initialize_pool(self.config.allocation.gpu_count)
        return AllocationCoordinator(
            ledger,
            node_name,
            max_attempts=self.config.allocation.reserve_max_attempts,
            metrics=self.metrics,
            tracer=self.tracer,
        )

    def cache_reconciler(self) -> CacheReconciler:
        """Build the cache reconciler with file-backed plan and status.

        Raises:
            ValueError: If no node name is configured.
        """
        node_name = self.config.require_node_name()
        cache = self.config.cache
        self.config.ensure_directories()
        return CacheReconciler(
            node_name=node_name,
            plan_source=JsonFilePlanSource(cache.plan_path),
            status_sink=JsonFileStatusSink(cache.status_path),
            image_puller=CrictlImagePuller(
                runtime_endpoint=cache.runtime_endpoint,
                timeout=cache.pull_timeout_seconds,
                crictl_path=cache.crictl_path,
            ),
            git_syncer=GitSyncer(
                cache.git_root,
                timeout=cache.git_timeout_seconds,
                git_path=cache.git_path,
            ),
            resync_interval=cache.resync_interval,
        )

    def reconciler_service(self) -> ReconcilerService:
        return ReconcilerService(
            self.cache_reconciler(),
            poll_interval=self.config.cache.poll_interval_seconds,
            metrics=self.metrics,
            tracer=self.tracer,
            logger=self.logger,
        )
