"""GPU allocation HTTP service entry point."""

from __future__ import annotations

import sys

import uvicorn

from gpu_node_agent.adapters.inbound.rest_api import create_app
from gpu_node_agent.infrastructure.container import Container
from gpu_node_agent.infrastructure.logging import get_logger


def main() -> None:
    """Console entry point: serve the allocation API with uvicorn."""
    try:
        container = Container.create()
        coordinator = container.allocation_coordinator()
    except Exception as exc:
        get_logger(__name__).error("gpu_allocator_startup_failed", error=str(exc))
        sys.exit(1)

    server = container.config.server
    container.logger.info(
        "gpu_allocator_starting",
        node=coordinator.node_name,
        host=server.host,
        port=server.port,
    )
    uvicorn.run(
        create_app(coordinator),
        host=server.host,
        port=server.port,
        log_level=container.config.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
