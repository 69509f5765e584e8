"""Inbound adapters for the node agent.

Provides the REST API adapter for GPU allocation.
"""

from gpu_node_agent.adapters.inbound.rest_api import create_app

__all__ = ["create_app"]
