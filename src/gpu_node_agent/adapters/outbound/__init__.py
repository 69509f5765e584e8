"""Outbound adapters - Implementations of outbound port interfaces.

Provides the Redis ledger, subprocess-backed cache tools, file-based plan
source and status sink, and in-memory mocks for testing and development.
"""

from gpu_node_agent.adapters.outbound.commands import CommandFailed, run_command
from gpu_node_agent.adapters.outbound.file_plan_source import JsonFilePlanSource
from gpu_node_agent.adapters.outbound.file_status_sink import JsonFileStatusSink
from gpu_node_agent.adapters.outbound.git_syncer import GitSyncer
from gpu_node_agent.adapters.outbound.image_puller import (
    CrictlImagePuller,
    detect_runtime_endpoint,
)
from gpu_node_agent.adapters.outbound.mock_cache_tools import (
    MockGitSyncer,
    MockImagePuller,
    MockSyncCall,
)
from gpu_node_agent.adapters.outbound.mock_plan_store import (
    InMemoryPlanSource,
    InMemoryStatusSink,
)
from gpu_node_agent.adapters.outbound.redis_ledger import RedisLedger

__all__ = [
    # Ledger
    "RedisLedger",
    # Cache tools
    "CommandFailed",
    "run_command",
    "CrictlImagePuller",
    "detect_runtime_endpoint",
    "GitSyncer",
    # Plan and status
    "JsonFilePlanSource",
    "JsonFileStatusSink",
    # Mocks
    "MockImagePuller",
    "MockGitSyncer",
    "MockSyncCall",
    "InMemoryPlanSource",
    "InMemoryStatusSink",
]
