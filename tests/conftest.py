"""Pytest configuration and shared fixtures for node agent tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import fakeredis
import pytest
from prometheus_client import CollectorRegistry

from gpu_node_agent.adapters.outbound.mock_cache_tools import MockGitSyncer, MockImagePuller
from gpu_node_agent.adapters.outbound.mock_plan_store import InMemoryPlanSource, InMemoryStatusSink
from gpu_node_agent.adapters.outbound.redis_ledger import RedisLedger
from gpu_node_agent.domain.entities.gpu_slot import GPUSlotState
from gpu_node_agent.domain.services.allocator import GPUAllocator
from gpu_node_agent.domain.services.cache_reconciler import CacheReconciler
from gpu_node_agent.infrastructure.config import CacheConfig, Config, NodeConfig
from gpu_node_agent.infrastructure.container import Container
from gpu_node_agent.infrastructure.metrics import MetricsRegistry

NODE_NAME = "gpu-node-1"
POOL_SIZE = 4


@pytest.fixture(autouse=True)
def reset_container():
    """Reset the DI container before each test."""
    Container.reset()
    yield
    Container.reset()


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Provide a test configuration rooted in a temp directory."""
    return Config(
        node=NodeConfig(name=NODE_NAME),
        cache=CacheConfig(
            cache_root=tmp_path / "cache",
            plan_path=tmp_path / "plan.json",
            status_path=tmp_path / "status" / "node-cache-status.json",
            runtime_endpoint="unix:///run/containerd/containerd.sock",
        ),
    )


@pytest.fixture
def metrics() -> MetricsRegistry:
    """Metrics on a private registry so tests do not collide."""
    return MetricsRegistry(CollectorRegistry())


# =============================================================================
# Ledger fixtures
# =============================================================================


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def ledger(redis_client) -> RedisLedger:
    """Ledger with a pool of POOL_SIZE GPUs."""
    ledger = RedisLedger(redis_client)
    ledger.initialize_pool(POOL_SIZE)
    return ledger


@pytest.fixture
def allocator(ledger) -> GPUAllocator:
    return GPUAllocator(ledger, NODE_NAME, clock=lambda: 1_700_000_000.0)


@pytest.fixture
def set_host_owner(redis_client, ledger):
    """Mark a GPU as taken by the legacy host client."""
    def _set(gpu_id: int, user: str = "alice") -> None:
        state = GPUSlotState(owner=user, slot_type="manual", acquired_at=1_600_000_000.0)
        redis_client.set(ledger.host_slot_key(gpu_id), state.to_json())
    return _set


# =============================================================================
# Cache reconciler fixtures
# =============================================================================


class FakeClock:
    """Settable clock returning timezone-aware datetimes."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def image_puller() -> MockImagePuller:
    return MockImagePuller()


@pytest.fixture
def git_syncer() -> MockGitSyncer:
    return MockGitSyncer()


@pytest.fixture
def status_sink() -> InMemoryStatusSink:
    return InMemoryStatusSink()


@pytest.fixture
def cache_plan() -> dict:
    """A plan with two images and two git repos."""
    return {
        "metadata": {"name": "default", "generation": 1, "annotations": {}},
        "spec": {
            "items": [
                {"type": "image", "name": "base", "image": {"ref": "registry.local/base:1.0"}},
                {"type": "image", "name": "cuda", "image": {"ref": "registry.local/cuda:12.4"}},
                {
                    "type": "gitRepo",
                    "name": "tools",
                    "gitRepo": {"url": "https://git.local/tools.git", "branch": "main"},
                },
                {
                    "type": "gitRepo",
                    "name": "models",
                    "gitRepo": {"url": "https://git.local/models.git", "branch": "release"},
                },
            ]
        },
    }


@pytest.fixture
def plan_source(cache_plan) -> InMemoryPlanSource:
    return InMemoryPlanSource(cache_plan)


@pytest.fixture
def reconciler(plan_source, status_sink, image_puller, git_syncer, clock) -> CacheReconciler:
    return CacheReconciler(
        node_name=NODE_NAME,
        plan_source=plan_source,
        status_sink=status_sink,
        image_puller=image_puller,
        git_syncer=git_syncer,
        clock=clock,
    )


# Pytest markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "concurrency: mark test as exercising concurrent writers")
