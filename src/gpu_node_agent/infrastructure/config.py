"""Configuration management for the node agent."""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeConfig(BaseModel):
    """Node identity configuration."""

    name: str = Field(
        default_factory=lambda: os.environ.get("NODE_NAME", ""),
        description="Node name reported in responses and status objects",
    )


class LedgerConfig(BaseModel):
    """Redis ledger configuration."""

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    db: int = Field(default=0, ge=0, description="Redis database index")
    socket_path: Path | None = Field(default=None, description="Unix socket; overrides host/port")
    socket_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-command timeout")
    cluster_prefix: str = Field(default="canhazgpu:k8s:", description="Cluster-domain key prefix")
    host_prefix: str = Field(default="canhazgpu:", description="Host-domain key prefix")


class AllocationConfig(BaseModel):
    """GPU allocation configuration."""

    gpu_count: int | None = Field(default=None, ge=0, description="Pool size to record if absent")
    reserve_max_attempts: int = Field(default=3, ge=1, description="Attempts on reservation conflicts")


class CacheConfig(BaseModel):
    """Artifact cache configuration."""

    cache_root: Path = Field(default=Path("/var/cache/canhazgpu"), description="Cache root dir")
    git_subdir: str = Field(default="git", description="Git checkouts dir under cache root")
    plan_path: Path = Field(default=Path("/etc/canhazgpu/cache-plan.json"), description="Plan file")
    status_path: Path = Field(
        default=Path("/var/lib/canhazgpu/node-cache-status.json"),
        description="Published node status file",
    )
    runtime_endpoint: str | None = Field(default=None, description="CRI endpoint; detected from known sockets if unset")
    crictl_path: str = Field(default="crictl", description="crictl binary")
    git_path: str = Field(default="git", description="git binary")
    pull_timeout_seconds: float = Field(default=600.0, gt=0, description="Image pull timeout")
    git_timeout_seconds: float = Field(default=600.0, gt=0, description="Git command timeout")
    resync_interval_seconds: float = Field(default=3600.0, gt=0, description="Full pass cadence")
    poll_interval_seconds: float = Field(default=30.0, gt=0, description="Reconcile loop period")

    @property
    def git_root(self) -> Path:
        return self.cache_root / self.git_subdir

    @property
    def resync_interval(self) -> timedelta:
        return timedelta(seconds=self.resync_interval_seconds)


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8082, ge=1, le=65535, description="Allocation API port")
    metrics_port: int = Field(default=9102, ge=1, le=65535, description="Reconciler metrics port")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    otel_endpoint: str | None = Field(default=None)
    otel_service_name: str = Field(default="gpu_node_agent")
    environment: str = Field(default="development")


class Config(BaseSettings):
    """Main configuration for the node agent."""

    model_config = SettingsConfigDict(
        env_prefix="GPU_NODE_AGENT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    node: NodeConfig = Field(default_factory=NodeConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def require_node_name(self) -> str:
        """Return the node name.

        Raises:
            ValueError: If no node name is configured.
        """
        if not self.node.name:
            raise ValueError(
                "node name is required (set GPU_NODE_AGENT_NODE__NAME or NODE_NAME)"
            )
        return self.node.name

    def ensure_directories(self) -> None:
        """Ensure cache directories exist."""
        self.cache.git_root.mkdir(parents=True, exist_ok=True)
        self.cache.status_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
