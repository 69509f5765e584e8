"""FastAPI REST adapter for GPU allocation.

Provides the per-node HTTP endpoints the cluster orchestration layer calls
to reserve and release GPUs for resource claims.

Usage:
    from gpu_node_agent.adapters.inbound.rest_api import create_app

    app = create_app(coordinator)
    # Run with: uvicorn module:app --host 0.0.0.0 --port 8082

References:
    - ports/inbound/api.py (AllocationAPI interface)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from gpu_node_agent import __version__
from gpu_node_agent.domain.errors import (
    AllocationError,
    LedgerError,
    LedgerUnavailable,
)
from gpu_node_agent.ports.inbound.api import AllocationAPI

logger = logging.getLogger(__name__)


# Pydantic models for request/response serialization


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AllocateRequest(_CamelModel):
    """Request to reserve GPUs for a claim."""

    claim_id: str = Field(..., alias="claimId", min_length=1, description="Owning claim")
    gpu_count: int = Field(..., alias="gpuCount", ge=0, description="GPUs to reserve")
    gpu_ids: Optional[list[int]] = Field(
        default=None, alias="gpuIds", description="Specific GPUs; overrides gpuCount"
    )
    namespace: str = Field(default="", description="Namespace of the consuming pod")
    pod_name: str = Field(default="", alias="podName", description="Consuming pod")


class AllocateResponse(_CamelModel):
    success: bool
    allocated_gpus: list[int] = Field(default_factory=list, alias="allocatedGPUs")
    node_name: str = Field(default="", alias="nodeName")
    error: Optional[str] = None


class ClaimRequest(_CamelModel):
    """Request naming a claim."""

    claim_id: str = Field(..., alias="claimId", min_length=1)


class DeallocateResponse(_CamelModel):
    success: bool
    error: Optional[str] = None


class HeartbeatResponse(_CamelModel):
    success: bool
    updated_gpus: int = Field(default=0, alias="updatedGPUs")
    error: Optional[str] = None


class AllocatedGPUModel(_CamelModel):
    id: int
    claim_id: str = Field(..., alias="claimId")
    pod_name: str = Field(default="", alias="podName")
    namespace: str = ""


class NodeStatusResponse(_CamelModel):
    node_name: str = Field(..., alias="nodeName")
    total_gpus: int = Field(..., alias="totalGPUs")
    available_gpus: list[int] = Field(default_factory=list, alias="availableGPUs")
    allocated_gpus: list[AllocatedGPUModel] = Field(default_factory=list, alias="allocatedGPUs")


def _json(model: BaseModel, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(by_alias=True, exclude_none=True),
    )


def create_app(coordinator: AllocationAPI) -> FastAPI:
    """Create FastAPI application with GPU allocation endpoints.

    Args:
        coordinator: AllocationCoordinator instance.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="GPU Node Agent",
        description="Per-node GPU allocation against the shared ledger",
        version=__version__,
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if isinstance(exc, LedgerUnavailable)
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=code, content={"success": False, "error": str(exc)})

    @app.post("/allocate", response_model=AllocateResponse, tags=["Allocation"])
    def allocate(request: AllocateRequest):
        """Reserve GPUs for a claim, all or nothing."""
        logger.info(
            f"Allocation request for claim {request.claim_id}: "
            f"count={request.gpu_count} ids={request.gpu_ids}"
        )
        try:
            allocated = coordinator.reserve_gpus_for_claim(
                request.claim_id,
                request.gpu_count,
                gpu_ids=request.gpu_ids,
                pod_name=request.pod_name,
                namespace=request.namespace,
            )
        except AllocationError as exc:
            logger.warning(f"Allocation for claim {request.claim_id} failed: {exc}")
            return _json(
                AllocateResponse(success=False, node_name=coordinator.node_name, error=str(exc)),
                status.HTTP_409_CONFLICT,
            )
        except ValueError as exc:
            return _json(
                AllocateResponse(success=False, node_name=coordinator.node_name, error=str(exc)),
                status.HTTP_400_BAD_REQUEST,
            )
        return _json(
            AllocateResponse(success=True, allocated_gpus=allocated, node_name=coordinator.node_name)
        )

    @app.post("/deallocate", response_model=DeallocateResponse, tags=["Allocation"])
    def deallocate(request: ClaimRequest):
        """Release every GPU held by a claim."""
        released = coordinator.release_gpus_for_claim(request.claim_id)
        logger.info(f"Deallocated claim {request.claim_id}: released {released}")
        return _json(DeallocateResponse(success=True))

    @app.post("/heartbeat", response_model=HeartbeatResponse, tags=["Allocation"])
    def heartbeat(request: ClaimRequest):
        """Refresh heartbeats on a claim's GPUs."""
        updated = coordinator.update_heartbeat(request.claim_id)
        return _json(HeartbeatResponse(success=True, updated_gpus=updated))

    @app.get("/status", response_model=NodeStatusResponse, tags=["System"])
    def node_status():
        """Report total, available and allocated GPUs on this node."""
        node = coordinator.get_node_status()
        return _json(
            NodeStatusResponse(
                node_name=node.node_name,
                total_gpus=node.total_gpus,
                available_gpus=node.available_gpus,
                allocated_gpus=[
                    AllocatedGPUModel(
                        id=allocation.gpu_id,
                        claim_id=allocation.claim_id,
                        pod_name=allocation.pod_name,
                        namespace=allocation.namespace,
                    )
                    for allocation in node.allocated_gpus
                ],
            )
        )

    @app.get("/health", response_class=PlainTextResponse, tags=["System"])
    def health():
        """200 OK while the ledger is reachable, else 503."""
        if not coordinator.is_healthy():
            return PlainTextResponse(
                "Redis connection failed", status_code=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        return PlainTextResponse("OK")

    @app.get("/metrics", tags=["System"])
    def metrics():
        """Prometheus text exposition."""
        registry_holder = getattr(coordinator, "metrics", None)
        registry = registry_holder.registry if registry_holder is not None else REGISTRY
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app
