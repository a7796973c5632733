from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from rulesync.config import sanitize_uri
from rulesync.schemas.common import HealthResponse, utc_now
from rulesync.state import get_state

router = APIRouter(tags=["Health"])


class BackendConnectivityResponse(BaseModel):
    """Response model for rules API to repository connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the rules repository answered a ping.")
    backend_uri_sanitized: str = Field(..., description="Repository URI with credentials masked.")
    tenant_label: str = Field(..., description="Label key forced to the caller's tenant id on every rule.")
    tenants: List[str] = Field(default_factory=list, description="Names of the registered tenants.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployments.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/backend",
    response_model=BackendConnectivityResponse,
    summary="Rules backend connectivity check",
    description="Pings the rules repository and reports the (credential-masked) backend URI and tenant registry.",
    operation_id="backend_connectivity_check",
)
def backend_connectivity_check(request: Request) -> BackendConnectivityResponse:
    """Connectivity check endpoint for the rules repository."""
    state = get_state(request.app)
    return BackendConnectivityResponse(
        ok=state.repository.ping(),
        backend_uri_sanitized=sanitize_uri(state.config.mongo_uri),
        tenant_label=state.config.tenant_label,
        tenants=sorted(state.config.tenants),
        timestamp=utc_now().isoformat(),
        meta={},
    )
