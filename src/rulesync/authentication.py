"""
Tenant identity carried on the request.

Inbound token validation happens upstream of this service. What this module does is record, per
request, which tenant is being addressed (its name, taken from the URL) and that tenant's opaque id
(looked up in the configured tenant registry). Handlers only read these values back; a request whose
tenant is not registered simply has no tenant id in its context.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Path, Request

from rulesync.state import get_state

_TENANT_KEY = "tenant"
_TENANT_ID_KEY = "tenant_id"


# PUBLIC_INTERFACE
def with_tenant(request: Request, tenant: str) -> None:
    setattr(request.state, _TENANT_KEY, tenant)


# PUBLIC_INTERFACE
def with_tenant_id(request: Request, tenant_id: str) -> None:
    setattr(request.state, _TENANT_ID_KEY, tenant_id)


# PUBLIC_INTERFACE
def get_tenant(request: Request) -> Optional[str]:
    """Return the tenant name of the request, or None when it was never resolved."""
    value = getattr(request.state, _TENANT_KEY, None)
    return value or None


# PUBLIC_INTERFACE
def get_tenant_id(request: Request) -> Optional[str]:
    """Return the tenant id of the request, or None when it was never resolved."""
    value = getattr(request.state, _TENANT_ID_KEY, None)
    return value or None


# PUBLIC_INTERFACE
def resolve_tenant(request: Request, tenant: str = Path(..., description="Tenant name.")) -> None:
    """Router dependency: populate the tenant context from the path and the tenant registry."""
    with_tenant(request, tenant)
    tenant_id = get_state(request.app).config.tenants.get(tenant)
    if tenant_id:
        with_tenant_id(request, tenant_id)
