"""Control-plane context carried by every mutating request."""

from typing import Optional
from pydantic import BaseModel, Field


class ControlPlaneContext(BaseModel):
    """Who is acting, for which tenant, under which trace."""
    trace_id: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    actor_role: Optional[str] = None
    purpose: Optional[str] = None
    policy_version: Optional[str] = None
