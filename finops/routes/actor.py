"""Resolve the authenticated actor for a request.

Authentication happens upstream; the identity layer forwards the caller's
tenant, id and role in headers, and this module turns them into an Actor.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request

from finops.models import Actor


def get_actor(
    request: Request,
    x_tenant_id: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """Build the Actor from identity headers, rejecting incomplete ones."""
    if not x_tenant_id or not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity headers")
    return Actor(
        actor_id=x_actor_id,
        tenant_id=x_tenant_id,
        role=x_actor_role.strip().lower(),
        source_ip=request.client.host if request.client else "",
    )
