"""Request dependencies: the shared engine and the caller's identity."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, Request

from production_kernel.domain.values import ActorContext
from production_kernel.exceptions import ValidationError
from production_kernel.services.production_engine import ProductionEngine


def get_engine(request: Request) -> ProductionEngine:
    return request.app.state.engine


def _uuid_header(value: str | None, header: str) -> UUID:
    if not value:
        raise ValidationError(f"{header} header is required", field=header)
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"{header} header must be a UUID", field=header)


def get_actor(
    x_tenant_id: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """
    Identity supplied by the upstream identity layer.

    The engine trusts these headers as given; authentication happens before
    requests reach this service.
    """
    return ActorContext(
        tenant_id=_uuid_header(x_tenant_id, "X-Tenant-ID"),
        actor_id=_uuid_header(x_actor_id, "X-Actor-ID"),
        role=x_actor_role,
    )


Engine = Annotated[ProductionEngine, Depends(get_engine)]
Actor = Annotated[ActorContext, Depends(get_actor)]
