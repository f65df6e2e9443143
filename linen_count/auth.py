from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from linen_count.errors import Forbidden
from linen_count.models import StaffRole
from linen_count.permissions import Authorizer, Capability


@dataclass
class Principal:
    id: int
    username: str
    display_name: str
    role: StaffRole
    location_id: int | None
    active: bool


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def require_capability(capability: Capability):
    def _dep(
        principal: Principal = Depends(get_current_principal),
        authorizer: Authorizer = Depends(get_authorizer),
    ) -> Principal:
        if not authorizer.can(principal, capability):
            raise Forbidden()
        return principal

    return _dep


def assert_location_scope(principal: Principal, target_location_id: int) -> None:
    if principal.location_id is None:
        return
    if principal.location_id != target_location_id:
        raise Forbidden('Not allowed to access this location')
