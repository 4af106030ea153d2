from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    CUSTOMER = "CUSTOMER"


STAFF_ROLES = (Role.ADMIN, Role.EMPLOYEE)


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    customer_id: int | None
    active: bool

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not principal.active:
        raise _forbidden("Account disabled")
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise _forbidden("Role not permitted")
        return principal

    return _dep


require_staff = require_role(*STAFF_ROLES)


def require_customer(principal: Principal = Depends(require_role(Role.CUSTOMER))) -> Principal:
    # Portal accounts are always bound to exactly one customer.
    if principal.customer_id is None:
        raise _forbidden("Portal account has no customer")
    return principal


def assert_customer_scope(principal: Principal, target_customer_id: int) -> None:
    if principal.is_staff:
        return
    if principal.customer_id != target_customer_id:
        raise _forbidden("Customer scope violation")
