from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cold_storage.auth import STAFF_ROLES, Principal, Role, assert_customer_scope, require_role, require_staff
from cold_storage.db import get_db
from cold_storage.services.allowance_service import get_allowance
from cold_storage.services.inventory_service import get_inventory
from cold_storage.services.ledger_service import PayerRef
from cold_storage.services.pickup_service import pickups_by_thock, serialize_pickup

router = APIRouter(tags=['inventory'])


@router.get('/inventory/{thock_number:path}')
def truck_inventory(
    thock_number: str,
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return get_inventory(db, thock_number=thock_number).as_dict()


@router.get('/pickups')
def truck_pickup_history(
    thock_number: str,
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return [serialize_pickup(row) for row in pickups_by_thock(db, thock_number=thock_number)]


@router.get('/allowance')
def payer_allowance(
    customer_id: int,
    family_member_id: int | None = None,
    principal: Principal = Depends(require_role(*STAFF_ROLES, Role.CUSTOMER)),
    db: Session = Depends(get_db),
):
    assert_customer_scope(principal, customer_id)
    payer = PayerRef(customer_id=customer_id, family_member_id=family_member_id)
    return get_allowance(db, payer).as_dict()
