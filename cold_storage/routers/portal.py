from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cold_storage.auth import Principal, require_customer
from cold_storage.db import get_db
from cold_storage.routers.common import commit_mutation
from cold_storage.schemas import PortalGatePassCreate
from cold_storage.services.allowance_service import compute_allowance, list_truck_positions
from cold_storage.services.gate_pass_service import create_customer_gate_pass, list_gate_passes, serialize_gate_pass
from cold_storage.services.ledger_service import PayerRef, get_balance

router = APIRouter(prefix='/portal', tags=['portal'])


@router.post('/gate-passes', status_code=201)
def request_gate_pass(
    payload: PortalGatePassCreate,
    principal: Principal = Depends(require_customer),
    db: Session = Depends(get_db),
):
    gate_pass = commit_mutation(
        db,
        lambda: create_customer_gate_pass(
            db,
            customer_id=principal.customer_id,
            thock_number=payload.thock_number,
            requested_quantity=payload.requested_quantity,
            family_member_id=payload.family_member_id,
            family_member_name=payload.family_member_name,
            remarks=payload.remarks,
            principal_id=principal.id,
        ),
    )
    return serialize_gate_pass(gate_pass)


@router.get('/dashboard')
def dashboard(
    principal: Principal = Depends(require_customer),
    db: Session = Depends(get_db),
):
    payer = PayerRef(customer_id=principal.customer_id)
    return {
        'customer_id': principal.customer_id,
        'balance': get_balance(db, payer),
        'allowance': compute_allowance(db, payer).as_dict(),
        'trucks': list_truck_positions(db, customer_id=principal.customer_id),
        'gate_passes': [
            serialize_gate_pass(row)
            for row in list_gate_passes(db, customer_id=principal.customer_id, limit=50)
        ],
    }
