from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from cold_storage.auth import Principal, require_staff
from cold_storage.config import settings
from cold_storage.db import get_db
from cold_storage.dependencies import notifier_dependency
from cold_storage.models import GatePassStatus
from cold_storage.routers.common import commit_mutation
from cold_storage.schemas import GatePassCreate, GatePassDecision, PickupCreate
from cold_storage.services.expiration_service import list_recently_expired, run_expiration_sweep
from cold_storage.services.gate_pass_service import (
    approve_or_reject,
    complete_gate_pass,
    create_gate_pass,
    get_gate_pass,
    list_gate_passes,
    list_pending_gate_passes,
    record_pickup,
    serialize_gate_pass,
)
from cold_storage.services.notification_service import Notifier
from cold_storage.services.pickup_service import list_pickups, serialize_pickup

router = APIRouter(prefix='/gate-passes', tags=['gate-passes'])


def _parse_status(raw: str | None) -> GatePassStatus | None:
    if not raw:
        return None
    try:
        return GatePassStatus(raw.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Unknown gate pass status: {raw}') from exc


@router.post('', status_code=201)
def issue_gate_pass(
    payload: GatePassCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    gate_pass = commit_mutation(
        db,
        lambda: create_gate_pass(
            db,
            customer_id=payload.customer_id,
            thock_number=payload.thock_number,
            requested_quantity=payload.requested_quantity,
            payment_verified=payload.payment_verified,
            payment_amount=payload.payment_amount,
            family_member_id=payload.family_member_id,
            family_member_name=payload.family_member_name,
            remarks=payload.remarks,
            principal_id=principal.id,
        ),
    )
    return serialize_gate_pass(gate_pass)


@router.get('')
def gate_pass_list(
    status: str | None = None,
    customer_id: int | None = None,
    thock_number: str | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    rows = list_gate_passes(
        db,
        status=_parse_status(status),
        customer_id=customer_id,
        thock_number=thock_number,
        limit=limit,
    )
    return [serialize_gate_pass(row) for row in rows]


@router.get('/pending')
def pending_gate_passes(
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return list_pending_gate_passes(db)


@router.get('/expired')
def expired_gate_passes(
    days: int = Query(default=settings.expired_log_days, ge=1, le=365),
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return list_recently_expired(db, days=days)


@router.post('/expire')
def expire_overdue_gate_passes(
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(notifier_dependency),
):
    result = commit_mutation(db, lambda: run_expiration_sweep(db, notifier=notifier))
    return {'expired_count': result.expired_count, 'expired_ids': result.expired_ids}


@router.get('/{gate_pass_id}')
def gate_pass_detail(
    gate_pass_id: int,
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    gate_pass = get_gate_pass(db, gate_pass_id=gate_pass_id)
    payload = serialize_gate_pass(gate_pass)
    payload['pickups'] = [serialize_pickup(row) for row in list_pickups(db, gate_pass_id=gate_pass_id)]
    return payload


@router.post('/{gate_pass_id}/decision')
def decide_gate_pass(
    gate_pass_id: int,
    payload: GatePassDecision,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(notifier_dependency),
):
    gate_pass = commit_mutation(
        db,
        lambda: approve_or_reject(
            db,
            gate_pass_id=gate_pass_id,
            action=payload.action,
            approved_quantity=payload.approved_quantity,
            gate_no=payload.gate_no,
            remarks=payload.remarks,
            approval_expires_at=payload.approval_expires_at,
            principal_id=principal.id,
            notifier=notifier,
        ),
    )
    return serialize_gate_pass(gate_pass)


@router.post('/{gate_pass_id}/pickups', status_code=201)
def add_pickup(
    gate_pass_id: int,
    payload: PickupCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(notifier_dependency),
):
    gate_pass = commit_mutation(
        db,
        lambda: record_pickup(
            db,
            gate_pass_id=gate_pass_id,
            quantity=payload.quantity,
            room_no=payload.room_no,
            floor=payload.floor,
            remarks=payload.remarks,
            principal_id=principal.id,
            notifier=notifier,
        ),
    )
    return serialize_gate_pass(gate_pass)


@router.get('/{gate_pass_id}/pickups')
def pickup_history(
    gate_pass_id: int,
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    get_gate_pass(db, gate_pass_id=gate_pass_id)
    return [serialize_pickup(row) for row in list_pickups(db, gate_pass_id=gate_pass_id)]


@router.post('/{gate_pass_id}/complete')
def finish_gate_pass(
    gate_pass_id: int,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(notifier_dependency),
):
    gate_pass = commit_mutation(
        db,
        lambda: complete_gate_pass(
            db,
            gate_pass_id=gate_pass_id,
            principal_id=principal.id,
            notifier=notifier,
        ),
    )
    return serialize_gate_pass(gate_pass)
