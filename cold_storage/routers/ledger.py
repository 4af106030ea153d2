from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cold_storage.auth import STAFF_ROLES, Principal, Role, assert_customer_scope, require_role, require_staff
from cold_storage.db import get_db
from cold_storage.routers.common import commit_mutation
from cold_storage.schemas import LedgerEntryCreate, OnlinePaymentConfirmation
from cold_storage.services.entry_service import get_customer
from cold_storage.services.ledger_service import (
    PayerRef,
    create_ledger_entry,
    get_balance,
    get_credits_by_family_member,
    get_payment_history,
    get_summary,
    list_debtors,
    record_online_payment,
    serialize_ledger_entry,
)

router = APIRouter(prefix='/ledger', tags=['ledger'])

ledger_reader = require_role(*STAFF_ROLES, Role.CUSTOMER)


def _payer(db: Session, principal: Principal, customer_id: int, family_member_id: int | None) -> PayerRef:
    assert_customer_scope(principal, customer_id)
    get_customer(db, customer_id)
    return PayerRef(customer_id=customer_id, family_member_id=family_member_id)


@router.post('/entries', status_code=201)
def add_ledger_entry(
    payload: LedgerEntryCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    entry = commit_mutation(
        db,
        lambda: create_ledger_entry(
            db,
            customer_id=payload.customer_id,
            entry_type=payload.entry_type,
            debit=payload.debit,
            credit=payload.credit,
            family_member_id=payload.family_member_id,
            family_member_name=payload.family_member_name,
            description=payload.description,
            reference_id=payload.reference_id,
            reference_type=payload.reference_type,
            notes=payload.notes,
            principal_id=principal.id,
        ),
    )
    return serialize_ledger_entry(entry)


@router.post('/online-payments')
def confirm_online_payment(
    payload: OnlinePaymentConfirmation,
    _: Principal = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    entry, created = commit_mutation(
        db,
        lambda: record_online_payment(
            db,
            customer_id=payload.customer_id,
            amount=payload.amount,
            external_reference=payload.external_reference,
            family_member_id=payload.family_member_id,
            description=payload.description,
            notes=payload.notes,
        ),
    )
    return {'created': created, 'entry': serialize_ledger_entry(entry)}


@router.get('/debtors')
def debtors(
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return list_debtors(db)


@router.get('/{customer_id}/balance')
def balance(
    customer_id: int,
    family_member_id: int | None = None,
    principal: Principal = Depends(ledger_reader),
    db: Session = Depends(get_db),
):
    payer = _payer(db, principal, customer_id, family_member_id)
    return {
        'customer_id': customer_id,
        'family_member_id': family_member_id,
        'balance': get_balance(db, payer),
    }


@router.get('/{customer_id}/summary')
def summary(
    customer_id: int,
    family_member_id: int | None = None,
    principal: Principal = Depends(ledger_reader),
    db: Session = Depends(get_db),
):
    return asdict(get_summary(db, _payer(db, principal, customer_id, family_member_id)))


@router.get('/{customer_id}/payments')
def payments(
    customer_id: int,
    family_member_id: int | None = None,
    limit: int = Query(default=20, ge=1, le=500),
    principal: Principal = Depends(ledger_reader),
    db: Session = Depends(get_db),
):
    payer = _payer(db, principal, customer_id, family_member_id)
    return [serialize_ledger_entry(row) for row in get_payment_history(db, payer, limit=limit)]


@router.get('/{customer_id}/family-credits')
def family_credits(
    customer_id: int,
    principal: Principal = Depends(ledger_reader),
    db: Session = Depends(get_db),
):
    _payer(db, principal, customer_id, None)
    return get_credits_by_family_member(db, customer_id=customer_id)
