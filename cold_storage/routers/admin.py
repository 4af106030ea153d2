from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cold_storage.auth import Principal, Role, require_role
from cold_storage.db import get_db
from cold_storage.dependencies import get_client_ip
from cold_storage.routers.common import commit_mutation
from cold_storage.schemas import SettingUpdate
from cold_storage.services.audit_service import log_audit
from cold_storage.services.ledger_service import recompute_running_balances
from cold_storage.services.reconciliation_service import release_reconciliation_hold
from cold_storage.services.settings_service import set_setting

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_role(Role.ADMIN)


@router.post('/reconciliation/{thock_number:path}/release')
def release_hold(
    thock_number: str,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    entry = commit_mutation(
        db,
        lambda: release_reconciliation_hold(db, thock_number=thock_number, principal_id=principal.id),
    )
    return {'thock_number': entry.thock_number, 'reconciliation_hold': entry.reconciliation_hold}


@router.put('/settings/{key}')
def update_setting(
    key: str,
    payload: SettingUpdate,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    def _apply():
        row = set_setting(db, key=key, value=payload.value, principal_id=principal.id)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='SYSTEM_SETTING_UPDATED',
            ip=get_client_ip(request),
            metadata={'key': row.key, 'value': row.value},
        )
        return row

    row = commit_mutation(db, _apply)
    return {'key': row.key, 'value': row.value}


@router.get('/ledger/{customer_id}/verify')
def verify_ledger(
    customer_id: int,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    mismatched = recompute_running_balances(db, customer_id=customer_id)
    return {'customer_id': customer_id, 'consistent': not mismatched, 'mismatched_entry_ids': mismatched}
