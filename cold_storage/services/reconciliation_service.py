from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cold_storage.errors import ConsistencyError, ValidationError
from cold_storage.models import Entry, GatePass, GatePassPickup
from cold_storage.services.audit_service import log_audit
from cold_storage.services.entry_service import get_entry_by_thock
from cold_storage.services.inventory_service import total_stored

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_not_on_hold(entry: Entry) -> None:
    if entry.reconciliation_hold:
        raise ConsistencyError(
            f'Truck {entry.thock_number} is on reconciliation hold: {entry.hold_reason or "pending review"}',
            thock_number=entry.thock_number,
        )


def find_invariant_violations(db: Session, *, entry: Entry) -> list[str]:
    thock_number = entry.thock_number
    problems: list[str] = []

    picked_by_pass = dict(
        db.execute(
            select(GatePassPickup.gate_pass_id, func.sum(GatePassPickup.pickup_quantity))
            .join(GatePass, GatePass.id == GatePassPickup.gate_pass_id)
            .where(GatePass.thock_number == thock_number)
            .group_by(GatePassPickup.gate_pass_id)
        ).all()
    )
    passes = db.execute(
        select(
            GatePass.id,
            GatePass.requested_quantity,
            GatePass.approved_quantity,
            GatePass.total_picked_up,
        ).where(GatePass.thock_number == thock_number)
    ).all()

    total_picked = 0
    for row in passes:
        recorded = int(picked_by_pass.get(row.id) or 0)
        total_picked += recorded
        if recorded != row.total_picked_up:
            problems.append(f'gate pass {row.id} records {row.total_picked_up} picked but pickups sum to {recorded}')
        authorized = row.approved_quantity if row.approved_quantity is not None else row.requested_quantity
        if row.total_picked_up > authorized:
            problems.append(f'gate pass {row.id} picked {row.total_picked_up} over authorized {authorized}')

    stored = total_stored(db, thock_number=thock_number)
    if total_picked > stored:
        problems.append(f'picked {total_picked} exceeds stored {stored}')
    if stored > entry.expected_quantity:
        problems.append(f'stored {stored} exceeds declared {entry.expected_quantity}')
    return problems


def verify_truck_invariants(db: Session, *, entry: Entry) -> None:
    problems = find_invariant_violations(db, entry=entry)
    if problems:
        message = f'Truck {entry.thock_number} failed reconciliation: ' + '; '.join(problems)
        logger.critical(message)
        raise ConsistencyError(message, thock_number=entry.thock_number)


def place_reconciliation_hold(db: Session, *, thock_number: str, reason: str) -> Entry:
    """Freeze a truck for manual review. Run in a fresh transaction after the failed one rolled back."""
    entry = get_entry_by_thock(db, thock_number, lock=True)
    if not entry.reconciliation_hold:
        entry.reconciliation_hold = True
        entry.hold_reason = reason[:2000]
        entry.hold_placed_at = _now()
        entry.updated_at = _now()
        log_audit(
            db,
            actor_principal_id=None,
            action='RECONCILIATION_HOLD_PLACED',
            thock_number=entry.thock_number,
            metadata={'reason': entry.hold_reason},
        )
        db.flush()
        logger.critical('Truck %s placed on reconciliation hold: %s', thock_number, reason)
    return entry


def release_reconciliation_hold(db: Session, *, thock_number: str, principal_id: int) -> Entry:
    entry = get_entry_by_thock(db, thock_number, lock=True)
    if not entry.reconciliation_hold:
        raise ValidationError(f'Truck {thock_number} is not on hold')
    problems = find_invariant_violations(db, entry=entry)
    if problems:
        raise ConsistencyError(
            f'Truck {thock_number} still fails reconciliation: ' + '; '.join(problems),
            thock_number=thock_number,
        )
    log_audit(
        db,
        actor_principal_id=principal_id,
        action='RECONCILIATION_HOLD_RELEASED',
        thock_number=entry.thock_number,
        metadata={'previous_reason': entry.hold_reason},
    )
    entry.reconciliation_hold = False
    entry.hold_reason = None
    entry.hold_placed_at = None
    entry.updated_at = _now()
    db.flush()
    logger.info('Reconciliation hold on truck %s released by principal %s', thock_number, principal_id)
    return entry
