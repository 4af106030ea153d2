from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from cold_storage.config import settings
from cold_storage.errors import (
    ExpiredError,
    InsufficientAllowanceError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from cold_storage.models import (
    OPEN_GATE_PASS_STATUSES,
    Entry,
    GatePass,
    GatePassSource,
    GatePassStatus,
)
from cold_storage.services.allowance_service import compute_allowance
from cold_storage.services.audit_service import log_audit
from cold_storage.services.entry_service import get_entry_by_thock, get_family_member
from cold_storage.services.inventory_service import InventorySnapshot, compute_inventory
from cold_storage.services.ledger_service import PayerRef
from cold_storage.services.notification_service import Notifier, queue_gate_pass_event
from cold_storage.services.pickup_service import append_pickup, resolve_pickup_slot, validate_explicit_slot
from cold_storage.services.reconciliation_service import ensure_not_on_hold, verify_truck_invariants
from cold_storage.services.sort_utils import as_utc

logger = logging.getLogger(__name__)

APPROVE = 'approve'
REJECT = 'reject'

PICKUP_STATUSES = (GatePassStatus.APPROVED, GatePassStatus.PARTIALLY_COMPLETED)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    clean = value.strip()
    return clean or None


def _require_positive(quantity: int, *, field: str) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(f'{field} must be greater than zero')


def _require_stock(requested: int, inventory: InventorySnapshot) -> None:
    if requested > inventory.effective_available:
        raise InsufficientStockError(
            f'Insufficient inventory for truck {inventory.thock_number}: requested {requested}, '
            f'available {inventory.effective_available} (current: {inventory.current_inventory}, '
            f'pending in gate passes: {inventory.pending_in_open_passes})',
            requested=requested,
            available=inventory.effective_available,
        )


def _parse_payment_amount(value) -> Decimal | None:
    if value is None or value == '':
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError('Invalid payment amount') from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError('Payment amount cannot be negative')
    return amount.quantize(Decimal('0.01'))


def _resolve_member_name(
    db: Session,
    *,
    customer_id: int,
    family_member_id: int | None,
    family_member_name: str | None,
) -> str | None:
    if family_member_id is None:
        return _clean_text(family_member_name)
    member = get_family_member(db, customer_id=customer_id, family_member_id=family_member_id)
    return _clean_text(family_member_name) or member.name


def _load_gate_pass(db: Session, gate_pass_id: int, *, lock: bool = False) -> GatePass:
    query = select(GatePass).where(GatePass.id == gate_pass_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    gate_pass = db.execute(query).scalar_one_or_none()
    if not gate_pass:
        raise NotFoundError(f'Gate pass {gate_pass_id} not found')
    return gate_pass


def _lock_for_mutation(db: Session, gate_pass_id: int) -> tuple[GatePass, Entry]:
    # Truck row first, then the pass row: every writer takes the locks in this order.
    thock_number = db.execute(
        select(GatePass.thock_number).where(GatePass.id == gate_pass_id)
    ).scalar_one_or_none()
    if thock_number is None:
        raise NotFoundError(f'Gate pass {gate_pass_id} not found')
    entry = get_entry_by_thock(db, thock_number, lock=True)
    ensure_not_on_hold(entry)
    return _load_gate_pass(db, gate_pass_id, lock=True), entry


def active_deadline(gate_pass: GatePass) -> datetime | None:
    if gate_pass.status == GatePassStatus.PENDING:
        return as_utc(gate_pass.expires_at)
    if gate_pass.status in PICKUP_STATUSES:
        return as_utc(gate_pass.approval_expires_at)
    return None


def is_overdue(gate_pass: GatePass, now: datetime) -> bool:
    deadline = active_deadline(gate_pass)
    return deadline is not None and now > deadline


def expire_gate_pass(
    db: Session,
    gate_pass: GatePass,
    *,
    now: datetime,
    reason: str,
    notifier: Notifier | None = None,
) -> GatePass:
    if gate_pass.status not in OPEN_GATE_PASS_STATUSES:
        raise InvalidStateTransitionError(
            f'Gate pass {gate_pass.id} is {gate_pass.status.value} and cannot expire'
        )
    previous = gate_pass.status
    gate_pass.status = GatePassStatus.EXPIRED
    gate_pass.final_approved_quantity = gate_pass.total_picked_up
    gate_pass.updated_at = now
    db.flush()

    log_audit(
        db,
        actor_principal_id=None,
        action='GATE_PASS_EXPIRED',
        gate_pass_id=gate_pass.id,
        thock_number=gate_pass.thock_number,
        metadata={
            'previous_status': previous.value,
            'reason': reason,
            'final_approved_quantity': gate_pass.final_approved_quantity,
            'released_quantity': gate_pass.authorized_quantity - gate_pass.total_picked_up,
        },
    )
    queue_gate_pass_event(db, notifier, 'expired', gate_pass)
    logger.info('Gate pass %s expired from %s: %s', gate_pass.id, previous.value, reason)
    return gate_pass


def _enforce_deadline(db: Session, gate_pass: GatePass, *, now: datetime, notifier: Notifier | None) -> None:
    if not is_overdue(gate_pass, now):
        return
    if gate_pass.status == GatePassStatus.PENDING:
        reason = f'Not approved within {settings.gate_pass_approval_hours} hours'
        message = f'Gate pass {gate_pass.id} has expired - not approved in time'
    else:
        reason = 'Pickup window closed'
        message = f'Gate pass {gate_pass.id} has expired - pickup window closed'
    expire_gate_pass(db, gate_pass, now=now, reason=reason, notifier=notifier)
    raise ExpiredError(message, gate_pass_id=gate_pass.id)


def _new_gate_pass(
    db: Session,
    *,
    entry: Entry,
    customer_id: int,
    requested_quantity: int,
    family_member_id: int | None,
    family_member_name: str | None,
    remarks: str | None,
    source: GatePassSource,
    now: datetime,
    payment_verified: bool,
    payment_amount: Decimal | None,
    principal_id: int | None,
) -> GatePass:
    gate_pass = GatePass(
        customer_id=customer_id,
        thock_number=entry.thock_number,
        entry_id=entry.id,
        family_member_id=family_member_id,
        family_member_name=family_member_name,
        requested_quantity=requested_quantity,
        total_picked_up=0,
        status=GatePassStatus.PENDING,
        payment_verified=payment_verified,
        payment_amount=payment_amount,
        request_source=source,
        issued_by_principal_id=principal_id if source == GatePassSource.EMPLOYEE else None,
        created_by_customer_id=customer_id if source == GatePassSource.CUSTOMER_PORTAL else None,
        issued_at=now,
        expires_at=now + timedelta(hours=settings.gate_pass_approval_hours),
        remarks=_clean_text(remarks),
        created_at=now,
        updated_at=now,
    )
    db.add(gate_pass)
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='GATE_PASS_ISSUED',
        gate_pass_id=gate_pass.id,
        thock_number=entry.thock_number,
        metadata={
            'requested_quantity': requested_quantity,
            'request_source': source.value,
            'note': f'Gate pass issued for {requested_quantity} items',
        },
    )
    logger.info(
        'Gate pass %s issued for truck %s: %s items (%s)',
        gate_pass.id,
        entry.thock_number,
        requested_quantity,
        source.value,
    )
    return gate_pass


def create_gate_pass(
    db: Session,
    *,
    customer_id: int,
    thock_number: str,
    requested_quantity: int,
    payment_verified: bool,
    payment_amount=None,
    family_member_id: int | None = None,
    family_member_name: str | None = None,
    remarks: str | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
) -> GatePass:
    """Employee-issued withdrawal request. Payment must be confirmed at the counter."""
    _require_positive(requested_quantity, field='Requested quantity')
    if not payment_verified:
        raise ValidationError('Payment must be verified before issuing gate pass')
    amount = _parse_payment_amount(payment_amount)
    now = now or _now()

    entry = get_entry_by_thock(db, thock_number, lock=True)
    ensure_not_on_hold(entry)
    if entry.customer_id != customer_id:
        raise ValidationError(f'Truck {entry.thock_number} does not belong to customer {customer_id}')
    member_name = _resolve_member_name(
        db,
        customer_id=customer_id,
        family_member_id=family_member_id,
        family_member_name=family_member_name,
    )

    _require_stock(requested_quantity, compute_inventory(db, thock_number=entry.thock_number))

    return _new_gate_pass(
        db,
        entry=entry,
        customer_id=customer_id,
        requested_quantity=requested_quantity,
        family_member_id=family_member_id,
        family_member_name=member_name,
        remarks=remarks,
        source=GatePassSource.EMPLOYEE,
        now=now,
        payment_verified=True,
        payment_amount=amount,
        principal_id=principal_id,
    )


def create_customer_gate_pass(
    db: Session,
    *,
    customer_id: int,
    thock_number: str,
    requested_quantity: int,
    family_member_id: int | None = None,
    family_member_name: str | None = None,
    remarks: str | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
) -> GatePass:
    """Customer portal request, gated by stock and by what the payer has paid for."""
    _require_positive(requested_quantity, field='Requested quantity')
    now = now or _now()

    entry = get_entry_by_thock(db, thock_number, lock=True)
    ensure_not_on_hold(entry)
    if entry.customer_id != customer_id:
        raise ValidationError(f'Truck {entry.thock_number} does not belong to customer {customer_id}')
    member_name = _resolve_member_name(
        db,
        customer_id=customer_id,
        family_member_id=family_member_id,
        family_member_name=family_member_name,
    )

    _require_stock(requested_quantity, compute_inventory(db, thock_number=entry.thock_number))

    allowance = compute_allowance(db, PayerRef(customer_id=customer_id, family_member_id=family_member_id))
    budget = allowance.available_for_new_requests
    if budget is not None and requested_quantity > budget:
        raise InsufficientAllowanceError(
            f'Payment insufficient: you can take out max {budget} items based on your payment '
            f'(requested: {requested_quantity})',
            requested=requested_quantity,
            allowance=budget,
        )

    return _new_gate_pass(
        db,
        entry=entry,
        customer_id=customer_id,
        requested_quantity=requested_quantity,
        family_member_id=family_member_id,
        family_member_name=member_name,
        remarks=remarks,
        source=GatePassSource.CUSTOMER_PORTAL,
        now=now,
        payment_verified=False,
        payment_amount=None,
        principal_id=principal_id,
    )


def _pickup_window(gate_pass: GatePass, *, now: datetime, override: datetime | None) -> datetime:
    if override is not None:
        deadline = as_utc(override)
        if deadline <= now:
            raise ValidationError('Pickup deadline must be in the future')
        return deadline
    if gate_pass.request_source == GatePassSource.CUSTOMER_PORTAL:
        return now + timedelta(hours=settings.customer_portal_pickup_window_hours)
    return now + timedelta(hours=settings.employee_pickup_window_hours)


def approve_gate_pass(
    db: Session,
    *,
    gate_pass_id: int,
    approved_quantity: int | None = None,
    gate_no: str | None = None,
    remarks: str | None = None,
    approval_expires_at: datetime | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> GatePass:
    now = now or _now()
    gate_pass, entry = _lock_for_mutation(db, gate_pass_id)
    if gate_pass.status != GatePassStatus.PENDING:
        raise InvalidStateTransitionError(
            f'Gate pass {gate_pass.id} is {gate_pass.status.value}; only pending passes can be approved'
        )
    _enforce_deadline(db, gate_pass, now=now, notifier=notifier)

    quantity = gate_pass.requested_quantity if approved_quantity is None else approved_quantity
    _require_positive(quantity, field='Approved quantity')
    if quantity > gate_pass.requested_quantity:
        raise ValidationError(
            f'Approved quantity {quantity} exceeds requested quantity {gate_pass.requested_quantity}'
        )

    inventory = compute_inventory(db, thock_number=entry.thock_number, exclude_gate_pass_id=gate_pass.id)
    _require_stock(quantity, inventory)

    gate_pass.approved_quantity = quantity
    gate_pass.gate_no = _clean_text(gate_no) or gate_pass.gate_no
    if _clean_text(remarks):
        gate_pass.remarks = _clean_text(remarks)
    gate_pass.status = GatePassStatus.APPROVED
    gate_pass.approved_by_principal_id = principal_id
    gate_pass.approved_at = now
    gate_pass.approval_expires_at = _pickup_window(gate_pass, now=now, override=approval_expires_at)
    gate_pass.updated_at = now
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='GATE_PASS_APPROVED',
        gate_pass_id=gate_pass.id,
        thock_number=gate_pass.thock_number,
        metadata={
            'approved_quantity': quantity,
            'effective_available_before': inventory.effective_available,
            'approval_expires_at': gate_pass.approval_expires_at.isoformat(),
        },
    )
    queue_gate_pass_event(db, notifier, 'approved', gate_pass)
    logger.info('Gate pass %s approved for %s items by principal %s', gate_pass.id, quantity, principal_id)
    return gate_pass


def reject_gate_pass(
    db: Session,
    *,
    gate_pass_id: int,
    remarks: str | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> GatePass:
    now = now or _now()
    gate_pass, _entry = _lock_for_mutation(db, gate_pass_id)
    rejectable = gate_pass.status == GatePassStatus.PENDING or (
        gate_pass.status == GatePassStatus.APPROVED and gate_pass.total_picked_up == 0
    )
    if not rejectable:
        raise InvalidStateTransitionError(
            f'Gate pass {gate_pass.id} is {gate_pass.status.value} with {gate_pass.total_picked_up} picked up '
            'and cannot be rejected'
        )
    _enforce_deadline(db, gate_pass, now=now, notifier=notifier)

    previous = gate_pass.status
    gate_pass.status = GatePassStatus.REJECTED
    if _clean_text(remarks):
        gate_pass.remarks = _clean_text(remarks)
    gate_pass.approved_by_principal_id = principal_id
    gate_pass.updated_at = now
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='GATE_PASS_REJECTED',
        gate_pass_id=gate_pass.id,
        thock_number=gate_pass.thock_number,
        metadata={'previous_status': previous.value, 'remarks': gate_pass.remarks},
    )
    queue_gate_pass_event(db, notifier, 'rejected', gate_pass)
    logger.info('Gate pass %s rejected by principal %s', gate_pass.id, principal_id)
    return gate_pass


def approve_or_reject(
    db: Session,
    *,
    gate_pass_id: int,
    action: str,
    approved_quantity: int | None = None,
    gate_no: str | None = None,
    remarks: str | None = None,
    approval_expires_at: datetime | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> GatePass:
    decision = (action or '').strip().lower()
    if decision == APPROVE:
        return approve_gate_pass(
            db,
            gate_pass_id=gate_pass_id,
            approved_quantity=approved_quantity,
            gate_no=gate_no,
            remarks=remarks,
            approval_expires_at=approval_expires_at,
            principal_id=principal_id,
            now=now,
            notifier=notifier,
        )
    if decision == REJECT:
        return reject_gate_pass(
            db,
            gate_pass_id=gate_pass_id,
            remarks=remarks,
            principal_id=principal_id,
            now=now,
            notifier=notifier,
        )
    raise ValidationError(f'Unknown decision: {action}')


def record_pickup(
    db: Session,
    *,
    gate_pass_id: int,
    quantity: int,
    room_no: str | None = None,
    floor: str | None = None,
    remarks: str | None = None,
    principal_id: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> GatePass:
    """Withdraw part of an approved pass.

    The pickup row, the running total and the status change are written in
    one flush under the truck lock, then the truck's ledgers are re-checked
    before the caller commits.
    """
    _require_positive(quantity, field='Pickup quantity')
    now = now or _now()

    gate_pass, entry = _lock_for_mutation(db, gate_pass_id)
    if gate_pass.status not in PICKUP_STATUSES:
        raise InvalidStateTransitionError(
            f'Gate pass {gate_pass.id} is {gate_pass.status.value}; it must be approved to record pickup'
        )
    _enforce_deadline(db, gate_pass, now=now, notifier=notifier)

    remaining = gate_pass.authorized_quantity - gate_pass.total_picked_up
    if quantity > remaining:
        raise ValidationError(
            f'Pickup quantity {quantity} exceeds remaining quantity {remaining} on gate pass {gate_pass.id}'
        )

    inventory = compute_inventory(db, thock_number=entry.thock_number)
    if quantity > inventory.current_inventory:
        raise InsufficientStockError(
            f'Truck {entry.thock_number} holds {inventory.current_inventory} items, requested {quantity}',
            requested=quantity,
            available=inventory.current_inventory,
        )

    clean_room, clean_floor = _clean_text(room_no), _clean_text(floor)
    if clean_room and clean_floor:
        slot = validate_explicit_slot(
            db,
            thock_number=entry.thock_number,
            room_no=clean_room,
            floor=clean_floor,
            quantity=quantity,
        )
    else:
        slot = resolve_pickup_slot(db, thock_number=entry.thock_number, quantity=quantity)

    pickup = append_pickup(
        db,
        gate_pass=gate_pass,
        quantity=quantity,
        room_no=slot.room_no,
        floor=slot.floor,
        principal_id=principal_id,
        remarks=remarks,
        now=now,
    )
    gate_pass.total_picked_up += quantity
    completed = gate_pass.total_picked_up >= gate_pass.authorized_quantity
    if completed:
        gate_pass.status = GatePassStatus.COMPLETED
        gate_pass.completed_at = now
    else:
        gate_pass.status = GatePassStatus.PARTIALLY_COMPLETED
    gate_pass.updated_at = now
    db.flush()

    verify_truck_invariants(db, entry=entry)

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='GATE_PASS_PICKUP_RECORDED',
        gate_pass_id=gate_pass.id,
        thock_number=gate_pass.thock_number,
        metadata={
            'pickup_id': pickup.id,
            'sequence_no': pickup.sequence_no,
            'quantity': quantity,
            'room_no': slot.room_no,
            'floor': slot.floor,
            'total_picked_up': gate_pass.total_picked_up,
        },
    )
    if completed:
        _log_items_out(db, gate_pass=gate_pass, entry=entry, principal_id=principal_id)
        queue_gate_pass_event(db, notifier, 'completed', gate_pass)
    logger.info(
        'Pickup %s of %s items on gate pass %s from room %s floor %s (total %s/%s)',
        pickup.sequence_no,
        quantity,
        gate_pass.id,
        slot.room_no,
        slot.floor,
        gate_pass.total_picked_up,
        gate_pass.authorized_quantity,
    )
    return gate_pass


def _log_items_out(db: Session, *, gate_pass: GatePass, entry: Entry, principal_id: int | None) -> None:
    scope = 'PARTIAL withdrawal' if gate_pass.total_picked_up < entry.expected_quantity else 'FULL withdrawal'
    log_audit(
        db,
        actor_principal_id=principal_id,
        action='ITEMS_OUT',
        gate_pass_id=gate_pass.id,
        thock_number=gate_pass.thock_number,
        metadata={
            'total_picked_up': gate_pass.total_picked_up,
            'note': f'Items out: {gate_pass.total_picked_up} items physically taken by customer ({scope})',
        },
    )


def complete_gate_pass(
    db: Session,
    *,
    gate_pass_id: int,
    principal_id: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> GatePass:
    now = now or _now()
    gate_pass, entry = _lock_for_mutation(db, gate_pass_id)
    if gate_pass.status not in PICKUP_STATUSES:
        raise InvalidStateTransitionError(
            f'Gate pass {gate_pass.id} is {gate_pass.status.value}; '
            'it must be approved or partially completed before completion'
        )
    _enforce_deadline(db, gate_pass, now=now, notifier=notifier)
    if gate_pass.total_picked_up == 0:
        raise InvalidStateTransitionError(
            'Cannot complete: no items picked up yet. Use Record Pickup to log items before completing'
        )

    gate_pass.status = GatePassStatus.COMPLETED
    gate_pass.completed_at = now
    gate_pass.final_approved_quantity = gate_pass.total_picked_up
    gate_pass.updated_at = now
    db.flush()

    _log_items_out(db, gate_pass=gate_pass, entry=entry, principal_id=principal_id)
    queue_gate_pass_event(db, notifier, 'completed', gate_pass)
    logger.info('Gate pass %s completed with %s items picked up', gate_pass.id, gate_pass.total_picked_up)
    return gate_pass


def get_gate_pass(db: Session, *, gate_pass_id: int) -> GatePass:
    return _load_gate_pass(db, gate_pass_id)


def list_gate_passes(
    db: Session,
    *,
    status: GatePassStatus | None = None,
    customer_id: int | None = None,
    thock_number: str | None = None,
    limit: int = 200,
) -> list[GatePass]:
    query = select(GatePass).order_by(GatePass.issued_at.desc(), GatePass.id.desc()).limit(limit)
    if status is not None:
        query = query.where(GatePass.status == status)
    if customer_id is not None:
        query = query.where(GatePass.customer_id == customer_id)
    if thock_number:
        query = query.where(GatePass.thock_number == thock_number.strip())
    return db.execute(query).scalars().all()


def list_pending_gate_passes(db: Session, *, now: datetime | None = None) -> list[dict]:
    now = now or _now()
    rows = db.execute(
        select(GatePass)
        .where(GatePass.status == GatePassStatus.PENDING)
        .order_by(GatePass.issued_at.asc(), GatePass.id.asc())
    ).scalars().all()
    return [serialize_gate_pass(row, now=now) for row in rows]


def serialize_gate_pass(gate_pass: GatePass, *, now: datetime | None = None) -> dict:
    now = now or _now()
    return {
        'id': gate_pass.id,
        'customer_id': gate_pass.customer_id,
        'thock_number': gate_pass.thock_number,
        'entry_id': gate_pass.entry_id,
        'family_member_id': gate_pass.family_member_id,
        'family_member_name': gate_pass.family_member_name,
        'requested_quantity': gate_pass.requested_quantity,
        'approved_quantity': gate_pass.approved_quantity,
        'final_approved_quantity': gate_pass.final_approved_quantity,
        'total_picked_up': gate_pass.total_picked_up,
        'remaining_quantity': max(gate_pass.authorized_quantity - gate_pass.total_picked_up, 0),
        'gate_no': gate_pass.gate_no,
        'status': gate_pass.status.value,
        'payment_verified': gate_pass.payment_verified,
        'payment_amount': gate_pass.payment_amount,
        'request_source': gate_pass.request_source.value,
        'issued_at': as_utc(gate_pass.issued_at),
        'expires_at': as_utc(gate_pass.expires_at),
        'approved_at': as_utc(gate_pass.approved_at),
        'approval_expires_at': as_utc(gate_pass.approval_expires_at),
        'completed_at': as_utc(gate_pass.completed_at),
        'is_expired': gate_pass.status == GatePassStatus.EXPIRED or is_overdue(gate_pass, now),
        'remarks': gate_pass.remarks,
    }
