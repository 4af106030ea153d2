from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from cold_storage.errors import InsufficientStockError, ValidationError
from cold_storage.models import RoomEntry
from cold_storage.services.audit_service import log_audit
from cold_storage.services.entry_service import get_entry_by_thock
from cold_storage.services.inventory_service import total_stored
from cold_storage.services.notification_service import LabelJob, LabelPrinter, dispatch_label_job
from cold_storage.services.reconciliation_service import ensure_not_on_hold
from cold_storage.services.sort_utils import slot_sort_key

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_required(value: str | None, *, field: str) -> str:
    clean = (value or '').strip()
    if not clean:
        raise ValidationError(f'{field} is required')
    return clean


def create_room_entry(
    db: Session,
    *,
    thock_number: str,
    room_no: str,
    floor: str,
    quantity: int,
    gate_no: str | None = None,
    quantity_breakdown: str | None = None,
    remark: str | None = None,
    principal_id: int | None = None,
    label_count: int = 0,
    printer: LabelPrinter | None = None,
) -> RoomEntry:
    clean_room = _clean_required(room_no, field='Room number')
    clean_floor = _clean_required(floor, field='Floor')
    if quantity <= 0:
        raise ValidationError('Quantity must be greater than zero')
    if label_count < 0:
        raise ValidationError('Label count cannot be negative')

    entry = get_entry_by_thock(db, thock_number, lock=True)
    ensure_not_on_hold(entry)

    already_stored = total_stored(db, thock_number=entry.thock_number)
    room_left = entry.expected_quantity - already_stored
    if quantity > room_left:
        raise InsufficientStockError(
            f'Truck {entry.thock_number} declared {entry.expected_quantity} items, '
            f'{already_stored} already placed; requested {quantity}, available {max(room_left, 0)}',
            requested=quantity,
            available=max(room_left, 0),
        )

    room_entry = RoomEntry(
        entry_id=entry.id,
        thock_number=entry.thock_number,
        room_no=clean_room,
        floor=clean_floor,
        gate_no=gate_no.strip() if gate_no and gate_no.strip() else None,
        quantity=quantity,
        quantity_breakdown=quantity_breakdown,
        remark=remark.strip() if remark and remark.strip() else None,
        created_by_principal_id=principal_id,
        created_at=_now(),
    )
    db.add(room_entry)
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal_id,
        action='ROOM_ENTRY_CREATED',
        thock_number=entry.thock_number,
        metadata={'room_entry_id': room_entry.id, 'room_no': clean_room, 'floor': clean_floor, 'quantity': quantity},
    )
    logger.info('Placed %s items of truck %s in room %s floor %s', quantity, entry.thock_number, clean_room, clean_floor)

    dispatch_label_job(
        printer,
        LabelJob(
            thock_number=entry.thock_number,
            room_no=clean_room,
            floor=clean_floor,
            quantity=quantity,
            label_count=label_count,
        ),
    )
    return room_entry


def list_room_entries(db: Session, *, thock_number: str) -> list[RoomEntry]:
    entry = get_entry_by_thock(db, thock_number)
    rows = db.execute(select(RoomEntry).where(RoomEntry.thock_number == entry.thock_number)).scalars().all()
    return sorted(rows, key=lambda row: slot_sort_key(room_no=row.room_no, floor=row.floor, row_id=row.id))


def serialize_room_entry(row: RoomEntry) -> dict:
    return {
        'id': row.id,
        'entry_id': row.entry_id,
        'thock_number': row.thock_number,
        'room_no': row.room_no,
        'floor': row.floor,
        'gate_no': row.gate_no,
        'quantity': row.quantity,
        'quantity_breakdown': row.quantity_breakdown,
        'remark': row.remark,
        'created_at': row.created_at,
    }
