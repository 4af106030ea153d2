from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cold_storage.errors import ConcurrentUpdateError, InsufficientStockError, ValidationError
from cold_storage.models import GatePass, GatePassPickup, RoomEntry
from cold_storage.services.sort_utils import slot_sort_key


@dataclass(frozen=True)
class SlotBalance:
    room_no: str
    floor: str
    stored: int
    picked: int
    first_row_id: int

    @property
    def remaining(self) -> int:
        return max(self.stored - self.picked, 0)


def list_pickups(db: Session, *, gate_pass_id: int) -> list[GatePassPickup]:
    return db.execute(
        select(GatePassPickup)
        .where(GatePassPickup.gate_pass_id == gate_pass_id)
        .order_by(GatePassPickup.sequence_no.asc())
    ).scalars().all()


def pickups_by_thock(db: Session, *, thock_number: str) -> list[GatePassPickup]:
    return db.execute(
        select(GatePassPickup)
        .join(GatePass, GatePass.id == GatePassPickup.gate_pass_id)
        .where(GatePass.thock_number == thock_number)
        .order_by(GatePassPickup.picked_up_at.asc(), GatePassPickup.id.asc())
    ).scalars().all()


def total_picked_up_for_thock(db: Session, *, thock_number: str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(GatePassPickup.pickup_quantity), 0))
        .join(GatePass, GatePass.id == GatePassPickup.gate_pass_id)
        .where(GatePass.thock_number == thock_number)
    ).scalar_one()
    return int(total or 0)


def sum_pickups_for_pass(db: Session, *, gate_pass_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(GatePassPickup.pickup_quantity), 0)).where(
            GatePassPickup.gate_pass_id == gate_pass_id
        )
    ).scalar_one()
    return int(total or 0)


def slot_balances(db: Session, *, thock_number: str) -> list[SlotBalance]:
    stored_rows = db.execute(
        select(
            RoomEntry.room_no,
            RoomEntry.floor,
            func.sum(RoomEntry.quantity).label('stored'),
            func.min(RoomEntry.id).label('first_row_id'),
        )
        .where(RoomEntry.thock_number == thock_number)
        .group_by(RoomEntry.room_no, RoomEntry.floor)
    ).all()
    picked_rows = db.execute(
        select(
            GatePassPickup.room_no,
            GatePassPickup.floor,
            func.sum(GatePassPickup.pickup_quantity).label('picked'),
        )
        .join(GatePass, GatePass.id == GatePassPickup.gate_pass_id)
        .where(GatePass.thock_number == thock_number)
        .group_by(GatePassPickup.room_no, GatePassPickup.floor)
    ).all()
    picked_by_slot = {(row.room_no, row.floor): int(row.picked or 0) for row in picked_rows}

    balances = [
        SlotBalance(
            room_no=row.room_no,
            floor=row.floor,
            stored=int(row.stored or 0),
            picked=picked_by_slot.get((row.room_no, row.floor), 0),
            first_row_id=int(row.first_row_id),
        )
        for row in stored_rows
    ]
    balances.sort(key=lambda slot: slot_sort_key(room_no=slot.room_no, floor=slot.floor, row_id=slot.first_row_id))
    return balances


def resolve_pickup_slot(db: Session, *, thock_number: str, quantity: int) -> SlotBalance:
    slots = slot_balances(db, thock_number=thock_number)
    if not slots:
        raise ValidationError(
            f'No storage location found for truck {thock_number} - items must be assigned to storage first'
        )
    for slot in slots:
        if slot.remaining >= quantity:
            return slot
    for slot in slots:
        if slot.remaining > 0:
            return slot
    return slots[0]


def validate_explicit_slot(
    db: Session,
    *,
    thock_number: str,
    room_no: str,
    floor: str,
    quantity: int,
) -> SlotBalance:
    for slot in slot_balances(db, thock_number=thock_number):
        if slot.room_no == room_no and slot.floor == floor:
            if quantity > slot.remaining:
                raise InsufficientStockError(
                    f'Room {room_no} floor {floor} holds {slot.remaining} items for truck {thock_number}, '
                    f'requested {quantity}',
                    requested=quantity,
                    available=slot.remaining,
                )
            return slot
    raise ValidationError(f'Truck {thock_number} has no stock in room {room_no} floor {floor}')


def next_sequence_no(db: Session, *, gate_pass_id: int) -> int:
    last_sequence = db.execute(
        select(func.coalesce(func.max(GatePassPickup.sequence_no), 0)).where(
            GatePassPickup.gate_pass_id == gate_pass_id
        )
    ).scalar_one()
    return int(last_sequence or 0) + 1


def append_pickup(
    db: Session,
    *,
    gate_pass: GatePass,
    quantity: int,
    room_no: str,
    floor: str,
    principal_id: int | None,
    remarks: str | None,
    now: datetime,
) -> GatePassPickup:
    pickup = GatePassPickup(
        gate_pass_id=gate_pass.id,
        sequence_no=next_sequence_no(db, gate_pass_id=gate_pass.id),
        pickup_quantity=quantity,
        room_no=room_no,
        floor=floor,
        picked_up_by_principal_id=principal_id,
        picked_up_at=now,
        remarks=remarks.strip() if remarks and remarks.strip() else None,
    )
    db.add(pickup)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another writer took this sequence number after our read of the pass.
        raise ConcurrentUpdateError(
            f'Gate pass {gate_pass.id} was changed by a concurrent pickup; reload and retry'
        ) from exc
    return pickup


def serialize_pickup(pickup: GatePassPickup) -> dict:
    return {
        'id': pickup.id,
        'gate_pass_id': pickup.gate_pass_id,
        'sequence_no': pickup.sequence_no,
        'pickup_quantity': pickup.pickup_quantity,
        'room_no': pickup.room_no,
        'floor': pickup.floor,
        'picked_up_by_principal_id': pickup.picked_up_by_principal_id,
        'picked_up_at': pickup.picked_up_at,
        'remarks': pickup.remarks,
    }
