from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cold_storage.models import OPEN_GATE_PASS_STATUSES, GatePass, RoomEntry
from cold_storage.services.entry_service import get_entry_by_thock
from cold_storage.services.pickup_service import total_picked_up_for_thock


@dataclass(frozen=True)
class InventorySnapshot:
    thock_number: str
    original_stored: int
    total_picked_up: int
    current_inventory: int
    pending_in_open_passes: int
    effective_available: int

    def as_dict(self) -> dict:
        return asdict(self)


def summarize_inventory(
    *,
    thock_number: str,
    original_stored: int,
    total_picked_up: int,
    pending_in_open_passes: int,
) -> InventorySnapshot:
    current = max(original_stored - total_picked_up, 0)
    pending = max(pending_in_open_passes, 0)
    return InventorySnapshot(
        thock_number=thock_number,
        original_stored=original_stored,
        total_picked_up=total_picked_up,
        current_inventory=current,
        pending_in_open_passes=pending,
        effective_available=max(current - pending, 0),
    )


def total_stored(db: Session, *, thock_number: str) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(RoomEntry.quantity), 0)).where(RoomEntry.thock_number == thock_number)
    ).scalar_one()
    return int(total or 0)


def pending_in_open_passes(db: Session, *, thock_number: str, exclude_gate_pass_id: int | None = None) -> int:
    query = select(
        GatePass.requested_quantity,
        GatePass.approved_quantity,
        GatePass.total_picked_up,
    ).where(
        GatePass.thock_number == thock_number,
        GatePass.status.in_(OPEN_GATE_PASS_STATUSES),
    )
    if exclude_gate_pass_id is not None:
        query = query.where(GatePass.id != exclude_gate_pass_id)

    pending = 0
    for row in db.execute(query).all():
        authorized = row.approved_quantity if row.approved_quantity is not None else row.requested_quantity
        pending += max(authorized - row.total_picked_up, 0)
    return pending


def compute_inventory(
    db: Session,
    *,
    thock_number: str,
    exclude_gate_pass_id: int | None = None,
) -> InventorySnapshot:
    """Derive the stock position of a truck from the ledgers.

    Read only. When the result gates a mutation the caller must already hold
    the truck lock (see ``get_entry_by_thock(lock=True)``) and the session must
    be flushed so pending rows are visible.
    """
    return summarize_inventory(
        thock_number=thock_number,
        original_stored=total_stored(db, thock_number=thock_number),
        total_picked_up=total_picked_up_for_thock(db, thock_number=thock_number),
        pending_in_open_passes=pending_in_open_passes(
            db, thock_number=thock_number, exclude_gate_pass_id=exclude_gate_pass_id
        ),
    )


def get_inventory(db: Session, *, thock_number: str) -> InventorySnapshot:
    entry = get_entry_by_thock(db, thock_number)
    return compute_inventory(db, thock_number=entry.thock_number)
