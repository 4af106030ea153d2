from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cold_storage.auth import Principal, require_staff
from cold_storage.db import get_db
from cold_storage.dependencies import label_printer_dependency
from cold_storage.routers.common import commit_mutation
from cold_storage.schemas import RoomEntryCreate
from cold_storage.services.entry_service import get_entry_by_thock
from cold_storage.services.notification_service import LabelPrinter
from cold_storage.services.room_entry_service import create_room_entry, list_room_entries, serialize_room_entry

router = APIRouter(prefix='/room-entries', tags=['room-entries'])


@router.post('', status_code=201)
def add_room_entry(
    payload: RoomEntryCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
    printer: LabelPrinter | None = Depends(label_printer_dependency),
):
    row = commit_mutation(
        db,
        lambda: create_room_entry(
            db,
            thock_number=payload.thock_number,
            room_no=payload.room_no,
            floor=payload.floor,
            quantity=payload.quantity,
            gate_no=payload.gate_no,
            quantity_breakdown=payload.quantity_breakdown,
            remark=payload.remark,
            principal_id=principal.id,
            label_count=payload.label_count,
            printer=printer,
        ),
    )
    return serialize_room_entry(row)


@router.get('/{thock_number:path}')
def room_entries_for_truck(
    thock_number: str,
    _: Principal = Depends(require_staff),
    db: Session = Depends(get_db),
):
    get_entry_by_thock(db, thock_number)
    return [serialize_room_entry(row) for row in list_room_entries(db, thock_number=thock_number)]
