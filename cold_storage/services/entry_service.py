from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from cold_storage.errors import NotFoundError, ValidationError
from cold_storage.models import Customer, Entry, FamilyMember, ThockCategory

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_category(raw: str | ThockCategory) -> ThockCategory:
    if isinstance(raw, ThockCategory):
        return raw
    try:
        return ThockCategory((raw or '').strip().upper())
    except ValueError as exc:
        raise ValidationError(f'Unknown category: {raw}') from exc


def get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer:
        raise NotFoundError(f'Customer {customer_id} not found')
    return customer


def get_family_member(db: Session, *, customer_id: int, family_member_id: int) -> FamilyMember:
    member = db.execute(
        select(FamilyMember).where(
            FamilyMember.id == family_member_id,
            FamilyMember.customer_id == customer_id,
        )
    ).scalar_one_or_none()
    if not member:
        raise NotFoundError(f'Family member {family_member_id} not found for customer {customer_id}')
    return member


def get_entry_by_thock(db: Session, thock_number: str, *, lock: bool = False) -> Entry:
    """Load a truck's intake record.

    With ``lock=True`` the row is selected ``FOR UPDATE``; every stock-consuming
    mutation on the truck serializes on this row.
    """
    clean = (thock_number or '').strip()
    if not clean:
        raise ValidationError('Truck number is required')
    query = select(Entry).where(Entry.thock_number == clean)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    entry = db.execute(query).scalar_one_or_none()
    if not entry:
        raise NotFoundError(f'Truck {clean} not found')
    return entry


def list_entries_for_customer(db: Session, *, customer_id: int) -> list[Entry]:
    return db.execute(
        select(Entry).where(Entry.customer_id == customer_id).order_by(Entry.created_at.asc(), Entry.id.asc())
    ).scalars().all()


def register_entry(
    db: Session,
    *,
    customer_id: int,
    thock_number: str,
    expected_quantity: int,
    thock_category: str | ThockCategory,
    family_member_id: int | None = None,
    remark: str | None = None,
    principal_id: int | None = None,
) -> Entry:
    clean_thock = (thock_number or '').strip()
    if not clean_thock:
        raise ValidationError('Truck number is required')
    if expected_quantity <= 0:
        raise ValidationError('Expected quantity must be greater than zero')
    category = parse_category(thock_category)

    get_customer(db, customer_id)
    if family_member_id is not None:
        get_family_member(db, customer_id=customer_id, family_member_id=family_member_id)

    exists = db.execute(select(Entry.id).where(Entry.thock_number == clean_thock)).scalar_one_or_none()
    if exists:
        raise ValidationError(f'Truck {clean_thock} already exists')

    entry = Entry(
        thock_number=clean_thock,
        customer_id=customer_id,
        family_member_id=family_member_id,
        expected_quantity=expected_quantity,
        thock_category=category,
        remark=remark.strip() if remark and remark.strip() else None,
        created_by_principal_id=principal_id,
        created_at=_now(),
        updated_at=_now(),
    )
    db.add(entry)
    db.flush()
    logger.info('Registered truck %s for customer %s (%s items)', clean_thock, customer_id, expected_quantity)
    return entry
