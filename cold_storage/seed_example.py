from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from cold_storage.db import SessionLocal, engine
from cold_storage.errors import NotFoundError
from cold_storage.models import (
    Base,
    Customer,
    FamilyMember,
    LedgerEntry,
    LedgerEntryType,
    Principal,
    PrincipalRole,
    RoomEntry,
    ThockCategory,
    WebSession,
)
from cold_storage.services.entry_service import get_entry_by_thock, register_entry
from cold_storage.services.ledger_service import create_ledger_entry
from cold_storage.services.room_entry_service import create_room_entry
from cold_storage.services.settings_service import RENT_PER_ITEM_KEY, set_setting

DEMO_TOKENS = {
    'admin': 'demo-admin-token',
    'counter1': 'demo-employee-token',
    'ramesh': 'demo-customer-token',
}


def _principal(db, *, username: str, role: PrincipalRole, customer_id: int | None = None) -> Principal:
    principal = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
    if not principal:
        principal = Principal(username=username, display_name=username.title(), role=role, customer_id=customer_id, active=True)
        db.add(principal)
        db.flush()
    token = DEMO_TOKENS[username]
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session:
        db.add(
            WebSession(
                session_token=token,
                principal_id=principal.id,
                expires_at=datetime.now(tz=timezone.utc) + timedelta(days=30),
            )
        )
    return principal


def _truck(db, *, customer: Customer, thock_number: str, expected: int, placements: list[tuple[str, str, int]], principal_id: int):
    try:
        get_entry_by_thock(db, thock_number)
        return
    except NotFoundError:
        pass
    register_entry(
        db,
        customer_id=customer.id,
        thock_number=thock_number,
        expected_quantity=expected,
        thock_category=ThockCategory.SEED,
        remark='Kufri Jyoti',
        principal_id=principal_id,
    )
    for room_no, floor, quantity in placements:
        create_room_entry(
            db,
            thock_number=thock_number,
            room_no=room_no,
            floor=floor,
            quantity=quantity,
            principal_id=principal_id,
        )


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        customer = db.execute(select(Customer).where(Customer.phone == '9000000001')).scalar_one_or_none()
        if not customer:
            customer = Customer(name='Ramesh Patel', phone='9000000001', so='Mohan Patel', village='Rampur', active=True)
            db.add(customer)
            db.flush()
        member = db.execute(
            select(FamilyMember).where(FamilyMember.customer_id == customer.id, FamilyMember.name == 'Suresh Patel')
        ).scalar_one_or_none()
        if not member:
            member = FamilyMember(customer_id=customer.id, name='Suresh Patel')
            db.add(member)
            db.flush()

        admin = _principal(db, username='admin', role=PrincipalRole.ADMIN)
        employee = _principal(db, username='counter1', role=PrincipalRole.EMPLOYEE)
        _principal(db, username='ramesh', role=PrincipalRole.CUSTOMER, customer_id=customer.id)

        _truck(
            db,
            customer=customer,
            thock_number='1001/100',
            expected=100,
            placements=[('1', '2', 60), ('2', '1', 40)],
            principal_id=employee.id,
        )
        _truck(
            db,
            customer=customer,
            thock_number='1002/80',
            expected=80,
            placements=[('3', '1', 80)],
            principal_id=employee.id,
        )

        has_ledger = db.execute(select(LedgerEntry.id).where(LedgerEntry.customer_id == customer.id)).first()
        if not has_ledger:
            create_ledger_entry(
                db,
                customer_id=customer.id,
                entry_type=LedgerEntryType.CHARGE,
                debit=Decimal('18000'),
                description='Season rent',
                principal_id=admin.id,
            )
            create_ledger_entry(
                db,
                customer_id=customer.id,
                entry_type=LedgerEntryType.PAYMENT,
                credit=Decimal('10000'),
                description='Cash payment',
                principal_id=employee.id,
            )
            create_ledger_entry(
                db,
                customer_id=customer.id,
                entry_type=LedgerEntryType.PAYMENT,
                credit=Decimal('2000'),
                family_member_id=member.id,
                description='Cash payment',
                principal_id=employee.id,
            )

        set_setting(db, key=RENT_PER_ITEM_KEY, value='100', principal_id=admin.id)
        db.commit()

        placed = db.execute(select(RoomEntry.id)).all()
        print(f'Seed complete: customer={customer.id}, room_entries={len(placed)}, tokens={sorted(DEMO_TOKENS.values())}')


if __name__ == '__main__':
    seed()
