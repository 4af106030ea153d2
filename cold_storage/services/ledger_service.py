from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cold_storage.errors import NotFoundError, ValidationError
from cold_storage.models import Customer, LedgerEntry, LedgerEntryType, Principal
from cold_storage.services.entry_service import get_family_member

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

# Credits that count as money received for the withdrawal allowance.
PAID_ENTRY_TYPES = (
    LedgerEntryType.PAYMENT,
    LedgerEntryType.ONLINE_PAYMENT,
    LedgerEntryType.CREDIT,
)


@dataclass(frozen=True)
class PayerRef:
    """A customer as a whole (``family_member_id=None``) or one of its sub-payers."""

    customer_id: int
    family_member_id: int | None = None


@dataclass(frozen=True)
class LedgerSummary:
    customer_id: int
    family_member_id: int | None
    total_debit: Decimal
    total_credit: Decimal
    current_balance: Decimal
    entry_count: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value, *, field: str) -> Decimal:
    try:
        amount = Decimal(str(value if value is not None else '0'))
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid {field}') from exc
    if not amount.is_finite():
        raise ValidationError(f'Invalid {field}')
    if amount < 0:
        raise ValidationError(f'{field.capitalize()} cannot be negative')
    return amount.quantize(CENT)


def _payer_condition(payer: PayerRef):
    if payer.family_member_id is None:
        return LedgerEntry.customer_id == payer.customer_id
    return and_(
        LedgerEntry.customer_id == payer.customer_id,
        LedgerEntry.family_member_id == payer.family_member_id,
    )


def _pair_condition(customer_id: int, family_member_id: int | None):
    if family_member_id is None:
        return and_(LedgerEntry.customer_id == customer_id, LedgerEntry.family_member_id.is_(None))
    return and_(LedgerEntry.customer_id == customer_id, LedgerEntry.family_member_id == family_member_id)


def lock_payer(db: Session, *, customer_id: int) -> Customer:
    """Serialize ledger writes for a customer and all of its sub-payers."""
    customer = db.execute(
        select(Customer).where(Customer.id == customer_id).with_for_update()
    ).scalar_one_or_none()
    if not customer:
        raise NotFoundError(f'Customer {customer_id} not found')
    return customer


def _created_by_name(db: Session, principal_id: int | None) -> str:
    if principal_id is None:
        return 'System'
    row = db.execute(
        select(Principal.display_name, Principal.username).where(Principal.id == principal_id)
    ).one_or_none()
    if not row:
        return 'Unknown'
    return row.display_name or row.username


def _pair_balance(db: Session, *, customer_id: int, family_member_id: int | None) -> Decimal:
    balance = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.debit - LedgerEntry.credit), 0)).where(
            _pair_condition(customer_id, family_member_id)
        )
    ).scalar_one()
    return Decimal(str(balance or 0)).quantize(CENT)


def create_ledger_entry(
    db: Session,
    *,
    customer_id: int,
    entry_type: LedgerEntryType | str,
    debit=ZERO,
    credit=ZERO,
    family_member_id: int | None = None,
    family_member_name: str | None = None,
    description: str | None = None,
    reference_id: int | None = None,
    reference_type: str | None = None,
    external_reference: str | None = None,
    notes: str | None = None,
    principal_id: int | None = None,
) -> LedgerEntry:
    try:
        kind = LedgerEntryType(entry_type)
    except ValueError as exc:
        raise ValidationError(f'Unknown ledger entry type: {entry_type}') from exc
    debit_amount = _money(debit, field='debit')
    credit_amount = _money(credit, field='credit')
    if debit_amount == 0 and credit_amount == 0 and kind != LedgerEntryType.DEBT_APPROVAL:
        raise ValidationError('Ledger entry needs a debit or a credit amount')

    lock_payer(db, customer_id=customer_id)
    if family_member_id is not None:
        member = get_family_member(db, customer_id=customer_id, family_member_id=family_member_id)
        family_member_name = family_member_name or member.name

    previous = _pair_balance(db, customer_id=customer_id, family_member_id=family_member_id)
    entry = LedgerEntry(
        customer_id=customer_id,
        family_member_id=family_member_id,
        family_member_name=family_member_name,
        entry_type=kind,
        description=description,
        debit=debit_amount,
        credit=credit_amount,
        running_balance=(previous + debit_amount - credit_amount).quantize(CENT),
        reference_id=reference_id,
        reference_type=reference_type,
        external_reference=external_reference,
        created_by_principal_id=principal_id,
        created_by_name=_created_by_name(db, principal_id),
        notes=notes,
        created_at=_now(),
    )
    db.add(entry)
    db.flush()
    logger.info(
        'Ledger %s for customer %s/%s: debit %s credit %s balance %s',
        kind.value,
        customer_id,
        family_member_id,
        debit_amount,
        credit_amount,
        entry.running_balance,
    )
    return entry


def find_online_payment(db: Session, *, external_reference: str) -> LedgerEntry | None:
    return db.execute(
        select(LedgerEntry).where(LedgerEntry.external_reference == external_reference)
    ).scalar_one_or_none()


def record_online_payment(
    db: Session,
    *,
    customer_id: int,
    amount,
    external_reference: str,
    family_member_id: int | None = None,
    description: str | None = None,
    notes: str | None = None,
) -> tuple[LedgerEntry, bool]:
    """Append a confirmed gateway payment once per external reference."""
    clean_reference = (external_reference or '').strip()
    if not clean_reference:
        raise ValidationError('External payment reference is required')

    lock_payer(db, customer_id=customer_id)
    existing = find_online_payment(db, external_reference=clean_reference)
    if existing:
        if existing.customer_id != customer_id:
            raise ValidationError(f'Payment reference {clean_reference} belongs to another customer')
        return existing, False

    try:
        entry = create_ledger_entry(
            db,
            customer_id=customer_id,
            entry_type=LedgerEntryType.ONLINE_PAYMENT,
            credit=amount,
            family_member_id=family_member_id,
            description=description or f'Online payment {clean_reference}',
            reference_type='online_payment',
            external_reference=clean_reference,
            notes=notes,
        )
    except IntegrityError as exc:
        # Payers are locked one customer at a time; the unique reference catches the rest.
        raise ValidationError(f'Payment reference {clean_reference} was recorded concurrently; retry') from exc
    return entry, True


def get_balance(db: Session, payer: PayerRef) -> Decimal:
    balance = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.debit - LedgerEntry.credit), 0)).where(_payer_condition(payer))
    ).scalar_one()
    return Decimal(str(balance or 0)).quantize(CENT)


def get_summary(db: Session, payer: PayerRef) -> LedgerSummary:
    row = db.execute(
        select(
            func.coalesce(func.sum(LedgerEntry.debit), 0).label('total_debit'),
            func.coalesce(func.sum(LedgerEntry.credit), 0).label('total_credit'),
            func.count(LedgerEntry.id).label('entry_count'),
        ).where(_payer_condition(payer))
    ).one()
    total_debit = Decimal(str(row.total_debit or 0)).quantize(CENT)
    total_credit = Decimal(str(row.total_credit or 0)).quantize(CENT)
    return LedgerSummary(
        customer_id=payer.customer_id,
        family_member_id=payer.family_member_id,
        total_debit=total_debit,
        total_credit=total_credit,
        current_balance=(total_debit - total_credit).quantize(CENT),
        entry_count=int(row.entry_count or 0),
    )


def total_paid(db: Session, payer: PayerRef) -> Decimal:
    paid = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.credit), 0)).where(
            _payer_condition(payer),
            LedgerEntry.entry_type.in_(PAID_ENTRY_TYPES),
        )
    ).scalar_one()
    return Decimal(str(paid or 0)).quantize(CENT)


def get_payment_history(db: Session, payer: PayerRef, *, limit: int = 20) -> list[LedgerEntry]:
    if limit <= 0:
        limit = 20
    return db.execute(
        select(LedgerEntry)
        .where(_payer_condition(payer), LedgerEntry.credit > 0)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(limit)
    ).scalars().all()


def get_credits_by_family_member(db: Session, *, customer_id: int) -> list[dict]:
    rows = db.execute(
        select(
            LedgerEntry.family_member_id,
            func.max(LedgerEntry.family_member_name).label('family_member_name'),
            func.coalesce(func.sum(LedgerEntry.credit), 0).label('total_credit'),
        )
        .where(LedgerEntry.customer_id == customer_id, LedgerEntry.credit > 0)
        .group_by(LedgerEntry.family_member_id)
    ).all()
    results = [
        {
            'family_member_id': row.family_member_id,
            'family_member_name': row.family_member_name or '',
            'total_credit': Decimal(str(row.total_credit or 0)).quantize(CENT),
        }
        for row in rows
    ]
    results.sort(key=lambda item: item['total_credit'], reverse=True)
    return results


def list_debtors(db: Session) -> list[dict]:
    balance = func.sum(LedgerEntry.debit - LedgerEntry.credit)
    rows = db.execute(
        select(
            Customer.id,
            Customer.name,
            Customer.phone,
            func.sum(LedgerEntry.debit).label('total_debit'),
            func.sum(LedgerEntry.credit).label('total_credit'),
            balance.label('current_balance'),
        )
        .join(Customer, Customer.id == LedgerEntry.customer_id)
        .group_by(Customer.id, Customer.name, Customer.phone)
        .having(balance > 0)
        .order_by(balance.desc())
    ).all()
    return [
        {
            'customer_id': row.id,
            'customer_name': row.name,
            'customer_phone': row.phone,
            'total_debit': Decimal(str(row.total_debit or 0)).quantize(CENT),
            'total_credit': Decimal(str(row.total_credit or 0)).quantize(CENT),
            'current_balance': Decimal(str(row.current_balance or 0)).quantize(CENT),
        }
        for row in rows
    ]


def recompute_running_balances(db: Session, *, customer_id: int) -> list[int]:
    """Replay the customer's history and return ids whose stored running balance disagrees."""
    entries = db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.id.asc())
    ).scalars().all()
    balances: dict[int | None, Decimal] = {}
    mismatched: list[int] = []
    for entry in entries:
        running = balances.get(entry.family_member_id, ZERO) + Decimal(entry.debit) - Decimal(entry.credit)
        balances[entry.family_member_id] = running
        if Decimal(entry.running_balance).quantize(CENT) != running.quantize(CENT):
            mismatched.append(entry.id)
    if mismatched:
        logger.warning('Customer %s has %s ledger rows with drifted running balance', customer_id, len(mismatched))
    return mismatched


def serialize_ledger_entry(entry: LedgerEntry) -> dict:
    return {
        'id': entry.id,
        'customer_id': entry.customer_id,
        'family_member_id': entry.family_member_id,
        'family_member_name': entry.family_member_name,
        'entry_type': entry.entry_type.value,
        'description': entry.description,
        'debit': entry.debit,
        'credit': entry.credit,
        'running_balance': entry.running_balance,
        'reference_id': entry.reference_id,
        'reference_type': entry.reference_type,
        'external_reference': entry.external_reference,
        'created_by_name': entry.created_by_name,
        'notes': entry.notes,
        'created_at': entry.created_at,
    }
