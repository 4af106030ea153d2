from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigId = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    EMPLOYEE = 'EMPLOYEE'
    CUSTOMER = 'CUSTOMER'


class ThockCategory(str, Enum):
    SEED = 'SEED'
    SELL = 'SELL'


class EntryStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    TRANSFERRED = 'TRANSFERRED'


class GatePassStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    PARTIALLY_COMPLETED = 'PARTIALLY_COMPLETED'
    COMPLETED = 'COMPLETED'
    REJECTED = 'REJECTED'
    EXPIRED = 'EXPIRED'


OPEN_GATE_PASS_STATUSES = (
    GatePassStatus.PENDING,
    GatePassStatus.APPROVED,
    GatePassStatus.PARTIALLY_COMPLETED,
)


class GatePassSource(str, Enum):
    EMPLOYEE = 'EMPLOYEE'
    CUSTOMER_PORTAL = 'CUSTOMER_PORTAL'


class LedgerEntryType(str, Enum):
    CHARGE = 'CHARGE'
    PAYMENT = 'PAYMENT'
    CREDIT = 'CREDIT'
    REFUND = 'REFUND'
    DEBT_APPROVAL = 'DEBT_APPROVAL'
    ONLINE_PAYMENT = 'ONLINE_PAYMENT'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    customer_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('customers.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigId, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    so: Mapped[str | None] = mapped_column(Text)
    village: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FamilyMember(Base):
    __tablename__ = 'family_members'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigId, ForeignKey('customers.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Entry(Base):
    __tablename__ = 'entries'
    __table_args__ = (
        CheckConstraint('expected_quantity > 0', name='entries_expected_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    thock_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_id: Mapped[int] = mapped_column(BigId, ForeignKey('customers.id'), nullable=False)
    family_member_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('family_members.id'))
    expected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    thock_category: Mapped[ThockCategory] = mapped_column(SQLEnum(ThockCategory, name='thock_category'), nullable=False)
    remark: Mapped[str | None] = mapped_column(Text)
    status: Mapped[EntryStatus] = mapped_column(
        SQLEnum(EntryStatus, name='entry_status'), nullable=False, default=EntryStatus.ACTIVE, server_default='ACTIVE'
    )
    reconciliation_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    hold_reason: Mapped[str | None] = mapped_column(Text)
    hold_placed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RoomEntry(Base):
    __tablename__ = 'room_entries'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='room_entries_quantity_positive_ck'),
        Index('room_entries_thock_number_idx', 'thock_number'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    entry_id: Mapped[int] = mapped_column(BigId, ForeignKey('entries.id'), nullable=False)
    thock_number: Mapped[str] = mapped_column(String(64), nullable=False)
    room_no: Mapped[str] = mapped_column(String(16), nullable=False)
    floor: Mapped[str] = mapped_column(String(16), nullable=False)
    gate_no: Mapped[str | None] = mapped_column(String(32))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_breakdown: Mapped[str | None] = mapped_column(Text)
    remark: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GatePass(Base):
    __tablename__ = 'gate_passes'
    __table_args__ = (
        CheckConstraint('requested_quantity > 0', name='gate_passes_requested_positive_ck'),
        CheckConstraint('total_picked_up >= 0', name='gate_passes_picked_non_negative_ck'),
        CheckConstraint('total_picked_up <= requested_quantity', name='gate_passes_picked_within_request_ck'),
        Index('gate_passes_thock_status_idx', 'thock_number', 'status'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigId, ForeignKey('customers.id'), nullable=False)
    thock_number: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_id: Mapped[int] = mapped_column(BigId, ForeignKey('entries.id'), nullable=False)
    family_member_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('family_members.id'))
    family_member_name: Mapped[str | None] = mapped_column(Text)
    requested_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_quantity: Mapped[int | None] = mapped_column(Integer)
    final_approved_quantity: Mapped[int | None] = mapped_column(Integer)
    total_picked_up: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    gate_no: Mapped[str | None] = mapped_column(String(32))
    status: Mapped[GatePassStatus] = mapped_column(
        SQLEnum(GatePassStatus, name='gate_pass_status'),
        nullable=False,
        default=GatePassStatus.PENDING,
        server_default='PENDING',
    )
    payment_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    request_source: Mapped[GatePassSource] = mapped_column(
        SQLEnum(GatePassSource, name='gate_pass_source'),
        nullable=False,
        default=GatePassSource.EMPLOYEE,
        server_default='EMPLOYEE',
    )
    issued_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    created_by_customer_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('customers.id'))
    approved_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approval_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def authorized_quantity(self) -> int:
        if self.approved_quantity is not None:
            return self.approved_quantity
        return self.requested_quantity


class GatePassPickup(Base):
    __tablename__ = 'gate_pass_pickups'
    __table_args__ = (
        UniqueConstraint('gate_pass_id', 'sequence_no', name='gate_pass_pickups_pass_sequence_uniq'),
        CheckConstraint('pickup_quantity > 0', name='gate_pass_pickups_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    gate_pass_id: Mapped[int] = mapped_column(BigId, ForeignKey('gate_passes.id'), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    pickup_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    room_no: Mapped[str] = mapped_column(String(16), nullable=False)
    floor: Mapped[str] = mapped_column(String(16), nullable=False)
    picked_up_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    picked_up_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'
    __table_args__ = (
        CheckConstraint('debit >= 0', name='ledger_entries_debit_non_negative_ck'),
        CheckConstraint('credit >= 0', name='ledger_entries_credit_non_negative_ck'),
        UniqueConstraint('external_reference', name='ledger_entries_external_reference_key'),
        Index('ledger_entries_payer_idx', 'customer_id', 'family_member_id'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigId, ForeignKey('customers.id'), nullable=False)
    family_member_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('family_members.id'))
    family_member_name: Mapped[str | None] = mapped_column(Text)
    entry_type: Mapped[LedgerEntryType] = mapped_column(SQLEnum(LedgerEntryType, name='ledger_entry_type'), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    debit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    credit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    running_balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    reference_id: Mapped[int | None] = mapped_column(BigId)
    reference_type: Mapped[str | None] = mapped_column(String(32))
    external_reference: Mapped[str | None] = mapped_column(String(128))
    created_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    created_by_name: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SystemSetting(Base):
    __tablename__ = 'system_settings'

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_by_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    gate_pass_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('gate_passes.id'))
    thock_number: Mapped[str | None] = mapped_column(String(64))
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
