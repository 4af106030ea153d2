from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from cold_storage.models import LedgerEntryType


class GatePassCreate(BaseModel):
    customer_id: int
    thock_number: str = Field(min_length=1, max_length=64)
    requested_quantity: int = Field(gt=0)
    payment_verified: bool = False
    payment_amount: Decimal | None = Field(default=None, ge=0)
    family_member_id: int | None = None
    family_member_name: str | None = None
    remarks: str | None = None


class PortalGatePassCreate(BaseModel):
    thock_number: str = Field(min_length=1, max_length=64)
    requested_quantity: int = Field(gt=0)
    family_member_id: int | None = None
    family_member_name: str | None = None
    remarks: str | None = None


class GatePassDecision(BaseModel):
    action: Literal['approve', 'reject']
    approved_quantity: int | None = Field(default=None, gt=0)
    gate_no: str | None = None
    remarks: str | None = None
    # Explicit pickup deadline; defaults to the configured window for the pass source.
    approval_expires_at: datetime | None = None


class PickupCreate(BaseModel):
    quantity: int = Field(gt=0)
    room_no: str | None = None
    floor: str | None = None
    remarks: str | None = None


class RoomEntryCreate(BaseModel):
    thock_number: str = Field(min_length=1, max_length=64)
    room_no: str = Field(min_length=1, max_length=16)
    floor: str = Field(min_length=1, max_length=16)
    quantity: int = Field(gt=0)
    gate_no: str | None = None
    quantity_breakdown: str | None = None
    remark: str | None = None
    label_count: int = Field(default=0, ge=0)


class LedgerEntryCreate(BaseModel):
    customer_id: int
    entry_type: LedgerEntryType
    debit: Decimal = Field(default=Decimal('0'), ge=0)
    credit: Decimal = Field(default=Decimal('0'), ge=0)
    family_member_id: int | None = None
    family_member_name: str | None = None
    description: str | None = None
    reference_id: int | None = None
    reference_type: str | None = None
    notes: str | None = None


class OnlinePaymentConfirmation(BaseModel):
    customer_id: int
    amount: Decimal = Field(gt=0)
    external_reference: str = Field(min_length=1, max_length=128)
    family_member_id: int | None = None
    description: str | None = None
    notes: str | None = None


class SettingUpdate(BaseModel):
    value: str = Field(min_length=1)
