from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from cold_storage.models import OPEN_GATE_PASS_STATUSES, GatePass, GatePassPickup
from cold_storage.services.entry_service import get_customer, get_family_member, list_entries_for_customer
from cold_storage.services.inventory_service import compute_inventory
from cold_storage.services.ledger_service import PayerRef, total_paid
from cold_storage.services.settings_service import resolve_unit_rate


@dataclass(frozen=True)
class AllowanceSnapshot:
    customer_id: int
    family_member_id: int | None
    total_paid: Decimal
    unit_rate: Decimal
    paid_for_items: int | None
    withdrawn: int
    remaining_allowance: int | None
    open_reservations: int

    @property
    def unlimited(self) -> bool:
        return self.remaining_allowance is None

    @property
    def available_for_new_requests(self) -> int | None:
        if self.remaining_allowance is None:
            return None
        return max(self.remaining_allowance - self.open_reservations, 0)

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload['unlimited'] = self.unlimited
        payload['available_for_new_requests'] = self.available_for_new_requests
        return payload


def calculate_paid_for_items(paid: Decimal, unit_rate: Decimal) -> int | None:
    """Whole items covered by ``paid`` at ``unit_rate``; ``None`` when the rate is unset."""
    if unit_rate is None or unit_rate <= 0:
        return None
    if paid <= 0:
        return 0
    return int((Decimal(paid) / Decimal(unit_rate)).to_integral_value(rounding=ROUND_FLOOR))


def calculate_remaining_allowance(*, paid: Decimal, unit_rate: Decimal, withdrawn: int) -> int | None:
    paid_for = calculate_paid_for_items(paid, unit_rate)
    if paid_for is None:
        return None
    return max(paid_for - withdrawn, 0)


def _gate_pass_payer_condition(payer: PayerRef):
    if payer.family_member_id is None:
        return GatePass.customer_id == payer.customer_id
    return and_(GatePass.customer_id == payer.customer_id, GatePass.family_member_id == payer.family_member_id)


def withdrawn_by_payer(db: Session, payer: PayerRef) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(GatePassPickup.pickup_quantity), 0))
        .join(GatePass, GatePass.id == GatePassPickup.gate_pass_id)
        .where(_gate_pass_payer_condition(payer))
    ).scalar_one()
    return int(total or 0)


def open_reservations_for_payer(db: Session, payer: PayerRef) -> int:
    rows = db.execute(
        select(GatePass.requested_quantity, GatePass.approved_quantity, GatePass.total_picked_up).where(
            _gate_pass_payer_condition(payer),
            GatePass.status.in_(OPEN_GATE_PASS_STATUSES),
        )
    ).all()
    reserved = 0
    for row in rows:
        authorized = row.approved_quantity if row.approved_quantity is not None else row.requested_quantity
        reserved += max(authorized - row.total_picked_up, 0)
    return reserved


def compute_allowance(db: Session, payer: PayerRef, *, unit_rate: Decimal | None = None) -> AllowanceSnapshot:
    rate = resolve_unit_rate(db) if unit_rate is None else Decimal(unit_rate)
    paid = total_paid(db, payer)
    withdrawn = withdrawn_by_payer(db, payer)
    return AllowanceSnapshot(
        customer_id=payer.customer_id,
        family_member_id=payer.family_member_id,
        total_paid=paid,
        unit_rate=rate,
        paid_for_items=calculate_paid_for_items(paid, rate),
        withdrawn=withdrawn,
        remaining_allowance=calculate_remaining_allowance(paid=paid, unit_rate=rate, withdrawn=withdrawn),
        open_reservations=open_reservations_for_payer(db, payer),
    )


def get_allowance(db: Session, payer: PayerRef) -> AllowanceSnapshot:
    get_customer(db, payer.customer_id)
    if payer.family_member_id is not None:
        get_family_member(db, customer_id=payer.customer_id, family_member_id=payer.family_member_id)
    return compute_allowance(db, payer)


def list_truck_positions(db: Session, *, customer_id: int) -> list[dict]:
    get_customer(db, customer_id)
    allowance = compute_allowance(db, PayerRef(customer_id=customer_id))
    budget = allowance.available_for_new_requests

    positions = []
    for entry in list_entries_for_customer(db, customer_id=customer_id):
        inventory = compute_inventory(db, thock_number=entry.thock_number)
        can_take_out = inventory.effective_available
        if budget is not None:
            can_take_out = min(can_take_out, budget)
        positions.append(
            {
                'thock_number': entry.thock_number,
                'entry_id': entry.id,
                'expected_quantity': entry.expected_quantity,
                'thock_category': entry.thock_category.value,
                'original_stored': inventory.original_stored,
                'current_inventory': inventory.current_inventory,
                'pending_in_open_passes': inventory.pending_in_open_passes,
                'effective_available': inventory.effective_available,
                'can_take_out': can_take_out,
                'on_hold': entry.reconciliation_hold,
            }
        )
    return positions
