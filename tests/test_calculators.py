from __future__ import annotations

import unittest
from decimal import Decimal

from cold_storage.services.allowance_service import (
    AllowanceSnapshot,
    calculate_paid_for_items,
    calculate_remaining_allowance,
)
from cold_storage.services.inventory_service import summarize_inventory
from cold_storage.services.sort_utils import slot_sort_key


class InventoryArithmeticTests(unittest.TestCase):
    def test_open_pass_reduces_effective_but_not_current(self) -> None:
        snapshot = summarize_inventory(
            thock_number='T1',
            original_stored=100,
            total_picked_up=0,
            pending_in_open_passes=40,
        )
        self.assertEqual(snapshot.current_inventory, 100)
        self.assertEqual(snapshot.effective_available, 60)

    def test_pickups_reduce_current_inventory(self) -> None:
        snapshot = summarize_inventory(
            thock_number='T1',
            original_stored=100,
            total_picked_up=25,
            pending_in_open_passes=15,
        )
        self.assertEqual(snapshot.current_inventory, 75)
        self.assertEqual(snapshot.effective_available, 60)

    def test_values_never_go_negative(self) -> None:
        snapshot = summarize_inventory(
            thock_number='T1',
            original_stored=10,
            total_picked_up=12,
            pending_in_open_passes=5,
        )
        self.assertEqual(snapshot.current_inventory, 0)
        self.assertEqual(snapshot.effective_available, 0)


class AllowanceArithmeticTests(unittest.TestCase):
    def test_paid_items_are_floored(self) -> None:
        self.assertEqual(calculate_paid_for_items(Decimal('1050'), Decimal('100')), 10)
        self.assertEqual(calculate_paid_for_items(Decimal('99.99'), Decimal('100')), 0)

    def test_zero_rate_means_unlimited(self) -> None:
        self.assertIsNone(calculate_paid_for_items(Decimal('500'), Decimal('0')))
        self.assertIsNone(calculate_remaining_allowance(paid=Decimal('0'), unit_rate=Decimal('0'), withdrawn=40))

    def test_remaining_allowance_subtracts_withdrawals(self) -> None:
        remaining = calculate_remaining_allowance(paid=Decimal('1000'), unit_rate=Decimal('100'), withdrawn=4)
        self.assertEqual(remaining, 6)

    def test_remaining_allowance_floors_at_zero(self) -> None:
        remaining = calculate_remaining_allowance(paid=Decimal('300'), unit_rate=Decimal('100'), withdrawn=5)
        self.assertEqual(remaining, 0)

    def test_open_reservations_reduce_new_request_budget(self) -> None:
        snapshot = AllowanceSnapshot(
            customer_id=1,
            family_member_id=None,
            total_paid=Decimal('1000'),
            unit_rate=Decimal('100'),
            paid_for_items=10,
            withdrawn=2,
            remaining_allowance=8,
            open_reservations=5,
        )
        self.assertFalse(snapshot.unlimited)
        self.assertEqual(snapshot.available_for_new_requests, 3)
        self.assertEqual(snapshot.as_dict()['available_for_new_requests'], 3)


class SlotOrderingTests(unittest.TestCase):
    def test_rooms_sort_numerically(self) -> None:
        slots = [('10', '1'), ('2', '3'), ('2', '1'), ('A', '1')]
        ordered = sorted(slots, key=lambda slot: slot_sort_key(room_no=slot[0], floor=slot[1]))
        self.assertEqual(ordered, [('2', '1'), ('2', '3'), ('10', '1'), ('A', '1')])


if __name__ == '__main__':
    unittest.main()
