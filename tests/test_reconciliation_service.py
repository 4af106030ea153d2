from __future__ import annotations

import unittest

from sqlalchemy import delete

from cold_storage.errors import ConsistencyError, ValidationError
from cold_storage.models import Entry, GatePassPickup
from cold_storage.services.gate_pass_service import approve_gate_pass, create_gate_pass, record_pickup
from cold_storage.services.reconciliation_service import (
    find_invariant_violations,
    place_reconciliation_hold,
    release_reconciliation_hold,
    verify_truck_invariants,
)
from db_fixtures import T0, add_customer, add_truck, hours, memory_session_factory

THOCK = '1001/100'


class ReconciliationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        customer = add_customer(self.db)
        self.entry = add_truck(self.db, customer=customer, thock_number=THOCK, expected=100)
        gate_pass = create_gate_pass(
            self.db,
            customer_id=customer.id,
            thock_number=THOCK,
            requested_quantity=40,
            payment_verified=True,
            now=T0,
        )
        self.gate_pass = approve_gate_pass(self.db, gate_pass_id=gate_pass.id, now=T0 + hours(1))
        record_pickup(self.db, gate_pass_id=gate_pass.id, quantity=10, now=T0 + hours(2))

    def tearDown(self) -> None:
        self.db.close()

    def _corrupt(self) -> None:
        # A pickup row the pass total never accounted for.
        self.db.add(
            GatePassPickup(
                gate_pass_id=self.gate_pass.id,
                sequence_no=99,
                pickup_quantity=5,
                room_no='1',
                floor='1',
                picked_up_at=T0 + hours(3),
            )
        )
        self.db.flush()

    def test_consistent_truck_passes(self) -> None:
        self.assertEqual(find_invariant_violations(self.db, entry=self.entry), [])
        verify_truck_invariants(self.db, entry=self.entry)

    def test_drift_between_pickups_and_total_is_detected(self) -> None:
        self._corrupt()
        with self.assertLogs('cold_storage.services.reconciliation_service', level='CRITICAL'):
            with self.assertRaises(ConsistencyError) as ctx:
                verify_truck_invariants(self.db, entry=self.entry)
        self.assertEqual(ctx.exception.thock_number, THOCK)
        self.assertIn('pickups sum to 15', ctx.exception.message)

    def test_hold_blocks_and_release_requires_clean_ledgers(self) -> None:
        self._corrupt()
        place_reconciliation_hold(self.db, thock_number=THOCK, reason='pickup drift')
        self.assertTrue(self.db.get(Entry, self.entry.id).reconciliation_hold)

        with self.assertRaises(ConsistencyError):
            release_reconciliation_hold(self.db, thock_number=THOCK, principal_id=1)

        self.db.execute(delete(GatePassPickup).where(GatePassPickup.sequence_no == 99))
        self.db.flush()
        entry = release_reconciliation_hold(self.db, thock_number=THOCK, principal_id=1)
        self.assertFalse(entry.reconciliation_hold)
        self.assertIsNone(entry.hold_reason)

    def test_release_requires_a_hold(self) -> None:
        with self.assertRaises(ValidationError):
            release_reconciliation_hold(self.db, thock_number=THOCK, principal_id=1)


if __name__ == '__main__':
    unittest.main()
