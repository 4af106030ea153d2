from __future__ import annotations

import unittest

from cold_storage.errors import InsufficientStockError, NotFoundError, ValidationError
from cold_storage.services.entry_service import register_entry
from cold_storage.services.inventory_service import get_inventory
from cold_storage.services.room_entry_service import create_room_entry, list_room_entries
from db_fixtures import RecordingLabelPrinter, add_customer, add_truck, memory_session_factory

THOCK = '1001/100'


class RoomEntryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.customer = add_customer(self.db)
        add_truck(self.db, customer=self.customer, thock_number=THOCK, expected=100, placements=[])

    def tearDown(self) -> None:
        self.db.close()

    def test_placements_accumulate_up_to_declared_quantity(self) -> None:
        create_room_entry(self.db, thock_number=THOCK, room_no='1', floor='2', quantity=60)
        create_room_entry(self.db, thock_number=THOCK, room_no='2', floor='1', quantity=40)
        self.assertEqual(get_inventory(self.db, thock_number=THOCK).original_stored, 100)

        with self.assertRaises(InsufficientStockError) as ctx:
            create_room_entry(self.db, thock_number=THOCK, room_no='3', floor='1', quantity=1)
        self.assertEqual(ctx.exception.available, 0)

    def test_quantity_must_be_positive(self) -> None:
        with self.assertRaises(ValidationError):
            create_room_entry(self.db, thock_number=THOCK, room_no='1', floor='1', quantity=0)

    def test_room_and_floor_are_required(self) -> None:
        with self.assertRaises(ValidationError):
            create_room_entry(self.db, thock_number=THOCK, room_no=' ', floor='1', quantity=5)

    def test_unknown_truck(self) -> None:
        with self.assertRaises(NotFoundError):
            create_room_entry(self.db, thock_number='9999/1', room_no='1', floor='1', quantity=5)

    def test_listing_is_ordered_by_room_number(self) -> None:
        create_room_entry(self.db, thock_number=THOCK, room_no='10', floor='1', quantity=10)
        create_room_entry(self.db, thock_number=THOCK, room_no='2', floor='3', quantity=10)
        create_room_entry(self.db, thock_number=THOCK, room_no='2', floor='1', quantity=10)
        rows = list_room_entries(self.db, thock_number=THOCK)
        self.assertEqual([(row.room_no, row.floor) for row in rows], [('2', '1'), ('2', '3'), ('10', '1')])

    def test_labels_are_sent_to_printer(self) -> None:
        printer = RecordingLabelPrinter()
        create_room_entry(
            self.db,
            thock_number=THOCK,
            room_no='4',
            floor='2',
            quantity=30,
            label_count=3,
            printer=printer,
        )
        self.assertEqual(len(printer.jobs), 1)
        self.assertEqual(printer.jobs[0].label_count, 3)
        self.assertEqual(printer.jobs[0].room_no, '4')

    def test_printer_failure_keeps_the_placement(self) -> None:
        class BrokenPrinter:
            def print_labels(self, job) -> None:
                raise OSError('printer offline')

        with self.assertLogs('cold_storage.services.notification_service', level='WARNING'):
            row = create_room_entry(
                self.db,
                thock_number=THOCK,
                room_no='4',
                floor='2',
                quantity=30,
                label_count=2,
                printer=BrokenPrinter(),
            )
        self.assertIsNotNone(row.id)
        self.assertEqual(get_inventory(self.db, thock_number=THOCK).original_stored, 30)


class RegisterEntryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.customer = add_customer(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_category_is_validated(self) -> None:
        with self.assertRaises(ValidationError):
            register_entry(
                self.db,
                customer_id=self.customer.id,
                thock_number='T-1',
                expected_quantity=10,
                thock_category='frozen',
            )

    def test_truck_numbers_are_unique(self) -> None:
        register_entry(
            self.db,
            customer_id=self.customer.id,
            thock_number='T-1',
            expected_quantity=10,
            thock_category='seed',
        )
        with self.assertRaises(ValidationError):
            register_entry(
                self.db,
                customer_id=self.customer.id,
                thock_number='T-1',
                expected_quantity=10,
                thock_category='sell',
            )


if __name__ == '__main__':
    unittest.main()
