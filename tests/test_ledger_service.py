from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from cold_storage.errors import NotFoundError, ValidationError
from cold_storage.models import LedgerEntry, LedgerEntryType
from cold_storage.services.allowance_service import compute_allowance, get_allowance, list_truck_positions
from cold_storage.services.gate_pass_service import approve_gate_pass, create_gate_pass, record_pickup
from cold_storage.services.ledger_service import (
    PayerRef,
    create_ledger_entry,
    get_balance,
    get_credits_by_family_member,
    get_payment_history,
    get_summary,
    list_debtors,
    record_online_payment,
    recompute_running_balances,
    total_paid,
)
from db_fixtures import (
    T0,
    add_customer,
    add_family_member,
    add_payment,
    add_truck,
    hours,
    memory_session_factory,
    set_unit_rate,
)


class LedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.customer = add_customer(self.db)
        self.member = add_family_member(self.db, customer=self.customer)
        self.payer = PayerRef(customer_id=self.customer.id)

    def tearDown(self) -> None:
        self.db.close()

    def _charge(self, amount: str, **kwargs) -> LedgerEntry:
        return create_ledger_entry(
            self.db,
            customer_id=self.customer.id,
            entry_type=LedgerEntryType.CHARGE,
            debit=Decimal(amount),
            **kwargs,
        )

    def test_running_balance_tracks_debits_and_credits(self) -> None:
        first = self._charge('1000')
        second = add_payment(self.db, customer=self.customer, amount='400')
        self.assertEqual(first.running_balance, Decimal('1000.00'))
        self.assertEqual(second.running_balance, Decimal('600.00'))
        self.assertEqual(get_balance(self.db, self.payer), Decimal('600.00'))

    def test_running_balance_is_kept_per_sub_payer(self) -> None:
        self._charge('1000')
        member_charge = self._charge('300', family_member_id=self.member.id)
        self.assertEqual(member_charge.running_balance, Decimal('300.00'))
        self.assertEqual(member_charge.family_member_name, self.member.name)
        self.assertEqual(
            get_balance(self.db, PayerRef(customer_id=self.customer.id, family_member_id=self.member.id)),
            Decimal('300.00'),
        )
        self.assertEqual(get_balance(self.db, self.payer), Decimal('1300.00'))
        self.assertEqual(recompute_running_balances(self.db, customer_id=self.customer.id), [])

    def test_amounts_are_validated(self) -> None:
        with self.assertRaises(ValidationError):
            self._charge('-5')
        with self.assertRaises(ValidationError):
            self._charge('0')
        with self.assertRaises(ValidationError):
            create_ledger_entry(self.db, customer_id=self.customer.id, entry_type='BONUS', debit=Decimal('1'))

    def test_unknown_customer(self) -> None:
        with self.assertRaises(NotFoundError):
            create_ledger_entry(self.db, customer_id=999, entry_type=LedgerEntryType.CHARGE, debit=Decimal('1'))

    def test_summary_and_history(self) -> None:
        self._charge('1000')
        add_payment(self.db, customer=self.customer, amount='250')
        add_payment(self.db, customer=self.customer, amount='150')
        summary = get_summary(self.db, self.payer)
        self.assertEqual(summary.total_debit, Decimal('1000.00'))
        self.assertEqual(summary.total_credit, Decimal('400.00'))
        self.assertEqual(summary.current_balance, Decimal('600.00'))
        self.assertEqual(summary.entry_count, 3)
        history = get_payment_history(self.db, self.payer, limit=1)
        self.assertEqual(len(history), 1)

    def test_refunds_do_not_count_as_paid(self) -> None:
        add_payment(self.db, customer=self.customer, amount='500')
        create_ledger_entry(
            self.db,
            customer_id=self.customer.id,
            entry_type=LedgerEntryType.REFUND,
            credit=Decimal('100'),
        )
        self.assertEqual(total_paid(self.db, self.payer), Decimal('500.00'))

    def test_credits_grouped_by_family_member(self) -> None:
        add_payment(self.db, customer=self.customer, amount='500')
        add_payment(self.db, customer=self.customer, amount='800', family_member_id=self.member.id)
        rows = get_credits_by_family_member(self.db, customer_id=self.customer.id)
        self.assertEqual(rows[0]['family_member_id'], self.member.id)
        self.assertEqual(rows[0]['total_credit'], Decimal('800.00'))
        self.assertEqual(rows[1]['family_member_id'], None)

    def test_debtors_lists_positive_balances_only(self) -> None:
        other = add_customer(self.db, name='Paid Up', phone='9000000002')
        self._charge('700')
        create_ledger_entry(self.db, customer_id=other.id, entry_type=LedgerEntryType.CHARGE, debit=Decimal('100'))
        add_payment(self.db, customer=other, amount='100')
        debtors = list_debtors(self.db)
        self.assertEqual([row['customer_id'] for row in debtors], [self.customer.id])
        self.assertEqual(debtors[0]['current_balance'], Decimal('700.00'))

    def test_online_payment_is_idempotent(self) -> None:
        entry, created = record_online_payment(
            self.db,
            customer_id=self.customer.id,
            amount=Decimal('1200'),
            external_reference='UTR123',
        )
        again, created_again = record_online_payment(
            self.db,
            customer_id=self.customer.id,
            amount=Decimal('1200'),
            external_reference='UTR123',
        )
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(entry.id, again.id)
        self.assertEqual(entry.entry_type, LedgerEntryType.ONLINE_PAYMENT)
        self.assertEqual(total_paid(self.db, self.payer), Decimal('1200.00'))

    def test_online_payment_reference_cannot_move_between_customers(self) -> None:
        other = add_customer(self.db, name='Other', phone='9000000002')
        record_online_payment(self.db, customer_id=self.customer.id, amount=Decimal('10'), external_reference='UTR9')
        with self.assertRaises(ValidationError):
            record_online_payment(self.db, customer_id=other.id, amount=Decimal('10'), external_reference='UTR9')

    def test_reference_claimed_by_another_customer_mid_request_is_refused(self) -> None:
        other = add_customer(self.db, name='Other', phone='9000000002')
        record_online_payment(self.db, customer_id=self.customer.id, amount=Decimal('10'), external_reference='UTR77')
        self.db.commit()

        # The other customer's lookup ran before the first payment was visible.
        with patch('cold_storage.services.ledger_service.find_online_payment', return_value=None):
            with self.assertRaises(ValidationError) as caught:
                record_online_payment(
                    self.db,
                    customer_id=other.id,
                    amount=Decimal('10'),
                    external_reference='UTR77',
                )
        self.assertIn('UTR77', caught.exception.message)
        self.db.rollback()
        self.assertEqual(total_paid(self.db, PayerRef(customer_id=other.id)), Decimal('0.00'))


class AllowanceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.customer = add_customer(self.db)
        add_truck(self.db, customer=self.customer, thock_number='1001/100', expected=100)
        add_truck(self.db, customer=self.customer, thock_number='1002/80', expected=80)
        set_unit_rate(self.db, '100')
        add_payment(self.db, customer=self.customer, amount='2050')
        self.payer = PayerRef(customer_id=self.customer.id)

    def tearDown(self) -> None:
        self.db.close()

    def _withdraw(self, thock_number: str, quantity: int) -> None:
        gate_pass = create_gate_pass(
            self.db,
            customer_id=self.customer.id,
            thock_number=thock_number,
            requested_quantity=quantity,
            payment_verified=True,
            now=T0,
        )
        approve_gate_pass(self.db, gate_pass_id=gate_pass.id, now=T0 + hours(1))
        record_pickup(self.db, gate_pass_id=gate_pass.id, quantity=quantity, now=T0 + hours(2))

    def test_withdrawals_span_all_trucks(self) -> None:
        self._withdraw('1001/100', 5)
        self._withdraw('1002/80', 7)
        allowance = compute_allowance(self.db, self.payer)
        self.assertEqual(allowance.paid_for_items, 20)
        self.assertEqual(allowance.withdrawn, 12)
        self.assertEqual(allowance.remaining_allowance, 8)

    def test_unknown_family_member(self) -> None:
        with self.assertRaises(NotFoundError):
            get_allowance(self.db, PayerRef(customer_id=self.customer.id, family_member_id=42))

    def test_truck_positions_cap_by_allowance(self) -> None:
        self._withdraw('1001/100', 15)
        positions = {row['thock_number']: row for row in list_truck_positions(self.db, customer_id=self.customer.id)}
        self.assertEqual(positions['1001/100']['current_inventory'], 85)
        self.assertEqual(positions['1001/100']['can_take_out'], 5)
        self.assertEqual(positions['1002/80']['can_take_out'], 5)


if __name__ == '__main__':
    unittest.main()
