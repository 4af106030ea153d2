from __future__ import annotations

import unittest
from unittest.mock import patch

from cold_storage.services import provider_factory
from cold_storage.services.notification_service import (
    GatePassEvent,
    LabelJob,
    LogNotifier,
    NullNotifier,
    dispatch_label_job,
    send_event,
)
from db_fixtures import ExplodingNotifier, RecordingLabelPrinter, RecordingNotifier

EVENT = GatePassEvent(
    event='approved',
    gate_pass_id=7,
    customer_id=3,
    thock_number='1001/100',
    status='APPROVED',
    quantity=40,
    total_picked_up=0,
)


class SendEventTests(unittest.TestCase):
    def test_delivers_to_notifier(self) -> None:
        notifier = RecordingNotifier()
        self.assertTrue(send_event(notifier, EVENT))
        self.assertEqual(notifier.events, [EVENT])

    def test_failures_are_logged_not_raised(self) -> None:
        with self.assertLogs('cold_storage.services.notification_service', level='WARNING') as logs:
            self.assertFalse(send_event(ExplodingNotifier(), EVENT))
        self.assertIn('gate pass 7', logs.output[0])

    def test_missing_notifier_is_a_no_op(self) -> None:
        self.assertFalse(send_event(None, EVENT))


class LabelJobTests(unittest.TestCase):
    def test_zero_labels_skip_the_printer(self) -> None:
        printer = RecordingLabelPrinter()
        job = LabelJob(thock_number='T1', room_no='1', floor='1', quantity=10, label_count=0)
        self.assertFalse(dispatch_label_job(printer, job))
        self.assertEqual(printer.jobs, [])


class ProviderFactoryTests(unittest.TestCase):
    def tearDown(self) -> None:
        provider_factory.get_notifier.cache_clear()
        provider_factory.get_label_printer.cache_clear()

    def test_disabled_providers(self) -> None:
        provider_factory.get_notifier.cache_clear()
        provider_factory.get_label_printer.cache_clear()
        with patch.object(provider_factory.settings, 'notification_provider', 'disabled'), patch.object(
            provider_factory.settings, 'label_printer_provider', 'disabled'
        ):
            self.assertIsInstance(provider_factory.get_notifier(), NullNotifier)
            self.assertIsNone(provider_factory.get_label_printer())

    def test_log_provider_is_default(self) -> None:
        provider_factory.get_notifier.cache_clear()
        with patch.object(provider_factory.settings, 'notification_provider', 'log'):
            self.assertIsInstance(provider_factory.get_notifier(), LogNotifier)


if __name__ == '__main__':
    unittest.main()
