from __future__ import annotations

from functools import lru_cache

from cold_storage.config import settings
from cold_storage.services.notification_service import LogLabelPrinter, LogNotifier, NullNotifier


@lru_cache(maxsize=1)
def get_notifier():
    provider = settings.notification_provider.strip().lower()
    if provider == 'disabled':
        return NullNotifier()
    return LogNotifier()


@lru_cache(maxsize=1)
def get_label_printer():
    provider = settings.label_printer_provider.strip().lower()
    if provider == 'disabled':
        return None
    return LogLabelPrinter()
