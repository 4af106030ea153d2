from fastapi import Request

from cold_storage.services.notification_service import LabelPrinter, Notifier
from cold_storage.services.provider_factory import get_label_printer, get_notifier


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def notifier_dependency() -> Notifier:
    return get_notifier()


def label_printer_dependency() -> LabelPrinter | None:
    return get_label_printer()
