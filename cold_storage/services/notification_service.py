from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_OUTBOX_KEY = 'gate_pass_notifications'


@dataclass(frozen=True)
class GatePassEvent:
    event: str
    gate_pass_id: int
    customer_id: int
    thock_number: str
    status: str
    quantity: int
    total_picked_up: int


@dataclass(frozen=True)
class LabelJob:
    thock_number: str
    room_no: str
    floor: str
    quantity: int
    label_count: int


class Notifier(Protocol):
    def send(self, event: GatePassEvent) -> None: ...


class LabelPrinter(Protocol):
    def print_labels(self, job: LabelJob) -> None: ...


class LogNotifier:
    def send(self, event: GatePassEvent) -> None:
        logger.info(
            'Notify customer %s: gate pass %s %s (truck %s, qty %s, picked %s)',
            event.customer_id,
            event.gate_pass_id,
            event.event,
            event.thock_number,
            event.quantity,
            event.total_picked_up,
        )


class NullNotifier:
    def send(self, event: GatePassEvent) -> None:
        return None


class LogLabelPrinter:
    def print_labels(self, job: LabelJob) -> None:
        logger.info(
            'Print %s labels for truck %s at room %s floor %s',
            job.label_count,
            job.thock_number,
            job.room_no,
            job.floor,
        )


def build_gate_pass_event(event_name: str, gate_pass) -> GatePassEvent:
    status = gate_pass.status.value if hasattr(gate_pass.status, 'value') else str(gate_pass.status)
    return GatePassEvent(
        event=event_name,
        gate_pass_id=gate_pass.id,
        customer_id=gate_pass.customer_id,
        thock_number=gate_pass.thock_number,
        status=status,
        quantity=gate_pass.authorized_quantity,
        total_picked_up=gate_pass.total_picked_up,
    )


def send_event(notifier: Notifier | None, gate_pass_event: GatePassEvent) -> bool:
    if notifier is None:
        return False
    try:
        notifier.send(gate_pass_event)
    except Exception:
        logger.warning(
            'Notification %s for gate pass %s failed',
            gate_pass_event.event,
            gate_pass_event.gate_pass_id,
            exc_info=True,
        )
        return False
    return True


def queue_gate_pass_event(db: Session, notifier: Notifier | None, event_name: str, gate_pass) -> None:
    """Hold a notification until the session commits; a rollback discards it."""
    if notifier is None:
        return
    db.info.setdefault(_OUTBOX_KEY, []).append((notifier, build_gate_pass_event(event_name, gate_pass)))


@event.listens_for(Session, 'after_commit')
def _send_queued_events(session: Session) -> None:
    for notifier, gate_pass_event in session.info.pop(_OUTBOX_KEY, []):
        send_event(notifier, gate_pass_event)


@event.listens_for(Session, 'after_rollback')
def _discard_queued_events(session: Session) -> None:
    session.info.pop(_OUTBOX_KEY, None)


def dispatch_label_job(printer: LabelPrinter | None, job: LabelJob) -> bool:
    if printer is None or job.label_count <= 0:
        return False
    try:
        printer.print_labels(job)
    except Exception:
        logger.warning('Label printing for truck %s failed', job.thock_number, exc_info=True)
        return False
    return True
