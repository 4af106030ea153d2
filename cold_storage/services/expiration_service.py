from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, sessionmaker

from cold_storage.models import Entry, GatePass, GatePassStatus
from cold_storage.services.gate_pass_service import expire_gate_pass, serialize_gate_pass
from cold_storage.services.notification_service import Notifier
from cold_storage.services.sort_utils import as_utc

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired_ids: list[int] = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return len(self.expired_ids)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _overdue_condition(now: datetime):
    return or_(
        and_(GatePass.status == GatePassStatus.PENDING, GatePass.expires_at < now),
        and_(
            GatePass.status.in_([GatePassStatus.APPROVED, GatePassStatus.PARTIALLY_COMPLETED]),
            GatePass.approval_expires_at < now,
        ),
    )


def find_overdue_gate_passes(db: Session, *, now: datetime, lock: bool = False) -> list[GatePass]:
    query = (
        select(GatePass)
        .join(Entry, Entry.id == GatePass.entry_id)
        .where(_overdue_condition(now), Entry.reconciliation_hold.is_(False))
        .order_by(GatePass.id.asc())
    )
    if lock:
        # Passes held by an in-flight approval or pickup are left for the next run.
        query = query.with_for_update(of=GatePass, skip_locked=True).execution_options(populate_existing=True)
    return db.execute(query).scalars().all()


def run_expiration_sweep(
    db: Session,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> SweepResult:
    """Expire every open pass whose approval or pickup deadline has passed.

    Held quantities return to effective availability as soon as the caller
    commits. Trucks under reconciliation hold are skipped.
    """
    now = now or _now()
    result = SweepResult()
    for gate_pass in find_overdue_gate_passes(db, now=now, lock=True):
        if gate_pass.status == GatePassStatus.PENDING:
            reason = 'Approval deadline passed'
        else:
            reason = 'Pickup window closed'
        expire_gate_pass(db, gate_pass, now=now, reason=reason, notifier=notifier)
        result.expired_ids.append(gate_pass.id)

    if result.expired_ids:
        logger.info('Expiration sweep expired %s gate passes', result.expired_count)
    else:
        logger.debug('Expiration sweep found nothing to expire')
    return result


def list_recently_expired(db: Session, *, days: int, now: datetime | None = None) -> list[dict]:
    now = now or _now()
    since = now - timedelta(days=days)
    rows = db.execute(
        select(GatePass)
        .where(GatePass.status == GatePassStatus.EXPIRED, GatePass.updated_at >= since)
        .order_by(GatePass.updated_at.desc(), GatePass.id.desc())
    ).scalars().all()
    out = []
    for gate_pass in rows:
        payload = serialize_gate_pass(gate_pass, now=now)
        payload['expired_at'] = as_utc(gate_pass.updated_at)
        out.append(payload)
    return out


class ExpirationSweeper:
    """Periodic sweep inside the API process. Each run owns its session and transaction."""

    def __init__(self, session_factory: sessionmaker, *, interval_seconds: int, notifier: Notifier | None = None):
        self._session_factory = session_factory
        self._interval = max(int(interval_seconds), 1)
        self._notifier = notifier
        self._task: asyncio.Task | None = None

    def run_once(self) -> SweepResult:
        with self._session_factory() as db:
            try:
                result = run_expiration_sweep(db, notifier=self._notifier)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return result

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception('Expiration sweep failed; retrying in %s seconds', self._interval)
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info('Expiration sweeper started (every %s seconds)', self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info('Expiration sweeper stopped')
