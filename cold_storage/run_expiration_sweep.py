from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone

from cold_storage.config import settings
from cold_storage.db import SessionLocal
from cold_storage.models import GatePassStatus
from cold_storage.services.expiration_service import find_overdue_gate_passes, run_expiration_sweep
from cold_storage.services.provider_factory import get_notifier
from cold_storage.services.sort_utils import as_utc


def sweep(*, dry_run: bool = False) -> list[int]:
    with SessionLocal() as db:
        if dry_run:
            overdue = find_overdue_gate_passes(db, now=datetime.now(tz=timezone.utc))
            for gate_pass in overdue:
                if gate_pass.status == GatePassStatus.PENDING:
                    deadline = gate_pass.expires_at
                else:
                    deadline = gate_pass.approval_expires_at
                print(
                    f'would expire gate pass {gate_pass.id} '
                    f'(truck {gate_pass.thock_number}, {gate_pass.status.value}, deadline {as_utc(deadline)})'
                )
            return [gate_pass.id for gate_pass in overdue]

        try:
            result = run_expiration_sweep(db, notifier=get_notifier())
            db.commit()
        except Exception:
            db.rollback()
            raise
        return result.expired_ids


def main() -> None:
    parser = argparse.ArgumentParser(description='Expire gate passes whose approval or pickup deadline has passed.')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List the gate passes that would expire without changing them.',
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    expired = sweep(dry_run=args.dry_run)
    label = 'would_expire' if args.dry_run else 'expired'
    print(f'Expiration sweep complete: {label}={len(expired)}')


if __name__ == '__main__':
    main()
