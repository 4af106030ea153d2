from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cold_storage.errors import ConsistencyError, ExpiredError
from cold_storage.services.reconciliation_service import place_reconciliation_hold

logger = logging.getLogger(__name__)

T = TypeVar('T')


def hold_truck_after_failure(db: Session, exc: ConsistencyError) -> None:
    """Freeze the truck in its own transaction once the failed one is rolled back."""
    try:
        place_reconciliation_hold(db, thock_number=exc.thock_number, reason=exc.message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.critical('Could not place reconciliation hold on truck %s', exc.thock_number, exc_info=True)


def commit_mutation(db: Session, operation: Callable[[], T]) -> T:
    """Run a service mutation and own its transaction.

    An expiry discovered mid-operation is committed before the error reaches
    the client; every other failure rolls the whole operation back.
    """
    try:
        result = operation()
    except ExpiredError:
        db.commit()
        raise
    except ConsistencyError as exc:
        db.rollback()
        hold_truck_after_failure(db, exc)
        raise
    except Exception:
        db.rollback()
        raise
    db.commit()
    return result
