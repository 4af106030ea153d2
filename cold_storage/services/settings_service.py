from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from cold_storage.config import settings
from cold_storage.errors import ValidationError
from cold_storage.models import SystemSetting

logger = logging.getLogger(__name__)

RENT_PER_ITEM_KEY = 'rent_per_item'

_VALIDATORS = {
    RENT_PER_ITEM_KEY: 'decimal',
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_decimal(raw: str, *, key: str) -> Decimal:
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValidationError(f'Invalid value for {key}: {raw!r}') from exc
    if not value.is_finite() or value < 0:
        raise ValidationError(f'{key} must be a non-negative number')
    return value


def get_setting(db: Session, key: str) -> SystemSetting | None:
    return db.execute(select(SystemSetting).where(SystemSetting.key == key)).scalar_one_or_none()


def set_setting(db: Session, *, key: str, value: str, principal_id: int | None) -> SystemSetting:
    clean_key = (key or '').strip()
    if clean_key not in _VALIDATORS:
        raise ValidationError(f'Unknown setting: {key}')
    clean_value = (value or '').strip()
    if _VALIDATORS[clean_key] == 'decimal':
        clean_value = str(_parse_decimal(clean_value, key=clean_key))

    row = get_setting(db, clean_key)
    if row:
        row.value = clean_value
        row.updated_by_principal_id = principal_id
        row.updated_at = _now()
    else:
        row = SystemSetting(key=clean_key, value=clean_value, updated_by_principal_id=principal_id, updated_at=_now())
        db.add(row)
    db.flush()
    logger.info('System setting %s set to %s by principal %s', clean_key, clean_value, principal_id)
    return row


def resolve_unit_rate(db: Session) -> Decimal:
    row = get_setting(db, RENT_PER_ITEM_KEY)
    if row:
        try:
            return _parse_decimal(row.value, key=RENT_PER_ITEM_KEY)
        except ValidationError:
            logger.warning('Ignoring unparseable %s setting %r', RENT_PER_ITEM_KEY, row.value)
    return Decimal(settings.rent_per_item)
