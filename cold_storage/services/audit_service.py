from __future__ import annotations

from sqlalchemy.orm import Session

from cold_storage.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    gate_pass_id: int | None = None,
    thock_number: str | None = None,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            action=action,
            gate_pass_id=gate_pass_id,
            thock_number=thock_number,
            ip=ip,
            meta=metadata or {},
        )
    )
