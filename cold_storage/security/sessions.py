from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from sqlalchemy import select

from cold_storage.auth import Principal, Role
from cold_storage.config import settings
from cold_storage.db import SessionLocal
from cold_storage.models import Principal as PrincipalModel
from cold_storage.models import WebSession
from cold_storage.services.sort_utils import as_utc


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization') or ''
    scheme, _, value = header.partition(' ')
    if scheme.lower() == 'bearer' and value.strip():
        return value.strip()
    return None


def load_principal_from_token(db, token: str | None) -> Principal | None:
    """Resolve a session token issued by the login service. Unknown, revoked or expired tokens resolve to None."""
    if not token:
        return None

    row = db.execute(
        select(WebSession, PrincipalModel)
        .join(PrincipalModel, PrincipalModel.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, principal = row
    now = _now()
    if web_session.revoked_at is not None or as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    role = Role(principal.role.value if hasattr(principal.role, 'value') else principal.role)
    return Principal(
        id=principal.id,
        username=principal.username,
        role=role,
        customer_id=principal.customer_id,
        active=principal.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name) or _bearer_token(request)
        request.state.principal = None
        if token:
            with SessionLocal() as db:
                request.state.principal = load_principal_from_token(db, token)
                db.commit()
        return await call_next(request)
