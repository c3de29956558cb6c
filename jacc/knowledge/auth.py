"""Session resolution.

Login and password handling live outside this service. A session id is
issued elsewhere (or by ``jacc-admin open-session``) and presented as a
bearer token; the store maps it to a user id and role.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.config import settings
from knowledge.db import get_session
from knowledge.models import Role, UserSession

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    user_id: str
    role: Role
    expires_at: datetime


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SessionStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> SessionInfo | None:
        """Resolve a live session; expired sessions resolve to None."""

    @abstractmethod
    async def set(self, session_id: str, user_id: str, role: Role) -> SessionInfo: ...

    @abstractmethod
    async def revoke(self, session_id: str) -> None: ...

    async def open(self, user_id: str, role: Role) -> tuple[str, SessionInfo]:
        """Issue a fresh session id."""
        session_id = secrets.token_urlsafe(32)
        info = await self.set(session_id, user_id, role)
        return session_id, info


class InMemorySessionStore(SessionStore):
    def __init__(self, ttl: timedelta | None = None):
        self.ttl = ttl or timedelta(hours=settings.session_ttl_hours)
        self._sessions: dict[str, SessionInfo] = {}

    async def get(self, session_id: str) -> SessionInfo | None:
        info = self._sessions.get(session_id)
        if info and info.expires_at <= datetime.utcnow():
            del self._sessions[session_id]
            return None
        return info

    async def set(self, session_id: str, user_id: str, role: Role) -> SessionInfo:
        info = SessionInfo(user_id=user_id, role=role, expires_at=datetime.utcnow() + self.ttl)
        self._sessions[session_id] = info
        return info

    async def revoke(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class DatabaseSessionStore(SessionStore):
    """Sessions persisted in the user_session table."""

    def __init__(self, session: AsyncSession, ttl: timedelta | None = None):
        self.session = session
        self.ttl = ttl or timedelta(hours=settings.session_ttl_hours)

    async def get(self, session_id: str) -> SessionInfo | None:
        row = await self.session.get(UserSession, session_id)
        if not row:
            return None
        expires_at = _naive_utc(row.expires_at)
        if expires_at <= datetime.utcnow():
            return None
        return SessionInfo(user_id=row.user_id, role=row.role, expires_at=expires_at)

    async def set(self, session_id: str, user_id: str, role: Role) -> SessionInfo:
        expires_at = datetime.utcnow() + self.ttl
        row = await self.session.get(UserSession, session_id)
        if row:
            row.user_id = user_id
            row.role = role
            row.expires_at = expires_at
        else:
            self.session.add(
                UserSession(
                    session_id=session_id, user_id=user_id, role=role, expires_at=expires_at
                )
            )
        await self.session.commit()
        return SessionInfo(user_id=user_id, role=role, expires_at=expires_at)

    async def revoke(self, session_id: str) -> None:
        await self.session.execute(delete(UserSession).where(UserSession.session_id == session_id))
        await self.session.commit()


@dataclass
class RequestContext:
    """Per-request context: the DB session and the resolved caller."""

    session: AsyncSession
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_session_store(session: AsyncSession = Depends(get_session)) -> SessionStore:
    return DatabaseSessionStore(session)


async def get_request_context(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
) -> RequestContext:
    """
    FastAPI dependency that resolves the bearer session id.

    Raises 401 if the header is missing or the session is unknown or expired.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session_id = authorization[7:].strip()
    info = await store.get(session_id)
    if not info:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or unknown",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return RequestContext(session=session, user_id=info.user_id, role=info.role)


async def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return ctx
