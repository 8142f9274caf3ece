# auth.py - session lookup, system-secret callers and ownership checks

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from config import settings
from config.constants import SYSTEM_SECRET_HEADER
from database import db_call, db_commit, db_execute, get_db
from errors import Forbidden, NotFound, Unauthenticated
from models import User, UserSession

logger = logging.getLogger(__name__)


@dataclass
class Caller:
    """Either a signed-in user or the trusted system (shared secret)"""
    user: Optional[User] = None
    is_system: bool = False

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def label(self) -> str:
        return "system" if self.is_system else f"user {self.user_id}"


def system_secret_matches(provided: Optional[str]) -> bool:
    """Exact match against JOB_SYSTEM_SECRET; an unset secret never matches"""
    expected = settings.JOB_SYSTEM_SECRET
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def resolve_session_user(db: Session, session_id: Optional[str]) -> Optional[User]:
    if not session_id:
        return None

    now = datetime.now(timezone.utc)
    result = await db_execute(
        db,
        select(UserSession).where(
            and_(
                UserSession.session_id == session_id,
                UserSession.is_active == True,  # noqa: E712
                UserSession.expires_at > now,
            )
        ),
    )
    session = result.scalars().first()
    if not session:
        logger.warning(f"No active session found for ID: {session_id[:8]}...")
        return None

    user = await db_call(db.get, User, session.user_id)
    if not user:
        logger.warning(f"Session {session_id[:8]}... points at a missing user")
        return None

    session.last_active = now
    await db_commit(db)
    return user


async def login_required(request: Request, db: Session = Depends(get_db)) -> User:
    """Resolve the session cookie to a user or raise Unauthenticated"""
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id:
        raise Unauthenticated()

    user = await resolve_session_user(db, session_id)
    if not user:
        raise Unauthenticated("Session expired")

    request.state.user = user
    return user


async def optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    user = await resolve_session_user(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    if user:
        request.state.user = user
    return user


async def system_or_owner(request: Request, db: Session = Depends(get_db)) -> Caller:
    """Shared-secret header first, then the session cookie"""
    if system_secret_matches(request.headers.get(SYSTEM_SECRET_HEADER)):
        return Caller(is_system=True)
    if request.headers.get(SYSTEM_SECRET_HEADER):
        logger.warning(f"Rejected system secret from {request.client.host if request.client else 'unknown'}")

    user = await resolve_session_user(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    if not user:
        raise Unauthenticated()
    request.state.user = user
    return Caller(user=user)


async def system_only(request: Request) -> Caller:
    if not system_secret_matches(request.headers.get(SYSTEM_SECRET_HEADER)):
        raise Unauthenticated("System secret required")
    return Caller(is_system=True)


async def admin_required(user: User = Depends(login_required)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


def assert_owner(entity, user_id: Optional[str], label: str = "Resource"):
    """NotFound when missing, Forbidden when owned by someone else"""
    if entity is None:
        raise NotFound(f"{label} not found")
    if entity.user_id != user_id:
        raise Forbidden(f"{label} belongs to another user")
    return entity


def assert_caller_may_access(entity, caller: Caller, label: str = "Resource"):
    if entity is None:
        raise NotFound(f"{label} not found")
    if caller.is_system:
        return entity
    return assert_owner(entity, caller.user_id, label)


__all__ = [
    'Caller',
    'login_required',
    'optional_user',
    'system_or_owner',
    'system_only',
    'admin_required',
    'assert_owner',
    'assert_caller_may_access',
    'resolve_session_user',
    'system_secret_matches',
]
