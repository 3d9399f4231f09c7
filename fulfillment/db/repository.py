"""Repository layer for database CRUD operations."""

from datetime import UTC, datetime
from typing import cast

from sqlalchemy import CursorResult, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.db.models import Authorization, Download, LoginSession, PollResponse, User


def ensure_utc(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware (SQLite stores naive datetimes)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _rowcount(result: object) -> int:
    # UPDATE returns CursorResult which has rowcount
    return cast(CursorResult[tuple[()]], result).rowcount or 0


# =============================================================================
# User Repository
# =============================================================================


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    """Get user by ID."""
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email_hmac(session: AsyncSession, email_hmac: str) -> User | None:
    """Get user by email identifier."""
    result = await session.execute(select(User).where(User.email_hmac == email_hmac))
    return result.scalar_one_or_none()


async def set_login_token(session: AsyncSession, user: User, token: str | None) -> User:
    """Replace the user's pending login token."""
    user.login_token = token
    await session.flush()
    return user


async def upsert_user(session: AsyncSession, email_hmac: str, login_token: str) -> User:
    """Create the user if missing, and set a fresh pending login token."""
    user = await get_user_by_email_hmac(session, email_hmac)
    if user is None:
        user = User(email_hmac=email_hmac, login_token=login_token)
        session.add(user)
        await session.flush()
        return user
    return await set_login_token(session, user, login_token)


async def consume_login_token(session: AsyncSession, user_id: int, token: str) -> bool:
    """Clear the pending login token if it still equals ``token``.

    Returns False when another request consumed or replaced it first.
    """
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.login_token == token)
        .values(login_token=None)
    )
    return _rowcount(result) == 1


# =============================================================================
# Session Repository
# =============================================================================


async def create_login_session(
    session: AsyncSession,
    user_id: int,
    token: str,
    verification_code: str,
) -> LoginSession:
    """Create a new valid session."""
    login_session = LoginSession(
        user_id=user_id, token=token, verification_code=verification_code, valid=True
    )
    session.add(login_session)
    await session.flush()
    return login_session


async def get_login_session_by_token(session: AsyncSession, token: str) -> LoginSession | None:
    """Get session by token."""
    result = await session.execute(select(LoginSession).where(LoginSession.token == token))
    return result.scalar_one_or_none()


async def list_recent_session_ids(session: AsyncSession, user_id: int, limit: int) -> list[int]:
    """IDs of the user's ``limit`` most recently created sessions."""
    if limit <= 0:
        return []
    result = await session.execute(
        select(LoginSession.id)
        .where(LoginSession.user_id == user_id)
        .order_by(LoginSession.created_at.desc(), LoginSession.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def invalidate_sessions_except(
    session: AsyncSession, user_id: int, keep_ids: list[int]
) -> int:
    """Mark every session of the user not in ``keep_ids`` invalid. Returns count."""
    query = update(LoginSession).where(
        LoginSession.user_id == user_id, LoginSession.valid == True  # noqa: E712
    )
    if keep_ids:
        query = query.where(LoginSession.id.not_in(keep_ids))
    result = await session.execute(query.values(valid=False))
    return _rowcount(result)


async def list_user_sessions(session: AsyncSession, user_id: int) -> list[LoginSession]:
    """List all sessions for a user, newest first."""
    result = await session.execute(
        select(LoginSession)
        .where(LoginSession.user_id == user_id)
        .order_by(LoginSession.created_at.desc(), LoginSession.id.desc())
    )
    return list(result.scalars().all())


# =============================================================================
# Authorization Repository
# =============================================================================


async def get_authorization(session: AsyncSession, path: str, user_id: int) -> Authorization | None:
    """Get the grant for a (path, user) pair."""
    result = await session.execute(
        select(Authorization).where(Authorization.path == path, Authorization.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def upsert_authorization(
    session: AsyncSession, path: str, user_id: int, expires_on: datetime
) -> Authorization:
    """Refresh the expiry of an existing grant, or create it."""
    authorization = await get_authorization(session, path, user_id)
    if authorization is None:
        authorization = Authorization(path=path, user_id=user_id, expires_on=expires_on)
        session.add(authorization)
    else:
        authorization.expires_on = expires_on
    await session.flush()
    return authorization


async def list_user_authorizations(session: AsyncSession, user_id: int) -> list[Authorization]:
    """List all grants for a user, ordered by path."""
    result = await session.execute(
        select(Authorization).where(Authorization.user_id == user_id).order_by(Authorization.path)
    )
    return list(result.scalars().all())


# =============================================================================
# Download Repository
# =============================================================================


async def create_download(
    session: AsyncSession, path: str, filename: str, token: str
) -> Download:
    """Create a download grant whose clock has not started."""
    download = Download(path=path, filename=filename, token=token, expires_on=None)
    session.add(download)
    await session.flush()
    return download


async def get_download_by_token(session: AsyncSession, token: str) -> Download | None:
    """Get download grant by token."""
    result = await session.execute(select(Download).where(Download.token == token))
    return result.scalar_one_or_none()


async def start_download_clock(
    session: AsyncSession, download_id: int, expires_on: datetime
) -> bool:
    """Set the expiry of a never-redeemed grant. Returns False if already started."""
    result = await session.execute(
        update(Download)
        .where(Download.id == download_id, Download.expires_on.is_(None))
        .values(expires_on=expires_on)
    )
    return _rowcount(result) == 1


# =============================================================================
# Poll Repository
# =============================================================================


async def create_poll_response(session: AsyncSession, name: str, response: str) -> PollResponse:
    """Store one poll answer."""
    poll_response = PollResponse(name=name, response=response)
    session.add(poll_response)
    await session.flush()
    return poll_response


async def poll_response_exists(session: AsyncSession, name: str, response: str) -> bool:
    """Check whether this exact answer was already stored for the poll."""
    result = await session.execute(
        select(PollResponse.id)
        .where(PollResponse.name == name, PollResponse.response == response)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_poll_responses(session: AsyncSession, name: str) -> list[str]:
    """List the answers stored for a poll, in submission order."""
    result = await session.execute(
        select(PollResponse.response).where(PollResponse.name == name).order_by(PollResponse.id)
    )
    return list(result.scalars().all())
