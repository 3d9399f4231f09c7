"""Magic link login, session rotation and path authorization.

The functions here take an open ``AsyncSession`` and leave commit/rollback
to the caller's ``get_session()`` scope, so each flow runs in a single
transaction.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.db import Authorization, repository
from fulfillment.errors import (
    AuthenticationError,
    AuthorizationExpired,
    InvalidLoginToken,
    NotFound,
)
from fulfillment.mail import Mailer, sender_address
from fulfillment.templates import DEFAULT_TEMPLATE, TemplateRenderer, first_name
from fulfillment.tokens import email_identifier, generate_token, session_verification_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """Credentials handed to the browser after a successful login."""

    token: str
    salt: str
    user_id: int


def login_link(base_url: str, email_hmac: str, token: str, redirect: str) -> str:
    """Build the magic link URL for the login confirmation endpoint."""
    query = urlencode({"emailhmac": email_hmac, "token": token, "redirect": redirect}, safe="/:")
    return f"{base_url.rstrip('/')}/login?{query}"


def invalid_token_redirect(base_url: str, redirect: str) -> str:
    """Login page URL telling the reader their link no longer works."""
    query = urlencode({"error": "invalid-token", "redirect": redirect}, safe="/:")
    return f"{base_url.rstrip('/')}/login?{query}"


async def request_login(
    session: AsyncSession,
    mailer: Mailer,
    renderer: TemplateRenderer,
    email: str,
    redirect: str,
    base_url: str,
) -> None:
    """Email a fresh magic link to a known reader.

    Any previously issued link stops working because the pending token is
    overwritten. Unknown addresses are rejected; accounts are only created
    when an order is confirmed.
    """
    email_hmac = email_identifier(email)
    user = await repository.get_user_by_email_hmac(session, email_hmac)
    if user is None:
        logger.warning(f"Login requested for unknown identity {email_hmac[:12]}")
        raise AuthenticationError("Wrong credentials")

    token = generate_token()
    await repository.set_login_token(session, user, token)

    text = renderer.render(
        DEFAULT_TEMPLATE,
        {
            "sender": {"first_name": first_name(settings.from_name), "email": settings.from_email},
            "recipient": {"email": email},
            "message": (
                "Please click following magic link to log in.\n\n"
                + login_link(base_url, email_hmac, token, redirect)
            ),
        },
    )
    await mailer.send(email, "Magic link", text)
    logger.info(f"Magic link sent to user id={user.id} from {sender_address()}")


async def confirm_login(
    session: AsyncSession,
    email_hmac: str,
    token: str,
    client_ip: str,
    concurrency: int | None = None,
) -> IssuedSession:
    """Redeem a magic link and issue a new session.

    Raises:
        NotFound: no user for ``email_hmac``
        InvalidLoginToken: the token is wrong, already used or replaced
    """
    user = await repository.get_user_by_email_hmac(session, email_hmac)
    if user is None:
        raise NotFound("Could not find user")

    if user.login_token is None or user.login_token != token:
        raise InvalidLoginToken("Wrong token")

    # Conditional clear: only one concurrent redemption can win
    if not await repository.consume_login_token(session, user.id, token):
        raise InvalidLoginToken("Wrong token")

    limit = concurrency if concurrency is not None else settings.session_concurrency
    keep_ids = await repository.list_recent_session_ids(session, user.id, limit - 1)
    invalidated = await repository.invalidate_sessions_except(session, user.id, keep_ids)
    if invalidated:
        logger.info(f"Invalidated {invalidated} old session(s) for user id={user.id}")

    session_token = generate_token()
    session_salt = generate_token()
    await repository.create_login_session(
        session,
        user_id=user.id,
        token=session_token,
        verification_code=session_verification_code(session_salt, client_ip),
    )
    logger.info(f"User signed in via magic link (id={user.id})")
    return IssuedSession(token=session_token, salt=session_salt, user_id=user.id)


async def check_authorization(
    session: AsyncSession,
    session_token: str,
    path: str,
    now: datetime | None = None,
) -> Authorization:
    """Check that the session's user holds an unexpired grant for ``path``.

    Read-only; safe to call any number of times.
    """
    login_session = await repository.get_login_session_by_token(session, session_token)
    if login_session is None:
        raise NotFound("Session not found")
    if not login_session.valid:
        raise AuthenticationError("Session expired")

    authorization = await repository.get_authorization(session, path, login_session.user_id)
    if authorization is None:
        raise AuthenticationError("Authorization not found")

    now = now or datetime.now(UTC)
    if now > repository.ensure_utc(authorization.expires_on):
        raise AuthorizationExpired("Authorization expired")
    return authorization
