"""Authentication API routes."""

import logging
from pathlib import Path

from fastapi import APIRouter, Query, Request
from fastapi.responses import FileResponse, RedirectResponse, Response

from fulfillment.auth import service
from fulfillment.auth.dependencies import RequireServiceToken
from fulfillment.auth.schemas import (
    AuthorizeRequest,
    AuthorizeResponse,
    LoginRequest,
    MessageResponse,
)
from fulfillment.config import settings
from fulfillment.db import get_session
from fulfillment.dependencies import BaseUrlDep, ClientIpDep, MailerDep, RendererDep
from fulfillment.errors import InvalidLoginToken, NotFound
from fulfillment.tokens import cookie_domain

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

SESSION_SALT_COOKIE = "session-salt"
SESSION_TOKEN_COOKIE = "session-token"


def _login_page() -> FileResponse:
    page = Path(settings.public_dir) / "login" / "index.html"
    if not page.is_file():
        raise NotFound("Not found")
    return FileResponse(page, media_type="text/html")


@router.get("/login", response_model=None)
async def confirm_login(
    request: Request,
    base_url: BaseUrlDep,
    client_ip: ClientIpDep,
    emailhmac: str | None = Query(default=None),
    token: str | None = Query(default=None),
    redirect: str | None = Query(default=None),
) -> Response:
    """Magic link target.

    A plain GET so it works when clicked from a mail client. Without the
    three query parameters this is just the login page.
    """
    if not (emailhmac and token and redirect):
        return _login_page()

    try:
        async with get_session() as session:
            issued = await service.confirm_login(session, emailhmac, token, client_ip)
    except InvalidLoginToken:
        logger.warning(f"Invalid magic link token for identity {emailhmac[:12]}")
        return RedirectResponse(
            service.invalid_token_redirect(base_url, redirect), status_code=302
        )

    domain = cookie_domain(request.url.hostname or "localhost")
    response = RedirectResponse(redirect, status_code=302)
    response.set_cookie(SESSION_SALT_COOKIE, issued.salt, domain=domain)
    response.set_cookie(SESSION_TOKEN_COOKIE, issued.token, domain=domain)
    return response


@router.post("/login", response_model=MessageResponse)
async def request_login(
    body: LoginRequest,
    mailer: MailerDep,
    renderer: RendererDep,
    base_url: BaseUrlDep,
) -> MessageResponse:
    """Email a magic link to an existing reader."""
    async with get_session() as session:
        await service.request_login(
            session, mailer, renderer, body.email, body.redirect, base_url
        )
    return MessageResponse(message="Check your emails")


@router.post("/authorize", response_model=AuthorizeResponse, dependencies=[RequireServiceToken])
async def authorize(body: AuthorizeRequest) -> AuthorizeResponse:
    """Check whether a reader's session grants access to a content path."""
    async with get_session() as session:
        await service.check_authorization(session, body.session_token, body.path)
    return AuthorizeResponse(authorized=True)
