"""Order confirmation: grant downloads and access, then email the buyer."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.auth.service import login_link
from fulfillment.catalog import Product
from fulfillment.config import settings
from fulfillment.db import repository
from fulfillment.errors import UpstreamFailure
from fulfillment.mail import Mailer
from fulfillment.templates import (
    ORDER_CONFIRMATION_TEMPLATE,
    TemplateRenderer,
    first_name,
    format_event_on,
    humanize_hours,
)
from fulfillment.tokens import email_identifier, generate_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    name: str
    email: str


@dataclass(frozen=True)
class OrderConfirmation:
    message_id: str
    downloads: list[str]
    links: list[str]


def download_link(base_url: str, filename: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/downloads/{filename}?token={token}"


async def send_order_confirmation(
    session: AsyncSession,
    mailer: Mailer,
    renderer: TemplateRenderer,
    base_url: str,
    recipient: Recipient,
    path: str,
    product: Product,
    now: datetime | None = None,
) -> OrderConfirmation:
    """Create the grants a product comes with and email them to the buyer.

    - one download grant per product file, clock not started;
    - for gated content, the buyer's user record (created if needed) gets a
      fresh login token and the (path, user) authorization is granted or
      refreshed;
    - static product links are passed through.
    """
    now = now or datetime.now(UTC)

    downloads: list[str] = []
    for filename in product.files or {}:
        download = await repository.create_download(
            session, path=path, filename=filename, token=generate_token()
        )
        downloads.append(download_link(base_url, download.filename, download.token))

    links = list(product.links or [])

    if product.cdn is not None:
        email_hmac = email_identifier(recipient.email)
        token = generate_token()
        user = await repository.upsert_user(session, email_hmac, token)
        expires_on = now + product.cdn.expiry.as_timedelta()
        await repository.upsert_authorization(session, path, user.id, expires_on)
        logger.info(f"Granted {path} to user id={user.id} until {expires_on.isoformat()}")
        links.append(login_link(base_url, email_hmac, token, product.cdn.redirect))

    if not downloads and not links:
        raise UpstreamFailure("Invalid email payload")

    data: dict[str, Any] = {
        "sender": {"first_name": first_name(settings.from_name), "email": settings.from_email},
        "recipient": {"first_name": first_name(recipient.name), "email": recipient.email},
        "downloads": downloads,
        "links": links,
        "expiry": humanize_hours(settings.download_link_expiry) if downloads else None,
        "event_on": format_event_on(product.event_on) if product.event_on else None,
    }
    text = renderer.render(ORDER_CONFIRMATION_TEMPLATE, data)
    message_id = await mailer.send(
        f"{recipient.name} <{recipient.email}>", product.name or path, text
    )
    logger.info(
        f"Order confirmation for {path} sent ({len(downloads)} downloads, {len(links)} links)"
    )
    return OrderConfirmation(message_id=message_id, downloads=downloads, links=links)
