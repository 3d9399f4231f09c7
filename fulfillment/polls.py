"""Poll response collection and respondent broadcast."""

import logging

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.catalog import CatalogSnapshot, Poll
from fulfillment.config import settings
from fulfillment.db import repository
from fulfillment.errors import ValidationError
from fulfillment.mail import Mailer

logger = logging.getLogger(__name__)

MAX_RESPONSE_LENGTH = 1024

_email_adapter = TypeAdapter(EmailStr)


def is_email(value: str) -> bool:
    try:
        _email_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def get_poll(snapshot: CatalogSnapshot, name: str) -> Poll:
    poll = snapshot.poll(name)
    if poll is None:
        raise ValidationError("Invalid name")
    return poll


async def submit_response(
    session: AsyncSession, snapshot: CatalogSnapshot, name: str, response: str
) -> bool:
    """Store a poll answer. Returns False when a unique poll already has it."""
    response = response.strip()
    if not response:
        raise ValidationError("Missing response")
    poll = get_poll(snapshot, name)

    if poll.type == "email" and not is_email(response):
        raise ValidationError("Invalid email")
    if poll.type == "text" and len(response) > MAX_RESPONSE_LENGTH:
        raise ValidationError("Invalid response (too long)")

    if poll.unique and await repository.poll_response_exists(session, name, response):
        logger.info(f"Duplicate response to unique poll {name} ignored")
        return False

    await repository.create_poll_response(session, name, response)
    return True


async def list_responses(session: AsyncSession, snapshot: CatalogSnapshot, name: str) -> list[str]:
    get_poll(snapshot, name)
    return await repository.list_poll_responses(session, name)


async def broadcast(
    session: AsyncSession,
    snapshot: CatalogSnapshot,
    mailer: Mailer,
    name: str,
    subject: str,
    body: str,
    preview: bool,
) -> list[str]:
    """Email every respondent that answered with an address.

    In preview mode the message only goes to the sender address.
    """
    responses = await list_responses(session, snapshot, name)
    if preview:
        recipients = [settings.from_email]
    else:
        recipients = [response for response in responses if is_email(response)]

    await mailer.broadcast(recipients, subject, body)
    logger.info(f"Poll {name} mail sent to {len(recipients)} recipient(s) (preview={preview})")
    return recipients
