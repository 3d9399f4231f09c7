"""Poll endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from fulfillment import polls
from fulfillment.auth.dependencies import RequireAdminToken
from fulfillment.config import settings
from fulfillment.db import get_session
from fulfillment.dependencies import MailerDep, SnapshotDep
from fulfillment.routes.helpers import read_fields, require_fields

router = APIRouter(prefix="/polls", tags=["polls"])


class PollResults(BaseModel):
    name: str
    data: list[str]
    responses: int


class SendMailRequest(BaseModel):
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    preview: bool = False


class SendMailResponse(BaseModel):
    preview: bool
    recipients: list[str]
    sent: bool


@router.post("", response_model=None)
async def submit_poll(request: Request, snapshot: SnapshotDep) -> RedirectResponse:
    """Record a poll answer posted from the publication's site."""
    data = await read_fields(request)
    name, response = require_fields(data, "name", "response")
    async with get_session() as session:
        await polls.submit_response(session, snapshot, name, response)
    return RedirectResponse(settings.ghost_polls_confirmation_page, status_code=302)


@router.get("/{name}", response_model=PollResults, dependencies=[RequireAdminToken])
async def poll_results(name: str, snapshot: SnapshotDep) -> PollResults:
    async with get_session() as session:
        responses = await polls.list_responses(session, snapshot, name)
    return PollResults(name=name, data=responses, responses=len(responses))


@router.post("/{name}/sendmail", response_model=SendMailResponse, dependencies=[RequireAdminToken])
async def poll_sendmail(
    name: str, body: SendMailRequest, snapshot: SnapshotDep, mailer: MailerDep
) -> SendMailResponse:
    """Email poll respondents, or only the sender when previewing."""
    async with get_session() as session:
        recipients = await polls.broadcast(
            session, snapshot, mailer, name, body.subject, body.body, body.preview
        )
    return SendMailResponse(preview=body.preview, recipients=recipients, sent=True)
