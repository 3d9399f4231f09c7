"""Download redemption endpoint."""

from fastapi import APIRouter, Query
from fastapi.responses import FileResponse

from fulfillment.db import get_session
from fulfillment.dependencies import SnapshotDep
from fulfillment.downloads import redeem_download

router = APIRouter(prefix="/downloads", tags=["downloads"])


@router.get("/{filename}")
async def download_file(
    filename: str,
    snapshot: SnapshotDep,
    token: str | None = Query(default=None),
) -> FileResponse:
    """Serve a purchased file to whoever holds its token.

    The grant's own filename names the attachment; the path segment is
    cosmetic so links read well in mail clients.
    """
    async with get_session() as session:
        redeemed = await redeem_download(session, snapshot, token)
    return FileResponse(
        redeemed.file_path,
        filename=redeemed.filename,
        content_disposition_type="attachment",
    )
