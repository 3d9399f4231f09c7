"""Download grant redemption."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.catalog import CatalogSnapshot
from fulfillment.config import settings
from fulfillment.db import repository
from fulfillment.errors import AuthenticationError, AuthorizationExpired, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedeemedDownload:
    filename: str
    file_path: Path
    expires_on: datetime


async def redeem_download(
    session: AsyncSession,
    snapshot: CatalogSnapshot,
    token: str | None,
    downloads_dir: str | Path | None = None,
    now: datetime | None = None,
) -> RedeemedDownload:
    """Resolve a download token to a file on disk.

    The token is a capability: anyone holding it may download until the
    window started by the first redemption runs out.
    """
    if not token:
        raise AuthenticationError("Missing token")

    download = await repository.get_download_by_token(session, token)
    if download is None:
        raise AuthenticationError("Wrong token")

    now = now or datetime.now(UTC)
    if download.expires_on is not None and now > repository.ensure_utc(download.expires_on):
        logger.info(f"Download {download.id} expired at {download.expires_on.isoformat()}")
        raise AuthorizationExpired("Download expired")

    product = snapshot.get(download.path)
    if product is None:
        logger.warning(f"Product not found for download {download.id} (path={download.path})")
        raise NotFound("Product not found")

    storage_key = (product.files or {}).get(download.filename)
    if storage_key is None:
        logger.warning(f"Invalid filename {download.filename!r} for path {download.path}")
        raise NotFound("Invalid filename")

    file_path = Path(downloads_dir or settings.downloads_dir) / storage_key
    if not file_path.is_file():
        logger.error(f"Missing file {file_path} for download {download.id}")
        raise NotFound("File not found")

    expires_on = download.expires_on
    if expires_on is None:
        expires_on = now + timedelta(hours=settings.download_link_expiry)
        if await repository.start_download_clock(session, download.id, expires_on):
            logger.info(f"Download {download.id} first redeemed, expires {expires_on.isoformat()}")
        else:
            # A concurrent redemption started the clock first; its expiry stands
            await session.refresh(download)
            expires_on = download.expires_on or expires_on

    return RedeemedDownload(
        filename=download.filename,
        file_path=file_path,
        expires_on=repository.ensure_utc(expires_on),
    )
