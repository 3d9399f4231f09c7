"""Ghost Admin API member lookup."""

import logging
import time
from typing import Any

import httpx
from jose import jwt

from fulfillment.config import settings
from fulfillment.errors import UpstreamFailure
from fulfillment.logging_config import redact_headers

logger = logging.getLogger(__name__)

ACCEPT_VERSION = "v5.0"
TOKEN_TTL_SECONDS = 300


def admin_token(admin_api_key: str | None = None, now: int | None = None) -> str:
    """Sign a short-lived Ghost Admin API token from an ``<id>:<secret>`` key."""
    key = admin_api_key or settings.ghost_admin_api_key
    key_id, _, secret = key.partition(":")
    if not key_id or not secret:
        raise UpstreamFailure("GHOST_ADMIN_API_KEY must look like <id>:<secret>")
    iat = now if now is not None else int(time.time())
    payload = {"iat": iat, "exp": iat + TOKEN_TTL_SECONDS, "aud": "/admin/"}
    return jwt.encode(payload, bytes.fromhex(secret), algorithm="HS256", headers={"kid": key_id})


class GhostMembers:
    """Narrow client for ``GET /ghost/api/admin/members/``."""

    def __init__(self, api_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.api_url = (api_url or settings.ghost_api_url).rstrip("/")
        self._client = client

    async def browse_by_email(self, email: str) -> list[dict[str, Any]]:
        """Return the members whose email matches exactly."""
        headers = {
            "Authorization": f"Ghost {admin_token()}",
            "Accept-Version": ACCEPT_VERSION,
        }
        params = {"filter": f"email:'{email}'"}
        url = f"{self.api_url}/ghost/api/admin/members/"
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, params=params)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Ghost members lookup failed: {e.response.status_code} "
                f"{e.request.method} {e.request.url} headers={redact_headers(e.request.headers)} "
                f"body={e.response.text[:500]}"
            )
            raise UpstreamFailure("Could not look up membership") from e
        except httpx.HTTPError as e:
            logger.error(f"Ghost members lookup failed: {e}")
            raise UpstreamFailure("Could not look up membership") from e

        members: list[dict[str, Any]] = response.json().get("members", [])
        return members
