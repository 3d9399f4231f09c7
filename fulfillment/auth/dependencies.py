"""FastAPI dependencies for shared-secret bearer authentication."""

import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fulfillment.config import settings
from fulfillment.errors import AuthenticationError
from fulfillment.logging_config import redact_headers

logger = logging.getLogger(__name__)

# Registers the scheme in the OpenAPI docs; the check itself is below
optional_security = HTTPBearer(auto_error=False)


def require_bearer(
    secret_name: str,
) -> Callable[[Request, HTTPAuthorizationCredentials | None], Awaitable[None]]:
    """Build a dependency that requires ``Authorization: Bearer <settings.<secret_name>>``.

    The secret is read at request time so tests and reloads see the current value.
    """

    async def dependency(
        request: Request,
        _credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
    ) -> None:
        header = request.headers.get("authorization")
        if not header:
            logger.warning(f"Missing authorization header on {request.url.path}")
            raise AuthenticationError("Missing authorization header")
        expected = f"Bearer {getattr(settings, secret_name)}"
        if not getattr(settings, secret_name) or not secrets.compare_digest(
            header.encode(), expected.encode()
        ):
            logger.warning(
                f"Wrong authorization header on {request.url.path}: "
                f"{redact_headers(dict(request.headers))}"
            )
            raise AuthenticationError("Wrong authorization header")

    return dependency


# Server-to-server calls from the content gateway
RequireServiceToken = Depends(require_bearer("auth_token"))
# Operator endpoints
RequireAdminToken = Depends(require_bearer("admin_token"))
