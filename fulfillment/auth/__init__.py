"""Authentication module: magic links, sessions and path authorization."""

from fulfillment.auth.dependencies import RequireAdminToken, RequireServiceToken
from fulfillment.auth.routes import router as auth_router
from fulfillment.auth.service import check_authorization, confirm_login, request_login

__all__ = [
    "auth_router",
    "check_authorization",
    "confirm_login",
    "request_login",
    "RequireAdminToken",
    "RequireServiceToken",
]
