"""Database module for the fulfillment server."""

from fulfillment.db import repository
from fulfillment.db.engine import async_session_factory, engine, get_session
from fulfillment.db.models import Authorization, Base, Download, LoginSession, PollResponse, User

__all__ = [
    "Base",
    "User",
    "LoginSession",
    "Authorization",
    "Download",
    "PollResponse",
    "engine",
    "async_session_factory",
    "get_session",
    "repository",
]
