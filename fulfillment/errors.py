"""Error taxonomy shared by services and routes.

Services raise these; ``fulfillment.main`` renders them as
``{"error": message}`` with the matching status code.
"""

from fastapi import status


class FulfillmentError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FulfillmentError):
    """Missing or malformed input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(FulfillmentError):
    """Missing or wrong credential, or an invalidated session."""

    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidLoginToken(AuthenticationError):
    """Magic link token does not match the user's pending token."""


class Forbidden(FulfillmentError):
    status_code = status.HTTP_403_FORBIDDEN


class AuthorizationExpired(Forbidden):
    """A grant exists but is past its expiry."""


class NotFound(FulfillmentError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamFailure(FulfillmentError):
    """A collaborator (mail, payment provider, membership API) failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
