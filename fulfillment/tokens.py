"""Opaque token generation and keyed-hash identifiers."""

import hashlib
import hmac
import secrets

from fulfillment.config import settings


def generate_token(size: int = 24) -> str:
    """Generate a random lowercase hex token of exactly ``size`` characters."""
    return secrets.token_bytes(size).hex()[:size]


def _hmac_hex(message: str, secret: str | None = None) -> str:
    key = (secret if secret is not None else settings.hmac_secret).encode()
    return hmac.new(key, message.encode(), hashlib.sha256).hexdigest()


def email_identifier(email: str, secret: str | None = None) -> str:
    """Derive the stable user identifier for an email address.

    The address is trimmed and lowercased first, so casing and surrounding
    whitespace never produce a second identity. Raw emails are never stored.
    """
    return _hmac_hex(email.strip().lower(), secret)


def session_verification_code(salt: str, client_ip: str, secret: str | None = None) -> str:
    """Sign a per-session salt together with the client's IP address."""
    return _hmac_hex(f"{salt}{client_ip}", secret)


def cookie_domain(hostname: str) -> str:
    """Return the apex cookie domain for a request hostname.

    ``shop.example.com`` -> ``.example.com``; ``localhost`` stays as is.
    """
    if hostname == "localhost":
        return "localhost"
    return "." + ".".join(hostname.split(".")[-2:])
