"""Shared request parsing for routes that accept forms or JSON."""

from typing import Any

from fastapi import Request

from fulfillment.errors import ValidationError


async def read_fields(request: Request) -> dict[str, Any]:
    """Read a JSON object or an urlencoded/multipart form body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON body") from e
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def require_fields(data: dict[str, Any], *names: str) -> list[str]:
    """Return the named values, raising "Missing <name>" for the first empty one."""
    values = []
    for name in names:
        value = data.get(name)
        if not isinstance(value, str) or value == "":
            raise ValidationError(f"Missing {name}")
        values.append(value)
    return values
