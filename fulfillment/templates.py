"""Plain-text email templates rendered with Jinja2."""

import math
from datetime import datetime
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from fulfillment.config import settings

DEFAULT_TEMPLATE = "default.txt"
ORDER_CONFIRMATION_TEMPLATE = "order_confirmation.txt"


class TemplateRenderer:
    """Renders named templates from a directory."""

    def __init__(self, templates_dir: str | None = None) -> None:
        self.env = Environment(
            loader=FileSystemLoader(templates_dir or settings.templates_dir),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, data: dict[str, Any]) -> str:
        return self.env.get_template(template_name).render(**data)


def first_name(name: str) -> str:
    return name.split(" ")[0]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def humanize_hours(hours: int) -> str:
    """Describe a duration in hours in words ("an hour", "2 days", "3 months").

    Rounds to the nearest unit with the usual relative-time thresholds:
    under 22 hours counts in hours, under 26 days in days, under 11 months
    in months, then years.
    """
    if hours < 22:
        return "an hour" if hours <= 1 else f"{hours} hours"
    days = _round_half_up(hours / 24)
    if days < 26:
        return "a day" if days <= 1 else f"{days} days"
    months = _round_half_up(hours / 24 * 4800 / 146097)
    if months < 11:
        return "a month" if months <= 1 else f"{months} months"
    years = _round_half_up(hours / 24 * 400 / 146097)
    return "a year" if years <= 1 else f"{years} years"


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def format_event_on(value: str) -> str:
    """Format an ISO event date as "Friday, March 1st 2024 at 7:00PM EST"."""
    dt = datetime.fromisoformat(value)
    hour = dt.hour % 12 or 12
    return (
        f"{dt:%A}, {dt:%B} {_ordinal(dt.day)} {dt.year} at "
        f"{hour}:{dt:%M}{'AM' if dt.hour < 12 else 'PM'} EST"
    )
