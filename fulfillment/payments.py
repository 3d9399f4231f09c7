"""Stripe webhook verification and checkout session lookup."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import stripe

from fulfillment.config import settings
from fulfillment.errors import AuthenticationError, UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class PaidCheckout:
    """Customer and purchased product ids of a paid checkout session."""

    customer_name: str
    customer_email: str
    product_ids: list[str]


def verify_webhook(payload: bytes, signature: str | None) -> Any:
    """Verify the ``Stripe-Signature`` header and parse the event."""
    if not signature:
        raise AuthenticationError("Missing Stripe webhook signature header")
    try:
        return stripe.Webhook.construct_event(
            payload, signature, settings.stripe_webhook_signing_secret
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature rejected: {e}")
        raise AuthenticationError("Wrong Stripe webhook signature") from e
    except ValueError as e:
        raise ValidationError("Invalid Stripe webhook payload") from e


def _retrieve_session(session_id: str) -> Any:
    return stripe.checkout.Session.retrieve(
        session_id,
        expand=["customer", "line_items"],
        api_key=settings.stripe_restricted_api_key,
    )


async def get_paid_checkout(session_id: str) -> PaidCheckout:
    """Fetch a checkout session and check that it has been paid."""
    try:
        checkout = await asyncio.to_thread(_retrieve_session, session_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to retrieve Stripe session {session_id}: {e}")
        raise UpstreamFailure("Could not retrieve checkout session") from e

    if checkout["payment_status"] != "paid":
        logger.warning(
            f"Stripe session {session_id} payment status is {checkout['payment_status']}"
        )
        raise ValidationError("Invalid Stripe session payment status")

    customer = checkout["customer"]
    return PaidCheckout(
        customer_name=customer["name"] or "",
        customer_email=customer["email"],
        product_ids=[item["price"]["product"] for item in checkout["line_items"]["data"]],
    )
