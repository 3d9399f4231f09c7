"""Order intake: payment webhook, manual orders and the members store."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, Field

from fulfillment.auth.dependencies import RequireAdminToken
from fulfillment.config import settings
from fulfillment.db import get_session
from fulfillment.dependencies import (
    BaseUrlDep,
    CatalogDep,
    MailerDep,
    RendererDep,
    SnapshotDep,
)
from fulfillment.errors import AuthenticationError, Forbidden, NotFound, ValidationError
from fulfillment.membership import GhostMembers
from fulfillment.orders import Recipient, send_order_confirmation
from fulfillment.payments import CHECKOUT_COMPLETED, get_paid_checkout, verify_webhook
from fulfillment.routes.helpers import read_fields, require_fields

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


def get_ghost_members() -> GhostMembers:
    return GhostMembers()


class ManualOrderRequest(BaseModel):
    """Request body for an operator-triggered order confirmation."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    path: str = Field(min_length=1)


class ReloadResponse(BaseModel):
    products: int
    polls: int


@router.post("/", status_code=status.HTTP_200_OK)
async def payment_webhook(
    request: Request,
    snapshot: SnapshotDep,
    mailer: MailerDep,
    renderer: RendererDep,
    base_url: BaseUrlDep,
) -> Response:
    """Stripe webhook: fulfil every product of a paid checkout session.

    Returns 201 when at least one order confirmation went out, else 200.
    """
    payload = await request.body()
    event = verify_webhook(payload, request.headers.get("stripe-signature"))

    if event["type"] != CHECKOUT_COMPLETED:
        logger.warning(f"Ignoring Stripe webhook of type {event['type']}")
        raise ValidationError("Invalid Stripe webhook type")

    checkout = await get_paid_checkout(event["data"]["object"]["id"])
    recipient = Recipient(name=checkout.customer_name, email=checkout.customer_email)

    sent = False
    for product_id in checkout.product_ids:
        # Membership subscriptions are handled by Ghost itself
        if product_id == settings.stripe_ghost_join_product_id:
            continue
        found = snapshot.find_by_external_id(product_id)
        if found is None:
            logger.error(f"Product not found for Stripe product {product_id}")
            raise NotFound("Product not found")
        path, product = found
        async with get_session() as session:
            await send_order_confirmation(
                session, mailer, renderer, base_url, recipient, path, product
            )
        sent = True

    return Response(status_code=status.HTTP_201_CREATED if sent else status.HTTP_200_OK)


@router.post("/admin", dependencies=[RequireAdminToken])
async def manual_order(
    body: ManualOrderRequest,
    snapshot: SnapshotDep,
    mailer: MailerDep,
    renderer: RendererDep,
    base_url: BaseUrlDep,
) -> dict[str, bool]:
    """Send an order confirmation without a payment (comps, resends)."""
    product = snapshot.get(body.path)
    if product is None:
        raise NotFound("Product not found")
    async with get_session() as session:
        await send_order_confirmation(
            session,
            mailer,
            renderer,
            base_url,
            Recipient(name=body.name, email=body.email),
            body.path,
            product,
        )
    return {"sent": True}


@router.post("/admin/reload", response_model=ReloadResponse, dependencies=[RequireAdminToken])
async def reload_catalog(catalog: CatalogDep) -> ReloadResponse:
    """Re-read the product and poll files."""
    snapshot = await catalog.reload()
    return ReloadResponse(products=len(snapshot.products), polls=len(snapshot.polls))


@router.post("/store", response_model=None)
async def members_store(
    request: Request,
    snapshot: SnapshotDep,
    mailer: MailerDep,
    renderer: RendererDep,
    base_url: BaseUrlDep,
    members: Annotated[GhostMembers, Depends(get_ghost_members)],
) -> RedirectResponse:
    """Let a Ghost member claim a members-only product."""
    data: dict[str, Any] = await read_fields(request)
    path, email = require_fields(data, "path", "email")

    found = await members.browse_by_email(email)
    if len(found) != 1:
        raise AuthenticationError("Membership required")
    member = found[0]

    product = snapshot.get(path)
    if product is None:
        raise NotFound("Product not found")
    if product.members is not True:
        raise Forbidden("Product paid-only")

    async with get_session() as session:
        await send_order_confirmation(
            session,
            mailer,
            renderer,
            base_url,
            Recipient(name=member.get("name") or "", email=member["email"]),
            path,
            product,
        )
    return RedirectResponse(settings.ghost_store_confirmation_page, status_code=302)
