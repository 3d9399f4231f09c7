"""Request-scoped access to the collaborators held on ``app.state``."""

from typing import Annotated

from fastapi import Depends, Request

from fulfillment.catalog import Catalog, CatalogSnapshot
from fulfillment.config import settings
from fulfillment.mail import Mailer
from fulfillment.templates import TemplateRenderer


def get_catalog(request: Request) -> Catalog:
    catalog: Catalog = request.app.state.catalog
    return catalog


def get_snapshot(request: Request) -> CatalogSnapshot:
    """The catalog snapshot current when the request arrived."""
    return get_catalog(request).snapshot


def get_mailer(request: Request) -> Mailer:
    mailer: Mailer = request.app.state.mailer
    return mailer


def get_renderer(request: Request) -> TemplateRenderer:
    renderer: TemplateRenderer = request.app.state.renderer
    return renderer


def get_base_url(request: Request) -> str:
    """Base URL for links sent by email."""
    return settings.public_base_url or str(request.base_url).rstrip("/")


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


CatalogDep = Annotated[Catalog, Depends(get_catalog)]
SnapshotDep = Annotated[CatalogSnapshot, Depends(get_snapshot)]
MailerDep = Annotated[Mailer, Depends(get_mailer)]
RendererDep = Annotated[TemplateRenderer, Depends(get_renderer)]
BaseUrlDep = Annotated[str, Depends(get_base_url)]
ClientIpDep = Annotated[str, Depends(get_client_ip)]
