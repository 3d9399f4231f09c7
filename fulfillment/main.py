"""FastAPI application."""

import asyncio
import logging
import traceback
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from fulfillment.auth import auth_router
from fulfillment.catalog import Catalog
from fulfillment.config import settings
from fulfillment.errors import FulfillmentError, UpstreamFailure
from fulfillment.logging_config import redact_headers, setup_logging
from fulfillment.mail import Mailer
from fulfillment.routes import create_api_router
from fulfillment.templates import TemplateRenderer

setup_logging(settings.log_json, settings.log_file, settings.error_log_file)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
GENERIC_ERROR = "Could not handle request"


async def run_migrations() -> None:
    """Run database migrations on startup."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
    logger.info("Database migrations completed")


def validate_settings() -> None:
    """Fail fast when a required secret is missing."""
    for name in ("hmac_secret", "auth_token", "admin_token"):
        if not getattr(settings, name):
            raise RuntimeError(f"{name.upper()} environment variable must be set")
    if settings.session_concurrency < 1:
        raise RuntimeError("SESSION_CONCURRENCY must be at least 1")


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """Startup: validate config, migrate, load the catalog. Errors here are fatal."""
    logger.info("=== Server startup initiated ===")
    validate_settings()
    await run_migrations()
    await app.state.catalog.reload()
    logger.info("=== Server startup completed ===")

    yield

    logger.info("Lifespan shutdown triggered")
    from fulfillment.db import engine

    await engine.dispose()


app = FastAPI(
    title="Fulfillment",
    description="Order fulfillment, magic link auth and polls",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.catalog = Catalog(settings.store_file, settings.polls_file)
app.state.mailer = Mailer()
app.state.renderer = TemplateRenderer()


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Render service errors as ``{"error": message}``."""
    if isinstance(exc, UpstreamFailure):
        logger.error(
            f"{exc.message} on {request.method} {request.url.path}",
            exc_info=exc,
        )
        return JSONResponse(status_code=exc.status_code, content={"error": GENERIC_ERROR})
    logger.warning(f"{exc.message} ({exc.status_code}) on {request.method} {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or empty body fields are a plain 400, not FastAPI's 422."""
    error = exc.errors()[0] if exc.errors() else {}
    # first element is the source ("body", "query", ...), the rest is the field
    loc = list(error.get("loc", ()))[1:]
    field = str(loc[-1]) if loc else "body"
    if error.get("type") == "json_invalid":
        message = "Invalid JSON body"
    elif error.get("type") in ("missing", "string_too_short"):
        message = f"Missing {field}"
    else:
        message = f"Invalid {field}"
    logger.warning(f"{message} on {request.method} {request.url.path}")
    return JSONResponse(status_code=400, content={"error": message})


# Global exception handler to log all unhandled errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch all unhandled exceptions and log them with full traceback."""
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}\n"
        f"headers={redact_headers(request.headers)}\n"
        f"{''.join(tb)}"
    )
    return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})


app.include_router(auth_router)
app.include_router(create_api_router())

# Login page and other static assets; registered last so API routes win
app.mount(
    "/",
    StaticFiles(directory=settings.public_dir, html=True, check_dir=False),
    name="public",
)


if __name__ == "__main__":
    uvicorn.run(
        "fulfillment.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.dev_mode,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
