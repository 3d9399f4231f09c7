"""Application configuration."""

import logging
import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


@lru_cache
def _get_ssm_params() -> dict[str, str]:
    """Fetch all params from SSM for the current environment.

    Only consulted when FULFILLMENT_ENV is set. Returns an empty dict if SSM
    is unavailable (e.g., missing credentials).
    """
    env = os.getenv("FULFILLMENT_ENV")
    if not env:
        return {}
    region = os.getenv("AWS_REGION", "us-east-1")
    path = f"/fulfillment/{env}/"

    try:
        import boto3

        ssm = boto3.client("ssm", region_name=region)
        resp = ssm.get_parameters_by_path(Path=path, WithDecryption=True)
        params = {
            p["Name"].split("/")[-1].replace("-", "_"): p["Value"] for p in resp["Parameters"]
        }
        logger.info(f"Loaded {len(params)} parameters from SSM ({path})")
        return params
    except Exception as e:
        logger.warning(f"Failed to load SSM parameters from {path}: {e}")
        return {}


def _ssm(key: str, default: str = "") -> str:
    """Get config value from SSM, with optional default.

    Treats "NONE" as empty string (SSM doesn't allow empty values).
    """
    value = _get_ssm_params().get(key, default)
    return "" if value == "NONE" else value


class Settings(BaseSettings):
    """Application settings loaded from SSM Parameter Store and environment variables.

    Priority: environment variables > SSM > defaults
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = _ssm("database_url", "sqlite+aiosqlite:///./data/fulfillment.db")
    database_echo: bool = False

    # Secrets (required at startup)
    hmac_secret: str = _ssm("hmac_secret")
    auth_token: str = _ssm("auth_token")  # Bearer for server-to-server /authorize
    admin_token: str = _ssm("admin_token")  # Bearer for /admin and poll management

    # Sessions and downloads
    session_concurrency: int = 3
    download_link_expiry: int = 72  # hours, counted from first download

    # Email (SES)
    from_name: str = "Fulfillment"
    from_email: str = "noreply@example.com"
    ses_region: str = "us-east-1"
    ses_configuration_set: str = ""
    ses_endpoint_url: str = ""  # Self-hosted SES-compatible relay
    mail_throttle: bool = False  # Random delay between broadcast sends

    # Stripe
    stripe_restricted_api_key: str = _ssm("stripe_restricted_api_key")
    stripe_webhook_signing_secret: str = _ssm("stripe_webhook_signing_secret")
    stripe_ghost_join_product_id: str = ""

    # Ghost
    ghost_api_url: str = ""
    ghost_admin_api_key: str = _ssm("ghost_admin_api_key")  # "<id>:<hex secret>"
    ghost_store_confirmation_page: str = "/"
    ghost_polls_confirmation_page: str = "/"

    # Files
    store_file: str = "data/store.json"
    polls_file: str = "data/polls.json"
    downloads_dir: str = "data/downloads"
    public_dir: str = os.path.join(os.path.dirname(__file__), "public")
    templates_dir: str = os.path.join(os.path.dirname(__file__), "templates")

    # Server
    public_base_url: str = ""  # Base for emailed links; defaults to the request URL
    host: str = "0.0.0.0"
    port: int = 8000
    dev_mode: bool = True
    log_json: bool = False
    log_file: str = ""
    error_log_file: str = ""


settings = Settings()
