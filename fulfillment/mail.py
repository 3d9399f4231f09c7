"""Outbound plain-text email via AWS SES."""

import asyncio
import logging
import random
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fulfillment.config import settings
from fulfillment.errors import UpstreamFailure

logger = logging.getLogger(__name__)

# Delay range (seconds) between broadcast sends when throttling
THROTTLE_DELAY = (0.5, 2.0)


def get_ses_client() -> Any:
    """Get boto3 SES client.

    Uses the instance role for credentials unless the environment provides keys.
    """
    kwargs: dict[str, str] = {"region_name": settings.ses_region}
    if settings.ses_endpoint_url:
        kwargs["endpoint_url"] = settings.ses_endpoint_url
    return boto3.client("ses", **kwargs)


def sender_address() -> str:
    return f"{settings.from_name} <{settings.from_email}>"


class Mailer:
    """Sends mail through SES. Transport errors surface as UpstreamFailure."""

    def __init__(self, client: Any | None = None, throttle: bool | None = None) -> None:
        self._client = client
        self.throttle = settings.mail_throttle if throttle is None else throttle

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_ses_client()
        return self._client

    def _send_sync(self, to: str, subject: str, text: str) -> str:
        params: dict[str, Any] = {
            "Source": sender_address(),
            "Destination": {"ToAddresses": [to]},
            "Message": {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": text, "Charset": "UTF-8"}},
            },
        }
        if settings.ses_configuration_set:
            params["ConfigurationSetName"] = settings.ses_configuration_set
        response = self.client.send_email(**params)
        return str(response["MessageId"])

    async def send(self, to: str, subject: str, text: str) -> str:
        """Send one message and return the SES message id."""
        try:
            message_id = await asyncio.to_thread(self._send_sync, to, subject, text)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            error_message = e.response.get("Error", {}).get("Message", str(e))
            logger.error(f"Failed to send email to {to}: {error_code} - {error_message}")
            raise UpstreamFailure("Could not send email") from e
        except BotoCoreError as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise UpstreamFailure("Could not send email") from e
        logger.info(f"Email sent to {to}, MessageId: {message_id}")
        return message_id

    async def broadcast(self, recipients: list[str], subject: str, text: str) -> list[str]:
        """Send the same message to each recipient in turn.

        With throttling on, waits a random delay before every send so a
        self-hosted relay is less likely to be flagged as spam.
        """
        message_ids = []
        for recipient in recipients:
            if self.throttle:
                await asyncio.sleep(random.uniform(*THROTTLE_DELAY))
            message_ids.append(await self.send(recipient, subject, text))
        return message_ids
