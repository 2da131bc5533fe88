from __future__ import annotations

import logging
from email.utils import formataddr
from typing import Any

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backend.config import get_settings
from backend.errors import DeliveryFailure
from backend.services.templates import RenderedMessage
from backend.utils.auth_aws import get_client

logger = logging.getLogger(__name__)


class SesMailer:
    """Delivery gateway backed by Amazon SES. Any send error, timeouts included, is a DeliveryFailure."""

    def __init__(self, client: Any | None = None, sender: str | None = None):
        self.settings = get_settings()
        self.sender = sender or formataddr((self.settings.mail_sender_name, self.settings.mail_sender_address))
        config = Config(
            connect_timeout=self.settings.mail_connect_timeout,
            read_timeout=self.settings.mail_read_timeout,
            retries={"max_attempts": self.settings.mail_max_attempts, "mode": "standard"},
        )
        self.client = client or get_client("ses", config=config)

    def send(self, address: str, message: RenderedMessage) -> str:
        try:
            response = self.client.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [address]},
                Message={
                    "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": message.text, "Charset": "UTF-8"},
                        "Html": {"Data": message.html, "Charset": "UTF-8"},
                    },
                },
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("SES send to %s failed: %s", address, exc)
            raise DeliveryFailure(f"Failed to send email to {address}: {exc}") from exc
        message_id = response.get("MessageId", "")
        logger.info("SES accepted message %s for %s", message_id, address)
        return message_id
