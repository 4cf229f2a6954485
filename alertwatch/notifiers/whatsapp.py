"""
WhatsApp notification channel.

Backed by Twilio's WhatsApp sender or the WhatsApp Business (Graph) API;
the "mock" provider only logs.
"""

import logging
import re
from typing import Any, Optional

import requests
from twilio.base.exceptions import TwilioException, TwilioRestException

from alertwatch.config import WhatsAppNotificationConfig
from alertwatch.database.models import PersonalAlert, User
from .base import NotificationChannel, NotificationResult, truncate
from .sms import format_phone, twilio_client

logger = logging.getLogger(__name__)


MAX_MESSAGE_LENGTH = 4000


def format_whatsapp_message(message: str) -> str:
    """Convert **bold** to *bold*, collapse blank runs and cap the length."""
    message = re.sub(r"\*\*(.*?)\*\*", r"*\1*", message, flags=re.DOTALL)
    message = re.sub(r"\n{3,}", "\n\n", message)
    return truncate(message, MAX_MESSAGE_LENGTH).strip()


def is_valid_whatsapp_number(number: Optional[str]) -> bool:
    digits = re.sub(r"\D", "", number or "")
    return 7 <= len(digits) <= 15


class WhatsAppChannel(NotificationChannel):
    """Sends notifications as WhatsApp messages."""

    name = "whatsapp"
    not_configured_error = "WhatsApp not configured"

    def __init__(
        self,
        config: Optional[WhatsAppNotificationConfig] = None,
        mock_mode: bool = False,
        timeout: float = 10,
    ):
        super().__init__(mock_mode=mock_mode)
        self.config = config or WhatsAppNotificationConfig()
        self.timeout = timeout

    def is_configured(self, user: User) -> bool:
        return is_valid_whatsapp_number(user.whatsapp_number)

    def format_message(self, message: str) -> str:
        return format_whatsapp_message(message)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        return self.send_whatsapp(user.whatsapp_number, text)

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        text = format_whatsapp_message("🔔 **Test from AlertWatch**\n\n" + message)
        return self.send_whatsapp(user.whatsapp_number, text)

    def send_whatsapp(self, number: str, text: str) -> NotificationResult:
        """Send through the configured provider."""
        to = format_phone(number, self.config.country_code)
        provider = self.config.provider

        if provider == "twilio":
            return self._send_via_twilio(to, text)
        if provider == "whatsapp_business":
            return self._send_via_business_api(to, text)
        if provider == "mock":
            logger.info(f"Mock WhatsApp to {to}: {text}")
            return self.success(provider="mock")
        return self.failure(f"WhatsApp provider not supported: {provider}")

    def _send_via_twilio(self, to: str, text: str) -> NotificationResult:
        sid = self.config.twilio_sid
        token = self.config.twilio_token
        if not (sid and token):
            return self.failure("Twilio credentials not configured")

        try:
            message = twilio_client(sid, token, self.timeout).messages.create(
                to=f"whatsapp:{to}", from_=self.config.twilio_from, body=text
            )
        except TwilioRestException as e:
            logger.error(f"Twilio WhatsApp error: {e.msg}")
            return self.failure(e.msg or "Failed to send WhatsApp message")
        except (TwilioException, requests.exceptions.RequestException) as e:
            logger.error(f"Twilio WhatsApp error: {e}")
            return self.failure(f"Connection error: {str(e)}")

        return self.success(provider="twilio", message_sid=message.sid)

    def _send_via_business_api(self, to: str, text: str) -> NotificationResult:
        api_url = self.config.api_url
        token = self.config.access_token
        phone_number_id = self.config.phone_number_id
        if not (api_url and token and phone_number_id):
            return self.failure("WhatsApp Business API not configured")

        try:
            response = requests.post(
                f"{api_url.rstrip('/')}/{phone_number_id}/messages",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "messaging_product": "whatsapp",
                    "to": to,
                    "type": "text",
                    "text": {"body": text},
                },
                timeout=self.timeout,
            )
            body = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"WhatsApp Business API error: {e}")
            return self.failure(f"Connection error: {str(e)}")
        except ValueError:
            body = {}

        messages = body.get("messages") or [{}]
        if response.ok and messages[0].get("id"):
            return self.success(provider="whatsapp_business", message_id=messages[0]["id"])

        error = (body.get("error") or {}).get("message") or "Failed to send WhatsApp message"
        logger.error(f"WhatsApp Business API error: {error}")
        return self.failure(error)
