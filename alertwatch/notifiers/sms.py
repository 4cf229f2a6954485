"""
SMS notification channel.

Supports Twilio through its SDK, the Vonage (Nexmo) REST gateway and a
logging-only mock provider. Every outgoing message is charged through the
billing collaborator first and refunded if the gateway rejects it.
"""

import logging
import re
from typing import Any, Optional

import requests
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from alertwatch.billing import InsufficientBalanceError, SmsBilling, UnmeteredBilling
from alertwatch.config import SMSNotificationConfig
from alertwatch.database.models import PersonalAlert, User
from .base import NotificationChannel, NotificationResult, truncate

logger = logging.getLogger(__name__)


MAX_ALERT_LENGTH = 450
MAX_TEST_LENGTH = 160

# Azerbaijani mobile operator prefixes for 9-digit local numbers
LOCAL_MOBILE_PREFIXES = ("50", "51", "55", "70", "77", "10", "60", "99")

VONAGE_URL = "https://rest.nexmo.com/sms/json"


def clean_message(message: str) -> str:
    """Strip bold markers and collapse all whitespace to single spaces."""
    message = re.sub(r"\*\*(.*?)\*\*", r"\1", message, flags=re.DOTALL)
    message = re.sub(r"\s+", " ", message)
    return message.strip()


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def is_valid_phone(phone: Optional[str], country_code: str = "994") -> bool:
    """Accept local 9-digit mobile numbers or full international ones."""
    digits = _digits(phone or "")
    if len(digits) == 9:
        return digits[:2] in LOCAL_MOBILE_PREFIXES
    return len(digits) == 9 + len(country_code) and digits.startswith(country_code)


def format_phone(phone: str, country_code: str = "994") -> str:
    """Normalize to +<country><number>."""
    digits = _digits(phone)
    if len(digits) == 9 and digits[:2] in LOCAL_MOBILE_PREFIXES:
        digits = country_code + digits
    return f"+{digits}"


def twilio_client(sid: str, token: str, timeout: float) -> Client:
    """Create a Twilio REST client with a bounded HTTP timeout."""
    return Client(sid, token, http_client=TwilioHttpClient(timeout=timeout))


class SMSChannel(NotificationChannel):
    """Sends notifications as text messages."""

    name = "sms"
    not_configured_error = "Phone not configured or not verified"

    def __init__(
        self,
        config: Optional[SMSNotificationConfig] = None,
        billing: Optional[SmsBilling] = None,
        mock_mode: bool = False,
        timeout: float = 10,
    ):
        """
        Initialize SMS channel.

        Args:
            config: Gateway provider and credentials
            billing: Cost tracker charged before each send
            mock_mode: Log alert payloads instead of sending
            timeout: HTTP timeout in seconds
        """
        super().__init__(mock_mode=mock_mode)
        self.config = config or SMSNotificationConfig()
        self.billing = billing or UnmeteredBilling()
        self.timeout = timeout

    def is_configured(self, user: User) -> bool:
        return (
            bool(user.phone)
            and user.phone_verified
            and is_valid_phone(user.phone, self.config.country_code)
        )

    def format_message(self, message: str) -> str:
        return truncate(clean_message(message), MAX_ALERT_LENGTH)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        try:
            cost = self.billing.charge(user, text)
        except InsufficientBalanceError as e:
            logger.warning(str(e))
            return self.failure(
                "Insufficient balance to send SMS",
                error_code="insufficient_balance",
            )

        result = self.send_sms(user.phone, text)
        if result.success:
            result.details["cost"] = cost
        else:
            self.billing.refund(user, cost)
        return result

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        text = truncate(f"Test: {clean_message(message)}", MAX_TEST_LENGTH)
        return self.deliver(user, text, None, {})

    def send_sms(self, phone: str, text: str) -> NotificationResult:
        """Send through the configured provider."""
        to = format_phone(phone, self.config.country_code)
        provider = self.config.provider

        if provider == "twilio":
            return self._send_via_twilio(to, text)
        if provider == "vonage":
            return self._send_via_vonage(to, text)
        if provider == "mock":
            logger.info(f"Mock SMS to {to}: {text}")
            return self.success(provider="mock")
        return self.failure(f"SMS provider not supported: {provider}")

    def _send_via_twilio(self, to: str, text: str) -> NotificationResult:
        sid = self.config.twilio_sid
        token = self.config.twilio_token
        sender = self.config.twilio_from
        if not (sid and token and sender):
            return self.failure("Twilio credentials not configured")

        try:
            message = twilio_client(sid, token, self.timeout).messages.create(
                to=to, from_=sender, body=text
            )
        except TwilioRestException as e:
            logger.error(f"Twilio SMS error: {e.msg}")
            return self.failure(e.msg or "Failed to send SMS")
        except (TwilioException, requests.exceptions.RequestException) as e:
            logger.error(f"Twilio SMS error: {e}")
            return self.failure(f"Connection error: {str(e)}")

        return self.success(provider="twilio", message_sid=message.sid)

    def _send_via_vonage(self, to: str, text: str) -> NotificationResult:
        key = self.config.vonage_key
        secret = self.config.vonage_secret
        if not (key and secret):
            return self.failure("Vonage credentials not configured")

        try:
            response = requests.post(
                VONAGE_URL,
                json={
                    "api_key": key,
                    "api_secret": secret,
                    "from": self.config.sender,
                    "to": to.lstrip("+"),
                    "text": text,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            messages = response.json().get("messages") or [{}]
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Vonage SMS error: {e}")
            return self.failure(f"Failed to send SMS via Vonage: {e}")

        if str(messages[0].get("status")) == "0":
            return self.success(provider="vonage")

        error = messages[0].get("error-text") or "Failed to send SMS"
        logger.error(f"Vonage SMS error: {error}")
        return self.failure(error)
