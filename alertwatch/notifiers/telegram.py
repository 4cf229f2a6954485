"""
Telegram Bot API notification channel.
"""

import logging
import re
from typing import Any, Optional

import requests

from alertwatch.config import TelegramNotificationConfig
from alertwatch.database.models import PersonalAlert, User
from .base import NotificationChannel, NotificationResult

logger = logging.getLogger(__name__)


MAX_MESSAGE_LENGTH = 4000

# MarkdownV2 control characters escaped in message text; * is kept for bold
ESCAPED_CHARACTERS = "\\_[]()~`>#+-=|{}.!"

ELLIPSIS = "\\.\\.\\."

TEST_HEADER = "🔔 *Test Notification*\n\n"


def escape_markdown(message: str) -> str:
    """Convert **bold** to *bold* and escape the other MarkdownV2 characters."""
    message = re.sub(r"\*\*(.*?)\*\*", r"*\1*", message, flags=re.DOTALL)
    return "".join(
        f"\\{char}" if char in ESCAPED_CHARACTERS else char for char in message
    )


def cap_length(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Cut escaped MarkdownV2 text to limit characters.

    The cut never splits an escape sequence or leaves a bold marker open,
    and ends with an escaped ellipsis.
    """
    if len(text) <= limit:
        return text
    cut = text[: limit - len(ELLIPSIS)]
    trailing = len(cut) - len(cut.rstrip("\\"))
    if trailing % 2:
        cut = cut[:-1]
    if cut.count("*") % 2:
        index = cut.rfind("*")
        cut = cut[:index] + cut[index + 1:]
    return cut + ELLIPSIS


def format_telegram_message(message: str) -> str:
    """Escape a message for MarkdownV2 and cap its length."""
    return cap_length(escape_markdown(message))


class TelegramChannel(NotificationChannel):
    """Sends notifications through a Telegram bot."""

    name = "telegram"
    not_configured_error = "Telegram not configured"

    def __init__(
        self,
        config: Optional[TelegramNotificationConfig] = None,
        mock_mode: bool = False,
        timeout: float = 10,
    ):
        super().__init__(mock_mode=mock_mode)
        self.config = config or TelegramNotificationConfig()
        self.timeout = timeout

    def is_configured(self, user: User) -> bool:
        return bool(user.telegram_chat_id) and bool(self.config.bot_token)

    def format_message(self, message: str) -> str:
        return format_telegram_message(message)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        return self.send_message(user.telegram_chat_id, text)

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        text = cap_length(TEST_HEADER + escape_markdown(message))
        return self.send_message(user.telegram_chat_id, text)

    def send_message(self, chat_id: str, text: str) -> NotificationResult:
        """Call sendMessage with MarkdownV2 parsing."""
        url = f"{self.config.api_url.rstrip('/')}/bot{self.config.bot_token}/sendMessage"
        try:
            response = requests.post(
                url,
                json={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "MarkdownV2",
                    "disable_web_page_preview": True,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Telegram error: {e}")
            return self.failure(f"Connection error: {str(e)}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.ok and body.get("ok"):
            return self.success()

        error = body.get("description") or f"HTTP {response.status_code}: {response.text}"
        if "chat not found" in error:
            logger.warning(f"Telegram chat {chat_id} not found")
        logger.error(f"Telegram error: {error}")
        return self.failure(error)
