"""
Slack incoming webhook notification channel.
"""

import logging
import re
import time
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

import requests

from alertwatch.config import SlackNotificationConfig
from alertwatch.database.models import PersonalAlert, User
from .base import NotificationChannel, NotificationResult, truncate

logger = logging.getLogger(__name__)


MAX_SECTION_LENGTH = 2900

EMOJI_PATTERN = re.compile("[\U0001F000-\U0001FAFF\u2600-\u27BF\uFE0F]")


def to_slack_markdown(message: str) -> str:
    """Convert **bold** to *bold* and [text](url) links to <url|text>."""
    message = re.sub(r"\*\*(.*?)\*\*", r"*\1*", message, flags=re.DOTALL)
    message = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"<\2|\1>", message)
    return truncate(message, MAX_SECTION_LENGTH)


def plain_text(message: str) -> str:
    """Fallback text without markup or emoji."""
    message = re.sub(r"\*\*(.*?)\*\*", r"\1", message, flags=re.DOTALL)
    return EMOJI_PATTERN.sub("", message).strip()


def is_webhook_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class SlackChannel(NotificationChannel):
    """Posts block-formatted notifications to a user's Slack webhook."""

    name = "slack"
    not_configured_error = "Slack not configured"

    # Attachment colors per alert type
    COLORS = {
        "crypto": "#f7931a",
        "weather": "#00a8e8",
        "website": "#ff4757",
        "stock": "#00b894",
        "currency": "#6c5ce7",
    }
    DEFAULT_COLOR = "#667eea"

    TYPE_NAMES = {
        "crypto": "Cryptocurrency",
        "weather": "Weather",
        "website": "Website",
        "stock": "Stock",
        "currency": "Currency",
    }

    def __init__(
        self,
        config: Optional[SlackNotificationConfig] = None,
        app_url: str = "https://alertwatch.app",
        mock_mode: bool = False,
    ):
        """
        Initialize Slack channel.

        Args:
            config: Webhook timeout and rate limit settings
            app_url: Base URL for the action buttons
            mock_mode: Log alert payloads instead of posting
        """
        super().__init__(mock_mode=mock_mode)
        self.config = config or SlackNotificationConfig()
        self.app_url = app_url.rstrip("/")

    def is_configured(self, user: User) -> bool:
        return is_webhook_url(user.slack_webhook_url)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        return self._post(user.slack_webhook_url, self._create_payload(text, alert))

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        payload = {
            "text": "🔔 Test Notification from AlertWatch",
            "attachments": [
                {
                    "color": self.DEFAULT_COLOR,
                    "title": "Test Alert",
                    "text": plain_text(message),
                    "footer": "AlertWatch",
                    "ts": int(time.time()),
                }
            ],
        }
        return self._post(user.slack_webhook_url, payload)

    def _post(self, webhook_url: str, payload: dict[str, Any]) -> NotificationResult:
        try:
            response = self._send_webhook(webhook_url, payload)
        except requests.exceptions.RequestException as e:
            logger.error(f"Slack webhook error: {e}")
            return self.failure(f"Connection error: {str(e)}")

        # Slack answers a successful webhook post with the literal body "ok"
        if response.ok and response.text == "ok":
            return self.success()

        error = response.text or f"HTTP {response.status_code}"
        logger.error(f"Slack webhook error: {error}")
        return self.failure(error)

    def _send_webhook(self, webhook_url: str, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(webhook_url, json=payload, timeout=self.config.timeout)

        # Handle rate limiting
        if response.status_code == 429:
            try:
                retry_after = float(response.headers.get("Retry-After", "1"))
            except ValueError:
                retry_after = 1.0
            time.sleep(min(retry_after, self.config.max_retry_after))
            response = requests.post(
                webhook_url, json=payload, timeout=self.config.timeout
            )

        return response

    def _create_payload(
        self, message: str, alert: Optional[PersonalAlert]
    ) -> dict[str, Any]:
        """Create Slack block payload."""
        alert_name = alert.name if alert else "Alert Triggered"
        alert_type = alert.alert_type if alert else ""
        now = datetime.now()

        blocks: list[dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"🔔 {alert_name}", "emoji": True},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": to_slack_markdown(message)},
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"*Alert Type:* {self.TYPE_NAMES.get(alert_type, 'Custom')}",
                    },
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"*Triggered:* <!date^{int(now.timestamp())}"
                            f"^{{date_short_pretty}} at {{time}}|{now.strftime('%Y-%m-%d %H:%M:%S')}>"
                        ),
                    },
                ],
            },
        ]

        buttons = []
        if alert and alert.id is not None:
            buttons.append(self._button("View Alert", f"{self.app_url}/alerts/{alert.id}", "view_alert"))
        buttons.append(self._button("Manage Alerts", f"{self.app_url}/dashboard/alerts", "manage_alerts"))
        blocks.append({"type": "actions", "elements": buttons})

        return {
            "blocks": blocks,
            "attachments": [
                {
                    "color": self.COLORS.get(alert_type, self.DEFAULT_COLOR),
                    "fallback": plain_text(message),
                }
            ],
        }

    @staticmethod
    def _button(text: str, url: str, action_id: str) -> dict[str, Any]:
        return {
            "type": "button",
            "text": {"type": "plain_text", "text": text, "emoji": True},
            "url": url,
            "action_id": action_id,
        }
