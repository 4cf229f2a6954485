"""
Fan-out of alert messages across notification channels.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from alertwatch.billing import BalanceBilling, UnmeteredBilling
from alertwatch.config import AppConfig
from alertwatch.database.models import PersonalAlert, User
from alertwatch.database.repository import PushSubscriptionRepository, UserRepository
from .base import NotificationChannel, NotificationResult
from .email import EmailChannel
from .push import PushChannel
from .slack import SlackChannel
from .sms import SMSChannel
from .telegram import TelegramChannel
from .whatsapp import WhatsAppChannel

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Routes a message to each requested channel and collects the outcomes."""

    def __init__(self, channels: list[NotificationChannel]):
        self.channels: dict[str, NotificationChannel] = {
            channel.name: channel for channel in channels
        }

    def dispatch(
        self,
        user: User,
        channel_names: list[str],
        message: str,
        alert: Optional[PersonalAlert] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> dict[str, dict[str, Any]]:
        """
        Send a message through every requested channel.

        A failure or exception in one channel never stops the others.

        Args:
            user: Recipient
            channel_names: Channels requested by the alert, in order
            message: Channel-agnostic alert text
            alert: Alert that triggered
            data: Data snapshot at trigger time

        Returns:
            {channel_name: {"success", "error", "timestamp", ...}}
        """
        delivery_status: dict[str, dict[str, Any]] = {}

        for channel_name in channel_names:
            channel = self.channels.get(channel_name)
            if channel is None:
                logger.warning(f"Unknown notification channel: {channel_name}")
                delivery_status[channel_name] = {
                    "success": False,
                    "error": "Channel not configured",
                }
                continue

            try:
                if not channel.is_configured(user):
                    logger.info(f"User {user.id} doesn't have {channel_name} configured")
                    delivery_status[channel_name] = {
                        "success": False,
                        "error": "Channel not configured for user",
                    }
                    continue

                result = channel.send(user, message, alert, data)
            except Exception as e:
                logger.error(f"Exception sending {channel_name} notification: {e}")
                result = NotificationResult(success=False, channel=channel_name, error=str(e))

            delivery_status[channel_name] = result.to_dict()

            if result.success:
                logger.info(f"Notification sent via {channel_name} to user {user.id}")
            else:
                logger.error(
                    f"Failed to send {channel_name} notification to user {user.id}: "
                    f"{result.error or 'Unknown error'}"
                )

        return delivery_status

    def test_channel(self, user: User, channel_name: str) -> NotificationResult:
        """Send the standard test message through one channel."""
        channel = self.channels.get(channel_name)
        if channel is None:
            return NotificationResult(
                success=False, channel=channel_name, error="Channel not configured"
            )

        message = (
            "🔔 Test notification from AlertWatch\n\n"
            f"This is a test message to verify your {channel_name} notifications "
            "are working correctly.\n"
            f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        )

        try:
            return channel.send_test(user, message)
        except Exception as e:
            return NotificationResult(success=False, channel=channel_name, error=str(e))

    def available_channels(self) -> list[str]:
        return list(self.channels)

    def has_channel(self, channel_name: str) -> bool:
        return channel_name in self.channels


def build_channels(
    config: AppConfig,
    users: UserRepository,
    subscriptions: PushSubscriptionRepository,
) -> list[NotificationChannel]:
    """
    Create all six channels from configuration.

    Args:
        config: Application configuration
        users: User storage, used for SMS balance billing
        subscriptions: Stored push subscriptions

    Returns:
        Channels in email, sms, telegram, whatsapp, slack, push order
    """
    notifications = config.notifications
    mock_mode = notifications.mock_mode
    timeout = config.data_source.request_timeout

    if config.billing.enabled:
        billing = BalanceBilling(users, config.billing.cost_per_segment)
    else:
        billing = UnmeteredBilling()

    return [
        EmailChannel(notifications.email, app_url=notifications.app_url, mock_mode=mock_mode),
        SMSChannel(notifications.sms, billing=billing, mock_mode=mock_mode, timeout=timeout),
        TelegramChannel(notifications.telegram, mock_mode=mock_mode, timeout=timeout),
        WhatsAppChannel(notifications.whatsapp, mock_mode=mock_mode, timeout=timeout),
        SlackChannel(notifications.slack, app_url=notifications.app_url, mock_mode=mock_mode),
        PushChannel(
            subscriptions,
            notifications.push,
            app_url=notifications.app_url,
            mock_mode=mock_mode,
        ),
    ]
