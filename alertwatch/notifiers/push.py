"""
Web push notification channel (VAPID).
"""

import json
import logging
import re
import time
from datetime import datetime
from typing import Any, Optional

from pywebpush import WebPushException, webpush

from alertwatch.config import PushNotificationConfig
from alertwatch.database.models import PersonalAlert, PushSubscription, User
from alertwatch.database.repository import PushSubscriptionRepository
from .base import NotificationChannel, NotificationResult, truncate

logger = logging.getLogger(__name__)


ALERT_ICONS = {
    "crypto": "/icons/crypto.png",
    "weather": "/icons/weather.png",
    "website": "/icons/website.png",
    "stock": "/icons/stock.png",
    "currency": "/icons/currency.png",
}
DEFAULT_ICON = "/icon-192.png"
BADGE = "/badge-72.png"

# Push services answer these for unsubscribed or expired endpoints
GONE_STATUS_CODES = (404, 410)


class PushChannel(NotificationChannel):
    """Sends browser push notifications to every stored subscription of a user."""

    name = "push"
    not_configured_error = "Push notifications not configured"

    def __init__(
        self,
        subscriptions: PushSubscriptionRepository,
        config: Optional[PushNotificationConfig] = None,
        app_url: str = "https://alertwatch.app",
        mock_mode: bool = False,
    ):
        """
        Initialize push channel.

        Args:
            subscriptions: Stored browser subscriptions
            config: VAPID keys, subject and message TTL
            app_url: Base URL opened when the notification is clicked
            mock_mode: Log alert payloads instead of sending
        """
        super().__init__(mock_mode=mock_mode)
        self.subscriptions = subscriptions
        self.config = config or PushNotificationConfig()
        self.app_url = app_url.rstrip("/")

    @property
    def vapid_ready(self) -> bool:
        return bool(self.config.vapid_public_key and self.config.vapid_private_key)

    def is_configured(self, user: User) -> bool:
        return self.vapid_ready and self.subscriptions.has_subscription(user.id)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        return self._send_payload_to_user(user, self.build_payload(text, alert, data))

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        payload = {
            "title": "🔔 Test Notification",
            "body": self._clean(message),
            "icon": DEFAULT_ICON,
            "badge": BADGE,
            "tag": f"test-{int(time.time())}",
            "data": {"type": "test", "timestamp": datetime.now().isoformat()},
        }
        return self._send_payload_to_user(user, payload)

    def build_payload(
        self,
        message: str,
        alert: Optional[PersonalAlert],
        data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Title is the first line, body is up to three non-blank lines after it."""
        lines = [line.strip() for line in self._clean(message).split("\n") if line.strip()]
        title = lines[0] if lines else "Alert Triggered"
        body = "\n".join(lines[1:4])

        alert_type = alert.alert_type if alert else ""
        alert_id = alert.id if alert else None
        payload_data = {
            key: value
            for key, value in (data or {}).items()
            if isinstance(value, (str, int, float, bool)) or value is None
        }
        payload_data.update(
            {
                "alertId": alert_id,
                "alertType": alert_type or "custom",
                "clickUrl": f"{self.app_url}/alerts",
                "timestamp": datetime.now().isoformat(),
            }
        )

        return {
            "title": title,
            "body": body.strip() or "Your alert condition has been met",
            "icon": ALERT_ICONS.get(alert_type, DEFAULT_ICON),
            "badge": BADGE,
            "tag": f"alert-{alert_id}-{int(time.time())}",
            "renotify": True,
            "requireInteraction": False,
            "timestamp": int(time.time() * 1000),
            "vibrate": [200, 100, 200],
            "actions": [
                {"action": "view", "title": "View Details", "icon": "/icons/view.png"},
                {"action": "dismiss", "title": "Dismiss", "icon": "/icons/dismiss.png"},
            ],
            "data": payload_data,
        }

    def _send_payload_to_user(
        self, user: User, payload: dict[str, Any]
    ) -> NotificationResult:
        subscriptions = self.subscriptions.get_user_subscriptions(user.id)
        sent_count = 0
        errors = []
        dead = []
        for subscription in subscriptions:
            error, gone = self._send_to_subscription(subscription, payload)
            if error is None:
                sent_count += 1
            else:
                errors.append(error)
                if gone:
                    dead.append(subscription)
        self._prune(dead)

        if sent_count == 0:
            return self.failure(
                "Failed to send to any subscription: " + ", ".join(errors),
                total_subscriptions=len(subscriptions),
            )
        return self.success(
            sent_count=sent_count, total_subscriptions=len(subscriptions)
        )

    def _send_to_subscription(
        self, subscription: PushSubscription, payload: dict[str, Any]
    ) -> tuple[Optional[str], bool]:
        """
        Push one payload to one subscription.

        Returns:
            (error or None, whether the subscription is gone)
        """
        try:
            webpush(
                subscription_info=subscription.to_subscription_info(),
                data=json.dumps(payload),
                vapid_private_key=self.config.vapid_private_key,
                vapid_claims={"sub": self._vapid_subject()},
                ttl=self.config.ttl,
            )
            return None, False
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            gone = status_code in GONE_STATUS_CODES
            if gone:
                logger.warning(
                    f"Push subscription {subscription.id} expired ({status_code})"
                )
            suffix = f" (Status: {status_code})" if status_code else ""
            return f"Push failed: {e.message}{suffix}", gone

    def _prune(self, dead: list[PushSubscription]) -> None:
        for subscription in dead:
            self.subscriptions.delete(subscription.id)
            logger.info(f"Removed dead push subscription {subscription.id}")

    def _vapid_subject(self) -> str:
        subject = self.config.vapid_subject or self.app_url
        if subject.startswith(("mailto:", "https://", "http://")):
            return subject
        return f"mailto:{subject}"

    @staticmethod
    def _clean(message: str) -> str:
        message = re.sub(r"\*\*(.*?)\*\*", r"\1", message, flags=re.DOTALL)
        return truncate(message, 500).strip()
