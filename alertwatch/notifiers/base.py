"""
Base notification channel classes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert, User

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None
    error_code: Optional[str] = None
    mocked: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Delivery status entry as stored on the history row."""
        result: dict[str, Any] = {
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error_code:
            result["error_code"] = self.error_code
        if self.mocked:
            result["mocked"] = True
        result.update(self.details)
        return result


class NotificationChannel(ABC):
    """
    Abstract base class for delivery channels.

    send() and send_test() never raise; provider errors come back as a
    failed NotificationResult.
    """

    name: str = ""
    not_configured_error = "Channel not configured"

    def __init__(self, mock_mode: bool = False):
        """
        Args:
            mock_mode: Log alert payloads instead of contacting the provider
        """
        self.mock_mode = mock_mode

    @abstractmethod
    def is_configured(self, user: User) -> bool:
        """Check whether the user can be reached on this channel."""
        pass

    @abstractmethod
    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        """Contact the provider. May raise; callers convert errors."""
        pass

    def format_message(self, message: str) -> str:
        """Adapt the markdown-lite message to the medium."""
        return message

    def send(
        self,
        user: User,
        message: str,
        alert: Optional[PersonalAlert] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> NotificationResult:
        """
        Send an alert notification.

        Args:
            user: Recipient
            message: Channel-agnostic alert text
            alert: Alert that triggered, if any
            data: Data snapshot at trigger time

        Returns:
            NotificationResult indicating success or failure
        """
        try:
            if not self.is_configured(user):
                return self.failure(self.not_configured_error)

            text = self.format_message(message)

            if self.mock_mode:
                logger.info(
                    f"[MOCK] {self.name} notification to user {user.id}"
                    f" for alert {alert.name if alert else '-'}: {text}"
                )
                return NotificationResult(success=True, channel=self.name, mocked=True)

            return self.deliver(user, text, alert, data or {})
        except Exception as e:
            logger.error(f"{self.name} notification failed for user {user.id}: {e}")
            return self.failure(str(e))

    def send_test(self, user: User, message: str) -> NotificationResult:
        """
        Send a user-initiated test message, bypassing mock mode.

        Returns:
            NotificationResult indicating success or failure
        """
        try:
            if not self.is_configured(user):
                return self.failure(self.not_configured_error)
            return self.deliver_test(user, message)
        except Exception as e:
            logger.error(f"{self.name} test failed for user {user.id}: {e}")
            return self.failure(str(e))

    def deliver_test(self, user: User, message: str) -> NotificationResult:
        return self.deliver(user, self.format_message(message), None, {})

    def success(self, **details: Any) -> NotificationResult:
        return NotificationResult(success=True, channel=self.name, details=details)

    def failure(
        self, error: str, error_code: Optional[str] = None, **details: Any
    ) -> NotificationResult:
        return NotificationResult(
            success=False,
            channel=self.name,
            error=error,
            error_code=error_code,
            details=details,
        )


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
