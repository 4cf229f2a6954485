"""
Data models for AlertWatch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any


CHANNEL_NAMES = ("sms", "email", "push", "telegram", "whatsapp", "slack")


@dataclass
class AlertType:
    """Catalog entry identifying a monitor family."""

    slug: str  # "crypto", "currency", "stock", "weather", "website"
    name: str
    description: str = ""
    check_interval: int = 300
    condition_fields: dict[str, str] = field(default_factory=dict)
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class User:
    """User with per-channel reachability fields."""

    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    phone_verified_at: Optional[datetime] = None
    telegram_chat_id: Optional[str] = None
    whatsapp_number: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    sms_balance: float = 0.0
    created_at: Optional[datetime] = None

    @property
    def phone_verified(self) -> bool:
        return self.phone_verified_at is not None


@dataclass
class PushSubscription:
    """Browser push subscription for a user."""

    user_id: int
    endpoint: str
    p256dh: str
    auth: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_subscription_info(self) -> dict[str, Any]:
        """Shape expected by the web push library."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


@dataclass
class PersonalAlert:
    """A user's standing watch on one target."""

    user_id: int
    alert_type: str
    name: str
    asset: str
    conditions: dict[str, Any]  # {"field": ..., "operator": ..., "value": ...}
    notification_channels: list[str] = field(default_factory=list)
    check_frequency: int = 300  # seconds
    is_active: bool = True
    is_recurring: bool = True
    last_checked_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    trigger_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class AlertHistory:
    """One trigger event with its data snapshot and delivery outcome."""

    personal_alert_id: int
    user_id: int
    triggered_conditions: dict[str, Any]
    current_values: dict[str, Any]
    notification_channels: list[str]
    triggered_at: datetime
    delivery_status: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    id: Optional[int] = None

    def is_fully_delivered(self) -> bool:
        """True when every requested channel reported success."""
        if not self.delivery_status:
            return False
        return all(
            isinstance(status, dict) and status.get("success") is True
            for status in self.delivery_status.values()
        )

    def failed_channels(self) -> list[str]:
        """Channels whose delivery did not succeed."""
        return [
            channel
            for channel, status in self.delivery_status.items()
            if not (isinstance(status, dict) and status.get("success") is True)
        ]
