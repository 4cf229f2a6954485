"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime
from typing import Any, Optional
from unittest.mock import Mock, patch

from alertwatch.data.base import DataSource
from alertwatch.data.cache import TTLCache
from alertwatch.database.connection import Database
from alertwatch.database.models import PersonalAlert, User
from alertwatch.database.repository import (
    AlertHistoryRepository,
    AlertTypeRepository,
    PersonalAlertRepository,
    PushSubscriptionRepository,
    UserRepository,
)
from alertwatch.notifiers.base import NotificationChannel, NotificationResult


class StaticSource(DataSource):
    """Data source returning a fixed snapshot and counting calls."""

    def __init__(self, data: Optional[dict[str, Any]]):
        super().__init__(cache=TTLCache())
        self.data = data
        self.calls: list[str] = []

    def fetch_uncached(self, target: str) -> Optional[dict[str, Any]]:
        self.calls.append(target)
        return None if self.data is None else dict(self.data)


class RecordingChannel(NotificationChannel):
    """Channel that records deliveries instead of contacting a provider."""

    def __init__(self, name: str, succeed: bool = True, raise_error: bool = False):
        super().__init__()
        self.name = name
        self.succeed = succeed
        self.raise_error = raise_error
        self.sent: list[tuple[int, str]] = []

    def is_configured(self, user: User) -> bool:
        return True

    def deliver(self, user, text, alert, data) -> NotificationResult:
        if self.raise_error:
            raise RuntimeError(f"{self.name} provider exploded")
        self.sent.append((user.id, text))
        if self.succeed:
            return self.success()
        return self.failure(f"{self.name} rejected message")


@pytest.fixture
def db():
    """Create in-memory database with schema and seeded alert types."""
    db = Database(":memory:")
    db.initialize()
    AlertTypeRepository(db).seed_defaults()
    yield db
    db.close()


@pytest.fixture
def repos(db):
    """Create all repositories."""
    return {
        "user": UserRepository(db),
        "subscription": PushSubscriptionRepository(db),
        "alert_type": AlertTypeRepository(db),
        "alert": PersonalAlertRepository(db),
        "history": AlertHistoryRepository(db),
    }


@pytest.fixture
def sample_user(repos) -> User:
    """User reachable on every channel except push."""
    return repos["user"].create(
        User(
            name="Aysel",
            email="aysel@example.com",
            phone="+994501234567",
            phone_verified_at=datetime(2024, 1, 1),
            telegram_chat_id="123456789",
            whatsapp_number="+994501234567",
            slack_webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
            sms_balance=1.0,
        )
    )


@pytest.fixture
def btc_alert(repos, sample_user) -> PersonalAlert:
    """Recurring BTC price alert on SMS and Telegram."""
    return repos["alert"].create(
        PersonalAlert(
            user_id=sample_user.id,
            alert_type="crypto",
            name="BTC breakout",
            asset="BTC",
            conditions={"field": "price", "operator": "above", "value": 50000},
            notification_channels=["sms", "telegram"],
            check_frequency=300,
        )
    )


@pytest.fixture
def sample_crypto_data():
    """Sample normalized crypto snapshot."""
    return {
        "symbol": "BTC",
        "price": 51000.0,
        "change_24h": 2.5,
        "volume": 1_250_000_000.0,
        "high_24h": 51500.0,
        "low_24h": 49500.0,
        "source": "binance",
        "timestamp": "2024-03-01T12:00:00",
    }


@pytest.fixture
def sample_stock_info():
    """Sample Yahoo Finance stock info response."""
    return {
        "regularMarketPrice": 175.50,
        "previousClose": 173.25,
        "open": 174.00,
        "dayHigh": 176.00,
        "dayLow": 173.50,
        "volume": 50_000_000,
        "shortName": "Apple Inc.",
    }


@pytest.fixture
def twilio():
    """Twilio REST client class; messages.create returns a sent message."""
    with patch("alertwatch.notifiers.sms.Client") as client_cls:
        client_cls.return_value.messages.create.return_value = Mock(sid="SM123")
        yield client_cls
