"""
Database layer tests.
Tests for SQLite connection, schema creation, and repository operations.
"""

import pytest
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

from alertwatch.database.connection import Database
from alertwatch.database.models import AlertHistory, PersonalAlert, PushSubscription, User
from alertwatch.database.repository import is_due


class TestDatabaseConnection:
    """Test database connection and initialization."""

    def test_create_file_database(self, tmp_path: Path):
        """Should create a file-based SQLite database, including parent dirs."""
        db_path = tmp_path / "nested" / "alerts.db"
        db = Database(str(db_path))
        assert db_path.exists()
        db.close()

    def test_initialize_schema(self, db):
        """Should create all required tables on initialization."""
        cursor = db.connection.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        assert {
            "users",
            "push_subscriptions",
            "alert_types",
            "personal_alerts",
            "alert_history",
        }.issubset(tables)

    def test_initialize_is_idempotent(self, db):
        """Should allow initializing an existing schema again."""
        db.initialize()

    def test_close_connection(self):
        """Should properly close database connection."""
        db = Database(":memory:")
        db.close()
        with pytest.raises(sqlite3.ProgrammingError):
            db.connection.execute("SELECT 1")


class TestAlertTypeRepository:
    """Test the seeded alert type catalog."""

    def test_seeds_five_types(self, repos):
        """Should seed the five built-in alert types."""
        slugs = {t.slug for t in repos["alert_type"].list_active()}
        assert slugs == {"crypto", "currency", "stock", "weather", "website"}

    def test_seeding_twice_keeps_one_row_per_type(self, repos):
        """Should not duplicate types when seeding again."""
        repos["alert_type"].seed_defaults()
        assert len(repos["alert_type"].list_active()) == 5

    def test_get_by_slug(self, repos):
        """Should load condition fields for a type."""
        crypto = repos["alert_type"].get_by_slug("crypto")
        assert crypto is not None
        assert "price" in crypto.condition_fields
        assert repos["alert_type"].get_by_slug("lottery") is None


class TestUserRepository:
    """Test User CRUD and balance operations."""

    def test_create_and_get_user(self, repos, sample_user):
        """Should round trip user contact fields."""
        user = repos["user"].get_by_id(sample_user.id)
        assert user.email == "aysel@example.com"
        assert user.phone_verified is True
        assert user.telegram_chat_id == "123456789"
        assert user.sms_balance == pytest.approx(1.0)

    def test_get_missing_user(self, repos):
        """Should return None for unknown IDs."""
        assert repos["user"].get_by_id(999) is None

    def test_update_user(self, repos, sample_user):
        """Should update contact details."""
        sample_user.telegram_chat_id = None
        sample_user.phone_verified_at = None
        repos["user"].update(sample_user)

        user = repos["user"].get_by_id(sample_user.id)
        assert user.telegram_chat_id is None
        assert user.phone_verified is False

    def test_adjust_balance_debit(self, repos, sample_user):
        """Should deduct when the balance covers the amount."""
        assert repos["user"].adjust_sms_balance(sample_user.id, -0.25) is True
        assert repos["user"].get_by_id(sample_user.id).sms_balance == pytest.approx(0.75)

    def test_adjust_balance_refuses_overdraft(self, repos, sample_user):
        """Should leave the balance unchanged when it cannot cover a debit."""
        assert repos["user"].adjust_sms_balance(sample_user.id, -5.0) is False
        assert repos["user"].get_by_id(sample_user.id).sms_balance == pytest.approx(1.0)

    def test_list_and_delete(self, repos, sample_user):
        """Should list users and delete them."""
        repos["user"].create(User(email="other@example.com"))
        assert len(repos["user"].list_all()) == 2

        repos["user"].delete(sample_user.id)
        assert repos["user"].get_by_id(sample_user.id) is None


class TestPushSubscriptionRepository:
    """Test push subscription storage."""

    def _subscription(self, user_id, endpoint="https://push.example.com/abc"):
        return PushSubscription(
            user_id=user_id, endpoint=endpoint, p256dh="key", auth="secret"
        )

    def test_add_and_list(self, repos, sample_user):
        """Should store subscriptions for a user."""
        repos["subscription"].add(self._subscription(sample_user.id))
        subs = repos["subscription"].get_user_subscriptions(sample_user.id)
        assert len(subs) == 1
        assert subs[0].to_subscription_info() == {
            "endpoint": "https://push.example.com/abc",
            "keys": {"p256dh": "key", "auth": "secret"},
        }
        assert repos["subscription"].has_subscription(sample_user.id) is True

    def test_same_endpoint_is_upserted(self, repos, sample_user):
        """Should replace keys instead of duplicating an endpoint."""
        first = repos["subscription"].add(self._subscription(sample_user.id))
        second = self._subscription(sample_user.id)
        second.auth = "rotated"
        second = repos["subscription"].add(second)

        subs = repos["subscription"].get_user_subscriptions(sample_user.id)
        assert len(subs) == 1
        assert second.id == first.id
        assert subs[0].auth == "rotated"

    def test_delete(self, repos, sample_user):
        """Should remove a subscription."""
        sub = repos["subscription"].add(self._subscription(sample_user.id))
        repos["subscription"].delete(sub.id)
        assert repos["subscription"].has_subscription(sample_user.id) is False


class TestPersonalAlertRepository:
    """Test alert storage and lifecycle updates."""

    def test_create_and_get(self, repos, btc_alert):
        """Should round trip JSON columns."""
        alert = repos["alert"].get_by_id(btc_alert.id)
        assert alert.conditions == {"field": "price", "operator": "above", "value": 50000}
        assert alert.notification_channels == ["sms", "telegram"]
        assert alert.is_recurring is True
        assert alert.trigger_count == 0

    def test_get_due_respects_frequency(self, repos, btc_alert):
        """Should exclude alerts checked within their interval."""
        now = datetime(2024, 3, 1, 12, 0, 0)
        repos["alert"].touch_checked(btc_alert, now)

        assert repos["alert"].get_due("crypto", now + timedelta(seconds=299)) == []
        due = repos["alert"].get_due("crypto", now + timedelta(seconds=300))
        assert [a.id for a in due] == [btc_alert.id]

    def test_get_due_excludes_inactive(self, repos, btc_alert):
        """Should not return deactivated alerts."""
        repos["alert"].deactivate(btc_alert)
        assert repos["alert"].get_due("crypto") == []

    def test_get_user_alerts(self, repos, sample_user, btc_alert):
        """Should filter user alerts by active state when asked."""
        repos["alert"].deactivate(btc_alert)
        assert len(repos["alert"].get_user_alerts(sample_user.id)) == 1
        assert repos["alert"].get_user_alerts(sample_user.id, active_only=True) == []

    def test_claim_trigger_recurring(self, repos, btc_alert):
        """Should increment the count and keep recurring alerts active."""
        now = datetime(2024, 3, 1, 12, 0, 0)
        assert repos["alert"].claim_trigger(btc_alert, now) is True

        stored = repos["alert"].get_by_id(btc_alert.id)
        assert stored.trigger_count == 1
        assert stored.last_triggered_at == now
        assert stored.is_active is True

    def test_claim_trigger_one_time_deactivates(self, repos, btc_alert):
        """Should deactivate one-time alerts in the same update."""
        btc_alert.is_recurring = False
        repos["alert"].db.connection.execute(
            "UPDATE personal_alerts SET is_recurring = 0 WHERE id = ?", (btc_alert.id,)
        )

        assert repos["alert"].claim_trigger(btc_alert, datetime.now()) is True
        stored = repos["alert"].get_by_id(btc_alert.id)
        assert stored.is_active is False
        assert stored.trigger_count == 1
        assert btc_alert.is_active is False

    def test_claim_trigger_stale_count_loses(self, repos, btc_alert):
        """Should refuse a claim made with an outdated trigger count."""
        stale = repos["alert"].get_by_id(btc_alert.id)
        assert repos["alert"].claim_trigger(btc_alert, datetime.now()) is True
        assert repos["alert"].claim_trigger(stale, datetime.now()) is False
        assert repos["alert"].get_by_id(btc_alert.id).trigger_count == 1


class TestAlertHistoryRepository:
    """Test history ledger operations."""

    def _entry(self, alert, when):
        return AlertHistory(
            personal_alert_id=alert.id,
            user_id=alert.user_id,
            triggered_conditions=alert.conditions,
            current_values={"price": 51000.0},
            notification_channels=alert.notification_channels,
            triggered_at=when,
        )

    def test_record_delivery(self, repos, btc_alert):
        """Should attach message and delivery status to an entry."""
        history = repos["history"].create(self._entry(btc_alert, datetime.now()))
        status = {"sms": {"success": True}, "telegram": {"success": False, "error": "x"}}
        repos["history"].record_delivery(history, "BTC above 50000", status)

        stored = repos["history"].get_by_id(history.id)
        assert stored.message == "BTC above 50000"
        assert stored.delivery_status == status
        assert stored.current_values == {"price": 51000.0}
        assert stored.failed_channels() == ["telegram"]
        assert stored.is_fully_delivered() is False

    def test_history_ordering(self, repos, sample_user, btc_alert):
        """Should list alert history oldest first and user history newest first."""
        base = datetime(2024, 3, 1, 12, 0, 0)
        for minutes in (0, 10, 5):
            repos["history"].create(self._entry(btc_alert, base + timedelta(minutes=minutes)))

        alert_times = [h.triggered_at for h in repos["history"].get_alert_history(btc_alert.id)]
        assert alert_times == sorted(alert_times)

        user_history = repos["history"].get_user_history(sample_user.id, limit=2)
        assert [h.triggered_at for h in user_history] == [
            base + timedelta(minutes=10),
            base + timedelta(minutes=5),
        ]


class TestIsDue:
    """Test the throttle predicate."""

    def test_never_checked_is_due(self):
        """Should be due when never checked."""
        alert = PersonalAlert(user_id=1, alert_type="crypto", name="a", asset="BTC", conditions={})
        assert is_due(alert, datetime.now()) is True

    def test_due_after_frequency(self):
        """Should be due once check_frequency seconds have elapsed."""
        checked = datetime(2024, 1, 1, 10, 0, 0)
        alert = PersonalAlert(
            user_id=1,
            alert_type="crypto",
            name="a",
            asset="BTC",
            conditions={},
            check_frequency=60,
            last_checked_at=checked,
        )
        assert is_due(alert, checked + timedelta(seconds=59)) is False
        assert is_due(alert, checked + timedelta(seconds=60)) is True
