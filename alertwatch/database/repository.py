"""
Repository classes for CRUD operations.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Optional

from .connection import Database
from .models import AlertHistory, AlertType, PersonalAlert, PushSubscription, User


DEFAULT_ALERT_TYPES = [
    AlertType(
        slug="crypto",
        name="Cryptocurrency",
        description="Cryptocurrency price alerts",
        check_interval=300,
        condition_fields={
            "price": "Current Price",
            "change_24h": "24h Change %",
            "volume": "24h Volume",
        },
    ),
    AlertType(
        slug="weather",
        name="Weather",
        description="Weather alerts",
        check_interval=3600,
        condition_fields={
            "temperature": "Temperature",
            "humidity": "Humidity %",
            "wind_speed": "Wind Speed",
            "rain_chance": "Rain Chance %",
        },
    ),
    AlertType(
        slug="website",
        name="Website",
        description="Website monitoring alerts",
        check_interval=300,
        condition_fields={
            "status_code": "HTTP Status Code",
            "response_time": "Response Time (ms)",
            "is_online": "Online Status",
        },
    ),
    AlertType(
        slug="stock",
        name="Stock",
        description="Stock market alerts",
        check_interval=300,
        condition_fields={
            "price": "Current Price",
            "change_percent": "Change %",
            "volume": "Volume",
        },
    ),
    AlertType(
        slug="currency",
        name="Currency",
        description="Currency exchange rate alerts",
        check_interval=3600,
        condition_fields={
            "rate": "Exchange Rate",
            "change_24h": "24h Change",
        },
    ),
]


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class UserRepository:
    """CRUD operations for users."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, user: User) -> User:
        """Create a new user."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO users (
                    name, email, phone, phone_verified_at, telegram_chat_id,
                    whatsapp_number, slack_webhook_url, sms_balance
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.name,
                    user.email,
                    user.phone,
                    _to_iso(user.phone_verified_at),
                    user.telegram_chat_id,
                    user.whatsapp_number,
                    user.slack_webhook_url,
                    user.sms_balance,
                ),
            )
            self.db.connection.commit()
        user.id = cursor.lastrowid
        return user

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def update(self, user: User) -> None:
        """Update user contact details."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE users
                SET name = ?, email = ?, phone = ?, phone_verified_at = ?,
                    telegram_chat_id = ?, whatsapp_number = ?, slack_webhook_url = ?
                WHERE id = ?
                """,
                (
                    user.name,
                    user.email,
                    user.phone,
                    _to_iso(user.phone_verified_at),
                    user.telegram_chat_id,
                    user.whatsapp_number,
                    user.slack_webhook_url,
                    user.id,
                ),
            )
            self.db.connection.commit()

    def adjust_sms_balance(self, user_id: int, delta: float) -> bool:
        """
        Add delta to the user's SMS balance.

        Negative deltas only apply when the balance covers them.

        Returns:
            True if the balance was changed
        """
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE users
                SET sms_balance = sms_balance + ?
                WHERE id = ? AND sms_balance + ? >= -0.000001
                """,
                (delta, user_id, delta),
            )
            self.db.connection.commit()
        return cursor.rowcount == 1

    def delete(self, user_id: int) -> None:
        """Delete user."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
            self.db.connection.commit()

    def list_all(self) -> list[User]:
        """List all users."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM users ORDER BY id")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            phone_verified_at=_from_iso(row["phone_verified_at"]),
            telegram_chat_id=row["telegram_chat_id"],
            whatsapp_number=row["whatsapp_number"],
            slack_webhook_url=row["slack_webhook_url"],
            sms_balance=row["sms_balance"],
            created_at=row["created_at"],
        )


class PushSubscriptionRepository:
    """CRUD operations for browser push subscriptions."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, subscription: PushSubscription) -> PushSubscription:
        """Store a subscription, replacing keys if the endpoint already exists."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO push_subscriptions (user_id, endpoint, p256dh, auth)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(endpoint) DO UPDATE SET
                    user_id = excluded.user_id,
                    p256dh = excluded.p256dh,
                    auth = excluded.auth
                """,
                (
                    subscription.user_id,
                    subscription.endpoint,
                    subscription.p256dh,
                    subscription.auth,
                ),
            )
            self.db.connection.commit()
            cursor.execute(
                "SELECT id FROM push_subscriptions WHERE endpoint = ?",
                (subscription.endpoint,),
            )
            subscription.id = cursor.fetchone()["id"]
        return subscription

    def get_user_subscriptions(self, user_id: int) -> list[PushSubscription]:
        """Get all subscriptions for a user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM push_subscriptions WHERE user_id = ? ORDER BY id",
            (user_id,),
        )
        return [self._row_to_subscription(row) for row in cursor.fetchall()]

    def has_subscription(self, user_id: int) -> bool:
        """Check if the user has at least one subscription."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT 1 FROM push_subscriptions WHERE user_id = ? LIMIT 1",
            (user_id,),
        )
        return cursor.fetchone() is not None

    def delete(self, subscription_id: int) -> None:
        """Remove a subscription."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                "DELETE FROM push_subscriptions WHERE id = ?", (subscription_id,)
            )
            self.db.connection.commit()

    def _row_to_subscription(self, row) -> PushSubscription:
        return PushSubscription(
            id=row["id"],
            user_id=row["user_id"],
            endpoint=row["endpoint"],
            p256dh=row["p256dh"],
            auth=row["auth"],
            created_at=row["created_at"],
        )


class AlertTypeRepository:
    """Read access to the alert type catalog."""

    def __init__(self, db: Database):
        self.db = db

    def seed_defaults(self) -> None:
        """Insert the built-in alert types if missing."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.executemany(
                """
                INSERT INTO alert_types
                (slug, name, description, check_interval, condition_fields, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    check_interval = excluded.check_interval,
                    condition_fields = excluded.condition_fields
                """,
                [
                    (
                        t.slug,
                        t.name,
                        t.description,
                        t.check_interval,
                        json.dumps(t.condition_fields),
                        1 if t.is_active else 0,
                    )
                    for t in DEFAULT_ALERT_TYPES
                ],
            )
            self.db.connection.commit()

    def get_by_slug(self, slug: str) -> Optional[AlertType]:
        """Get alert type by slug."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alert_types WHERE slug = ?", (slug,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_type(row)

    def list_active(self) -> list[AlertType]:
        """List active alert types."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alert_types WHERE is_active = 1 ORDER BY id")
        return [self._row_to_type(row) for row in cursor.fetchall()]

    def _row_to_type(self, row) -> AlertType:
        return AlertType(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            description=row["description"],
            check_interval=row["check_interval"],
            condition_fields=json.loads(row["condition_fields"]),
            is_active=bool(row["is_active"]),
        )


class PersonalAlertRepository:
    """CRUD and lifecycle operations for personal alerts."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: PersonalAlert) -> PersonalAlert:
        """Create a new alert."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO personal_alerts (
                    user_id, alert_type, name, asset, conditions,
                    notification_channels, check_frequency, is_active,
                    is_recurring, last_checked_at, last_triggered_at,
                    trigger_count, metadata
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.user_id,
                    alert.alert_type,
                    alert.name,
                    alert.asset,
                    json.dumps(alert.conditions),
                    json.dumps(alert.notification_channels),
                    alert.check_frequency,
                    1 if alert.is_active else 0,
                    1 if alert.is_recurring else 0,
                    _to_iso(alert.last_checked_at),
                    _to_iso(alert.last_triggered_at),
                    alert.trigger_count,
                    json.dumps(alert.metadata),
                ),
            )
            self.db.connection.commit()
        alert.id = cursor.lastrowid
        return alert

    def get_by_id(self, alert_id: int) -> Optional[PersonalAlert]:
        """Get alert by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM personal_alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def get_active_by_type(self, alert_type: str) -> list[PersonalAlert]:
        """Get active alerts of one type."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM personal_alerts
            WHERE alert_type = ? AND is_active = 1
            ORDER BY id
            """,
            (alert_type,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def get_due(
        self, alert_type: str, now: Optional[datetime] = None
    ) -> list[PersonalAlert]:
        """Get active alerts of one type whose check interval has elapsed."""
        now = now or datetime.now()
        return [
            alert
            for alert in self.get_active_by_type(alert_type)
            if is_due(alert, now)
        ]

    def get_user_alerts(
        self, user_id: int, active_only: bool = False
    ) -> list[PersonalAlert]:
        """Get alerts belonging to a user."""
        cursor = self.db.connection.cursor()
        query = "SELECT * FROM personal_alerts WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        cursor.execute(query + " ORDER BY id", (user_id,))
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def touch_checked(self, alert: PersonalAlert, checked_at: datetime) -> None:
        """Stamp last_checked_at."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                "UPDATE personal_alerts SET last_checked_at = ? WHERE id = ?",
                (checked_at.isoformat(), alert.id),
            )
            self.db.connection.commit()
        alert.last_checked_at = checked_at

    def claim_trigger(self, alert: PersonalAlert, triggered_at: datetime) -> bool:
        """
        Atomically record a trigger.

        The update only applies if trigger_count still has the value this
        process read and, for one-time alerts, no trigger has been recorded
        yet. One-time alerts are deactivated in the same statement.

        Args:
            alert: Alert being triggered (updated in place on success)
            triggered_at: Trigger timestamp

        Returns:
            True if this caller owns the trigger
        """
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE personal_alerts
                SET trigger_count = trigger_count + 1,
                    last_triggered_at = ?,
                    is_active = CASE WHEN is_recurring = 1 THEN is_active ELSE 0 END
                WHERE id = ?
                  AND is_active = 1
                  AND trigger_count = ?
                  AND (is_recurring = 1 OR trigger_count = 0)
                """,
                (triggered_at.isoformat(), alert.id, alert.trigger_count),
            )
            self.db.connection.commit()

        if cursor.rowcount != 1:
            return False

        alert.trigger_count += 1
        alert.last_triggered_at = triggered_at
        if not alert.is_recurring:
            alert.is_active = False
        return True

    def deactivate(self, alert: PersonalAlert) -> None:
        """Mark alert inactive."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                "UPDATE personal_alerts SET is_active = 0 WHERE id = ?", (alert.id,)
            )
            self.db.connection.commit()
        alert.is_active = False

    def delete(self, alert_id: int) -> None:
        """Delete an alert."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute("DELETE FROM personal_alerts WHERE id = ?", (alert_id,))
            self.db.connection.commit()

    def _row_to_alert(self, row) -> PersonalAlert:
        """Convert database row to PersonalAlert."""
        return PersonalAlert(
            id=row["id"],
            user_id=row["user_id"],
            alert_type=row["alert_type"],
            name=row["name"],
            asset=row["asset"],
            conditions=json.loads(row["conditions"]),
            notification_channels=json.loads(row["notification_channels"]),
            check_frequency=row["check_frequency"],
            is_active=bool(row["is_active"]),
            is_recurring=bool(row["is_recurring"]),
            last_checked_at=_from_iso(row["last_checked_at"]),
            last_triggered_at=_from_iso(row["last_triggered_at"]),
            trigger_count=row["trigger_count"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=row["created_at"],
        )


class AlertHistoryRepository:
    """Append-only ledger of trigger events."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, history: AlertHistory) -> AlertHistory:
        """Create a new history entry."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO alert_history (
                    personal_alert_id, user_id, triggered_conditions,
                    current_values, notification_channels, delivery_status,
                    message, triggered_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    history.personal_alert_id,
                    history.user_id,
                    json.dumps(history.triggered_conditions),
                    json.dumps(history.current_values, default=str),
                    json.dumps(history.notification_channels),
                    json.dumps(history.delivery_status),
                    history.message,
                    history.triggered_at.isoformat(),
                ),
            )
            self.db.connection.commit()
        history.id = cursor.lastrowid
        return history

    def record_delivery(
        self,
        history: AlertHistory,
        message: str,
        delivery_status: dict[str, Any],
    ) -> None:
        """Attach the rendered message and per-channel results."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE alert_history
                SET message = ?, delivery_status = ?
                WHERE id = ?
                """,
                (message, json.dumps(delivery_status, default=str), history.id),
            )
            self.db.connection.commit()
        history.message = message
        history.delivery_status = delivery_status

    def get_by_id(self, history_id: int) -> Optional[AlertHistory]:
        """Get history entry by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alert_history WHERE id = ?", (history_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_history(row)

    def get_alert_history(self, alert_id: int) -> list[AlertHistory]:
        """Get all trigger events for one alert, oldest first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alert_history
            WHERE personal_alert_id = ?
            ORDER BY triggered_at, id
            """,
            (alert_id,),
        )
        return [self._row_to_history(row) for row in cursor.fetchall()]

    def get_user_history(self, user_id: int, limit: int = 50) -> list[AlertHistory]:
        """Get recent trigger events for a user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alert_history
            WHERE user_id = ?
            ORDER BY triggered_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [self._row_to_history(row) for row in cursor.fetchall()]

    def _row_to_history(self, row) -> AlertHistory:
        """Convert database row to AlertHistory."""
        return AlertHistory(
            id=row["id"],
            personal_alert_id=row["personal_alert_id"],
            user_id=row["user_id"],
            triggered_conditions=json.loads(row["triggered_conditions"]),
            current_values=json.loads(row["current_values"]),
            notification_channels=json.loads(row["notification_channels"]),
            delivery_status=json.loads(row["delivery_status"]),
            message=row["message"],
            triggered_at=datetime.fromisoformat(row["triggered_at"]),
        )


def is_due(alert: PersonalAlert, now: datetime) -> bool:
    """True when the alert's check interval has elapsed."""
    if alert.last_checked_at is None:
        return True
    return alert.last_checked_at + timedelta(seconds=alert.check_frequency) <= now
