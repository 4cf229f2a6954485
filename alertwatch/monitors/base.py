"""
Shared alert processing cycle and the per-type monitor.

Every check, scheduled or manual, goes through AlertProcessor.process_alert:
throttle, stamp last_checked_at, fetch, evaluate, trigger.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from alertwatch.data.base import DataSource
from alertwatch.database.models import AlertHistory, PersonalAlert
from alertwatch.database.repository import (
    AlertHistoryRepository,
    PersonalAlertRepository,
    UserRepository,
    is_due,
)
from alertwatch.notifiers.dispatcher import NotificationDispatcher
from alertwatch.rules.engine import ConditionEvaluator

logger = logging.getLogger(__name__)


# (alert, data, triggered_at) -> message text
MessageFormatter = Callable[[PersonalAlert, dict[str, Any], datetime], str]


class AlertProcessor:
    """Runs one alert through the check cycle."""

    def __init__(
        self,
        alerts: PersonalAlertRepository,
        history: AlertHistoryRepository,
        users: UserRepository,
        dispatcher: NotificationDispatcher,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.alerts = alerts
        self.history = history
        self.users = users
        self.dispatcher = dispatcher
        self.evaluator = evaluator or ConditionEvaluator()

    def process_alert(
        self,
        alert: PersonalAlert,
        source: DataSource,
        formatter: MessageFormatter,
        now: Optional[datetime] = None,
    ) -> Optional[AlertHistory]:
        """
        Check one alert and trigger it if its condition holds.

        Args:
            alert: Alert to check
            source: Data source for the alert's type
            formatter: Builds the notification text from alert, data and trigger time
            now: Check time, defaults to the current time

        Returns:
            The history entry if the alert triggered, otherwise None
        """
        if not alert.is_active:
            return None

        now = now or datetime.now()
        if not is_due(alert, now):
            logger.debug(f"Alert {alert.id} throttled until interval elapses")
            return None

        # Stamped before fetching so a failing provider is not retried every tick
        self.alerts.touch_checked(alert, now)

        data = source.fetch(alert.asset)
        if data is None:
            logger.warning(
                f"No data for alert {alert.id} ({alert.alert_type} {alert.asset})"
            )
            return None

        if not self.evaluator.matches(alert.conditions, data):
            return None

        return self.trigger(alert, data, formatter, now)

    def trigger(
        self,
        alert: PersonalAlert,
        data: dict[str, Any],
        formatter: MessageFormatter,
        triggered_at: datetime,
    ) -> Optional[AlertHistory]:
        """Record, notify and update lifecycle state for a matched alert."""
        if not alert.is_recurring and alert.trigger_count > 0:
            self.alerts.deactivate(alert)
            return None

        if not self.alerts.claim_trigger(alert, triggered_at):
            logger.info(f"Alert {alert.id} was already triggered elsewhere")
            if not alert.is_recurring:
                self.alerts.deactivate(alert)
            return None

        history = self.history.create(
            AlertHistory(
                personal_alert_id=alert.id,
                user_id=alert.user_id,
                triggered_conditions=alert.conditions,
                current_values=data,
                notification_channels=list(alert.notification_channels),
                triggered_at=triggered_at,
            )
        )

        message = formatter(alert, data, triggered_at)

        user = self.users.get_by_id(alert.user_id)
        if user is None:
            logger.error(f"User {alert.user_id} for alert {alert.id} not found")
            delivery_status = {
                channel: {"success": False, "error": "User not found"}
                for channel in alert.notification_channels
            }
        else:
            delivery_status = self.dispatcher.dispatch(
                user, alert.notification_channels, message, alert, data
            )

        self.history.record_delivery(history, message, delivery_status)

        logger.info(
            f"Alert {alert.id} '{alert.name}' triggered "
            f"(count={alert.trigger_count}, delivered={history.is_fully_delivered()})"
        )
        return history


class Monitor:
    """Checks the due alerts of one alert type."""

    def __init__(
        self,
        alert_type: str,
        source: DataSource,
        formatter: MessageFormatter,
        processor: AlertProcessor,
    ):
        self.alert_type = alert_type
        self.source = source
        self.formatter = formatter
        self.processor = processor

    def check_alerts(self, now: Optional[datetime] = None) -> list[AlertHistory]:
        """
        Process every due alert of this type.

        Returns:
            History entries for the alerts that triggered
        """
        now = now or datetime.now()
        due = self.processor.alerts.get_due(self.alert_type, now)
        logger.info(f"Checking {len(due)} due {self.alert_type} alerts")

        triggered = []
        for alert in due:
            try:
                history = self.check_alert(alert, now)
            except Exception as e:
                logger.error(f"Error processing alert {alert.id}: {e}", exc_info=True)
                continue
            if history is not None:
                triggered.append(history)
        return triggered

    def check_alert(
        self, alert: PersonalAlert, now: Optional[datetime] = None
    ) -> Optional[AlertHistory]:
        """Process a single alert of this type."""
        return self.processor.process_alert(alert, self.source, self.formatter, now)


def condition_line(condition: dict[str, Any]) -> str:
    """Human form of a condition document."""
    return (
        f"{condition.get('field')} {condition.get('operator')} {condition.get('value')}"
    )


def format_number(value: Any, decimals: int = 2) -> str:
    """Thousands-separated number, or the raw value if not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    return f"{value:,.{decimals}f}"


def timestamp_line(now: Optional[datetime] = None) -> str:
    return f"⏰ {(now or datetime.now()).strftime('%Y-%m-%d %H:%M:%S')}"


def trigger_block(alert: PersonalAlert, data: dict[str, Any]) -> str:
    """The "Alert Triggered" section common to all messages."""
    field = alert.conditions.get("field", "")
    current = data.get(field, "n/a")
    return (
        "⚠️ **Alert Triggered:**\n"
        f"• Condition: {condition_line(alert.conditions)}\n"
        f"• Current Value: {format_number(current)}\n"
    )
