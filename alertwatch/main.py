"""
Main application entry point.
"""

import logging
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from alertwatch.config import ALERT_TYPES, AppConfig
from alertwatch.data.base import DataSource
from alertwatch.data.cache import TTLCache, shared_cache
from alertwatch.data.crypto import CryptoDataSource
from alertwatch.data.currency import CurrencyDataSource
from alertwatch.data.stock import StockDataSource
from alertwatch.data.weather import WeatherDataSource
from alertwatch.data.website import WebsiteDataSource
from alertwatch.database.connection import Database
from alertwatch.database.models import AlertHistory
from alertwatch.database.repository import (
    AlertHistoryRepository,
    AlertTypeRepository,
    PersonalAlertRepository,
    PushSubscriptionRepository,
    UserRepository,
)
from alertwatch.monitors import crypto, currency, stock, weather, website
from alertwatch.monitors.base import AlertProcessor, Monitor
from alertwatch.notifiers.dispatcher import NotificationDispatcher, build_channels
from alertwatch.scheduling import JobQueue, should_check_type

logger = logging.getLogger(__name__)


FORMATTERS = {
    crypto.ALERT_TYPE: crypto.format_message,
    currency.ALERT_TYPE: currency.format_message,
    stock.ALERT_TYPE: stock.format_message,
    weather.ALERT_TYPE: weather.format_message,
    website.ALERT_TYPE: website.format_message,
}


def build_sources(
    config: AppConfig, cache: Optional[TTLCache] = None
) -> dict[str, DataSource]:
    """Create one data source per alert type sharing the process-wide cache."""
    ds = config.data_source
    cache = cache if cache is not None else shared_cache
    return {
        "crypto": CryptoDataSource(
            cache=cache, cache_ttl=ds.cache.crypto_ttl, timeout=ds.request_timeout
        ),
        "currency": CurrencyDataSource(
            cache=cache, cache_ttl=ds.cache.currency_ttl, timeout=ds.request_timeout
        ),
        "stock": StockDataSource(
            cache=cache,
            cache_ttl=ds.cache.stock_ttl,
            timeout=ds.request_timeout,
            twelve_data_api_key=ds.twelve_data_api_key,
            twelve_data_url=ds.twelve_data_url,
        ),
        "weather": WeatherDataSource(
            api_key=ds.openweather_api_key,
            cache=cache,
            cache_ttl=ds.cache.weather_ttl,
            timeout=ds.request_timeout,
        ),
        "website": WebsiteDataSource(timeout=ds.website_timeout),
    }


class AlertService:
    """Wires storage, sources, monitors and notifications together."""

    def __init__(
        self,
        db: Database,
        config: AppConfig,
        sources: Optional[dict[str, DataSource]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize alert service.

        Args:
            db: Database instance
            config: Application configuration
            sources: Data source per alert type (built from config if omitted)
            dispatcher: Notification dispatcher (built from config if omitted)
        """
        self.db = db
        self.config = config

        # Initialize repositories
        self.user_repo = UserRepository(db)
        self.subscription_repo = PushSubscriptionRepository(db)
        self.alert_type_repo = AlertTypeRepository(db)
        self.alert_repo = PersonalAlertRepository(db)
        self.history_repo = AlertHistoryRepository(db)

        # Initialize services
        self.dispatcher = dispatcher or NotificationDispatcher(
            build_channels(config, self.user_repo, self.subscription_repo)
        )
        self.processor = AlertProcessor(
            alerts=self.alert_repo,
            history=self.history_repo,
            users=self.user_repo,
            dispatcher=self.dispatcher,
        )
        sources = sources or build_sources(config)
        self.monitors = {
            alert_type: Monitor(alert_type, sources[alert_type], FORMATTERS[alert_type], self.processor)
            for alert_type in ALERT_TYPES
            if alert_type in sources
        }

    def check_type(
        self, alert_type: str, force: bool = False, now: Optional[datetime] = None
    ) -> list[AlertHistory]:
        """Check all due alerts of one type."""
        monitor = self.monitors.get(alert_type)
        if monitor is None:
            raise ValueError(f"Unknown alert type: {alert_type}")

        if not should_check_type(
            alert_type, force, now, self.config.schedule.market_timezone
        ):
            return []
        return monitor.check_alerts(now)

    def check_all(
        self, force: bool = False, now: Optional[datetime] = None
    ) -> list[AlertHistory]:
        """Check all due alerts of every type."""
        triggered = []
        for alert_type in self.monitors:
            try:
                triggered.extend(self.check_type(alert_type, force, now))
            except Exception as e:
                logger.error(f"Error checking {alert_type} alerts: {e}")
        return triggered

    def check_alert(
        self, alert_id: int, now: Optional[datetime] = None
    ) -> Optional[AlertHistory]:
        """Check a single alert by ID through its type's monitor."""
        alert = self.alert_repo.get_by_id(alert_id)
        if alert is None:
            raise LookupError(f"Alert with ID {alert_id} not found")

        monitor = self.monitors.get(alert.alert_type)
        if monitor is None:
            logger.error(f"No monitor for alert type {alert.alert_type}")
            return None
        try:
            return monitor.check_alert(alert, now)
        except Exception as e:
            logger.error(f"Error processing alert {alert.id}: {e}", exc_info=True)
            return None

    def check_user(
        self, user_id: int, now: Optional[datetime] = None
    ) -> list[AlertHistory]:
        """Check every active alert owned by a user."""
        triggered = []
        for alert in self.alert_repo.get_user_alerts(user_id, active_only=True):
            monitor = self.monitors.get(alert.alert_type)
            if monitor is None:
                continue
            try:
                history = monitor.check_alert(alert, now)
            except Exception as e:
                logger.error(f"Error processing alert {alert.id}: {e}")
                continue
            if history is not None:
                triggered.append(history)
        return triggered

    def enqueue_checks(
        self,
        queue: JobQueue,
        alert_type: Optional[str] = None,
        user_id: Optional[int] = None,
        alert_id: Optional[int] = None,
        force: bool = False,
    ) -> int:
        """
        Queue checks on a job queue instead of running them inline.

        Returns:
            Number of jobs queued
        """
        if alert_id is not None:
            if self.alert_repo.get_by_id(alert_id) is None:
                raise LookupError(f"Alert with ID {alert_id} not found")
            queue.submit(self.check_alert, alert_id)
            return 1

        if user_id is not None:
            alerts = self.alert_repo.get_user_alerts(user_id, active_only=True)
            for alert in alerts:
                queue.submit(self.check_alert, alert.id)
            return len(alerts)

        if alert_type is not None:
            queue.submit(self.check_type, alert_type, force)
            return 1

        queue.submit(self.check_all, force)
        return 1


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Configure root logging once at process entry."""
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_service(config: AppConfig) -> AlertService:
    """Open the database, make sure the schema and catalog exist, build the service."""
    db = Database(config.database.path)
    db.initialize()
    AlertTypeRepository(db).seed_defaults()
    return AlertService(db=db, config=config)
