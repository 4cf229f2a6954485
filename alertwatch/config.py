"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


ALERT_TYPES = ("crypto", "currency", "stock", "weather", "website")
SMS_PROVIDERS = ("twilio", "vonage", "mock")
WHATSAPP_PROVIDERS = ("twilio", "whatsapp_business", "mock")


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/alertwatch.db"


@dataclass
class CacheConfig:
    """Per-source cache lifetimes in seconds."""

    crypto_ttl: int = 60
    currency_ttl: int = 1800
    stock_ttl: int = 300
    weather_ttl: int = 600


@dataclass
class DataSourceConfig:
    """Data source configuration."""

    openweather_api_key: str = ""
    twelve_data_api_key: str = ""
    twelve_data_url: str = "https://api.twelvedata.com"
    request_timeout: int = 10
    website_timeout: int = 30
    cache: CacheConfig = field(default_factory=CacheConfig)


@dataclass
class ScheduleConfig:
    """Schedule configuration."""

    timezone: str = "Asia/Baku"
    market_timezone: str = "America/New_York"
    # Minutes between scheduler invocations per alert type, rendered by crontab_lines
    intervals: dict[str, int] = field(
        default_factory=lambda: {
            "crypto": 5,
            "currency": 60,
            "stock": 5,
            "weather": 60,
            "website": 5,
        }
    )


@dataclass
class SMSNotificationConfig:
    """SMS gateway settings."""

    provider: str = "twilio"
    sender: str = "AlertWatch"
    country_code: str = "994"
    twilio_sid: str = ""
    twilio_token: str = ""
    twilio_from: str = ""
    vonage_key: str = ""
    vonage_secret: str = ""


@dataclass
class EmailNotificationConfig:
    """Email notification settings."""

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = "alerts@alertwatch.app"


@dataclass
class PushNotificationConfig:
    """Web push (VAPID) settings."""

    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:admin@alertwatch.app"
    ttl: int = 86400


@dataclass
class TelegramNotificationConfig:
    """Telegram bot settings."""

    bot_token: str = ""
    api_url: str = "https://api.telegram.org"


@dataclass
class WhatsAppNotificationConfig:
    """WhatsApp settings."""

    provider: str = "twilio"
    country_code: str = "994"
    twilio_sid: str = ""
    twilio_token: str = ""
    twilio_from: str = "whatsapp:+14155238886"
    api_url: str = "https://graph.facebook.com/v18.0"
    access_token: str = ""
    phone_number_id: str = ""


@dataclass
class SlackNotificationConfig:
    """Slack incoming webhook settings."""

    timeout: int = 10
    # Longest Retry-After honoured before giving up on a rate-limited post
    max_retry_after: float = 5.0


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    mock_mode: bool = False
    app_url: str = "https://alertwatch.app"
    sms: SMSNotificationConfig = field(default_factory=SMSNotificationConfig)
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)
    push: PushNotificationConfig = field(default_factory=PushNotificationConfig)
    telegram: TelegramNotificationConfig = field(
        default_factory=TelegramNotificationConfig
    )
    whatsapp: WhatsAppNotificationConfig = field(
        default_factory=WhatsAppNotificationConfig
    )
    slack: SlackNotificationConfig = field(default_factory=SlackNotificationConfig)


@dataclass
class BillingConfig:
    """SMS billing configuration."""

    enabled: bool = True
    cost_per_segment: float = 0.04


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_timezone(timezone: str) -> None:
    """Validate timezone string."""
    if not timezone:
        raise ConfigValidationError("Timezone cannot be empty")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigValidationError(f"Unknown timezone: {timezone}")


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    path = Path(db_path)
    parent = path.parent
    if parent.exists() and not os.access(parent, os.W_OK):
        raise ConfigValidationError(f"Database path not writable: {parent}")

    schedule = config_dict.get("schedule") or {}
    _validate_timezone(schedule.get("timezone", "Asia/Baku"))
    _validate_timezone(schedule.get("market_timezone", "America/New_York"))

    for alert_type, minutes in (schedule.get("intervals") or {}).items():
        if alert_type not in ALERT_TYPES:
            raise ConfigValidationError(f"Unknown alert type in intervals: {alert_type}")
        if not isinstance(minutes, int) or minutes <= 0:
            raise ConfigValidationError(
                f"Check interval for {alert_type} must be a positive integer"
            )

    cache = (config_dict.get("data_source") or {}).get("cache") or {}
    for name, ttl in cache.items():
        if not isinstance(ttl, int) or ttl <= 0:
            raise ConfigValidationError(f"Cache TTL {name} must be a positive integer")

    notifications = config_dict.get("notifications") or {}
    sms_provider = (notifications.get("sms") or {}).get("provider", "twilio")
    if sms_provider not in SMS_PROVIDERS:
        raise ConfigValidationError(f"Unknown SMS provider: {sms_provider}")
    wa_provider = (notifications.get("whatsapp") or {}).get("provider", "twilio")
    if wa_provider not in WHATSAPP_PROVIDERS:
        raise ConfigValidationError(f"Unknown WhatsApp provider: {wa_provider}")


def _as_bool(value: Any) -> bool:
    """Interpret YAML/env flag values."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    # Validate
    _validate_config(config_dict)

    database = DatabaseConfig(**config_dict.get("database", {}))

    # Data source
    ds_dict = dict(config_dict.get("data_source") or {})
    cache_dict = ds_dict.pop("cache", {}) or {}
    data_source = DataSourceConfig(cache=CacheConfig(**cache_dict), **ds_dict)

    # Schedule
    sched_dict = dict(config_dict.get("schedule") or {})
    intervals = ScheduleConfig().intervals
    intervals.update(sched_dict.pop("intervals", {}) or {})
    schedule = ScheduleConfig(intervals=intervals, **sched_dict)

    # Notifications
    notif_dict = dict(config_dict.get("notifications") or {})
    notifications = NotificationsConfig(
        mock_mode=_as_bool(notif_dict.get("mock_mode", False)),
        app_url=notif_dict.get("app_url", NotificationsConfig.app_url),
        sms=SMSNotificationConfig(**(notif_dict.get("sms") or {})),
        email=EmailNotificationConfig(**(notif_dict.get("email") or {})),
        push=PushNotificationConfig(**(notif_dict.get("push") or {})),
        telegram=TelegramNotificationConfig(**(notif_dict.get("telegram") or {})),
        whatsapp=WhatsAppNotificationConfig(**(notif_dict.get("whatsapp") or {})),
        slack=SlackNotificationConfig(**(notif_dict.get("slack") or {})),
    )

    billing_dict = dict(config_dict.get("billing") or {})
    if "enabled" in billing_dict:
        billing_dict["enabled"] = _as_bool(billing_dict["enabled"])
    billing = BillingConfig(**billing_dict)

    advanced = AdvancedConfig(**config_dict.get("advanced", {}))

    return AppConfig(
        database=database,
        data_source=data_source,
        schedule=schedule,
        notifications=notifications,
        billing=billing,
        advanced=advanced,
    )


def default_config(db_path: Optional[str] = None) -> AppConfig:
    """Build a configuration with defaults, optionally overriding the DB path."""
    config = AppConfig()
    if db_path:
        config.database.path = db_path
    return config
