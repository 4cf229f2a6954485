"""
CLI commands for AlertWatch.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

from alertwatch.config import (
    ALERT_TYPES,
    AppConfig,
    ConfigValidationError,
    default_config,
    load_config,
)
from alertwatch.database.connection import Database
from alertwatch.database.models import CHANNEL_NAMES, PersonalAlert, PushSubscription, User
from alertwatch.database.repository import (
    AlertHistoryRepository,
    AlertTypeRepository,
    PersonalAlertRepository,
    PushSubscriptionRepository,
    UserRepository,
)
from alertwatch.main import AlertService, create_service, setup_logging
from alertwatch.rules.engine import normalize_operator
from alertwatch.scheduling import JobQueue, crontab_lines

logger = logging.getLogger(__name__)


def add_user(
    db: Database,
    name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    verify_phone: bool = False,
    telegram_chat_id: Optional[str] = None,
    whatsapp_number: Optional[str] = None,
    slack_webhook_url: Optional[str] = None,
    sms_balance: float = 0.0,
) -> User:
    """Add a new user."""
    repo = UserRepository(db)
    user = User(
        name=name,
        email=email,
        phone=phone,
        phone_verified_at=datetime.now() if phone and verify_phone else None,
        telegram_chat_id=telegram_chat_id,
        whatsapp_number=whatsapp_number,
        slack_webhook_url=slack_webhook_url,
        sms_balance=sms_balance,
    )
    return repo.create(user)


def parse_value(raw: str) -> Any:
    """Interpret a condition value as a number when possible."""
    try:
        value = json.loads(raw)
    except ValueError:
        return raw
    return value if isinstance(value, (int, float, bool)) else raw


def parse_channels(raw: str) -> list[str]:
    """Split and validate a comma-separated channel list, keeping order."""
    channels = []
    for name in (c.strip().lower() for c in raw.split(",")):
        if not name:
            continue
        if name not in CHANNEL_NAMES:
            raise ValueError(f"Unknown channel: {name}")
        if name not in channels:
            channels.append(name)
    return channels


def add_alert(
    db: Database,
    user_id: int,
    alert_type: str,
    name: str,
    asset: str,
    field: str,
    operator: str,
    value: Any,
    channels: list[str],
    check_frequency: Optional[int] = None,
    recurring: bool = True,
) -> PersonalAlert:
    """
    Create a personal alert.

    Raises:
        ValueError: If the user, type or operator is unknown
    """
    if UserRepository(db).get_by_id(user_id) is None:
        raise ValueError(f"User {user_id} not found")

    alert_type_entry = AlertTypeRepository(db).get_by_slug(alert_type)
    if alert_type_entry is None:
        raise ValueError(f"Unknown alert type: {alert_type}")

    if normalize_operator(operator) is None:
        raise ValueError(f"Unknown operator: {operator}")

    alert = PersonalAlert(
        user_id=user_id,
        alert_type=alert_type,
        name=name,
        asset=asset,
        conditions={"field": field, "operator": operator, "value": value},
        notification_channels=channels,
        check_frequency=check_frequency or alert_type_entry.check_interval,
        is_recurring=recurring,
    )
    return PersonalAlertRepository(db).create(alert)


def run_check(
    service: AlertService,
    alert_type: Optional[str] = None,
    user_id: Optional[int] = None,
    alert_id: Optional[int] = None,
    sync: bool = False,
    force: bool = False,
) -> int:
    """
    Run alert checks inline or through the background queue.

    Returns:
        Number of triggered alerts (sync) or failed jobs (queued)
    """
    if sync:
        if alert_id is not None:
            return 1 if service.check_alert(alert_id) is not None else 0
        if user_id is not None:
            return len(service.check_user(user_id))
        if alert_type is not None:
            return len(service.check_type(alert_type, force))
        return len(service.check_all(force))

    with JobQueue() as queue:
        queued = service.enqueue_checks(
            queue, alert_type=alert_type, user_id=user_id, alert_id=alert_id, force=force
        )
        logger.info(f"Queued {queued} check jobs")
        return queue.wait_all()


def _load_app_config(args: argparse.Namespace) -> AppConfig:
    if Path(args.config).exists():
        config = load_config(args.config)
    else:
        config = default_config()
    if args.db:
        config.database.path = args.db
    return config


def _format_user(user: User) -> str:
    channels = [
        name
        for name, value in (
            ("email", user.email),
            ("sms", user.phone if user.phone_verified else None),
            ("telegram", user.telegram_chat_id),
            ("whatsapp", user.whatsapp_number),
            ("slack", user.slack_webhook_url),
        )
        if value
    ]
    return (
        f"ID: {user.id}, Name: {user.name or '-'}, Email: {user.email or '-'}, "
        f"SMS balance: {user.sms_balance:.2f}, Channels: {', '.join(channels) or '-'}"
    )


def _format_alert(alert: PersonalAlert) -> str:
    c = alert.conditions
    state = "active" if alert.is_active else "inactive"
    kind = "recurring" if alert.is_recurring else "one-time"
    return (
        f"ID: {alert.id}, User: {alert.user_id}, {alert.alert_type} '{alert.name}' "
        f"[{alert.asset}] {c.get('field')} {c.get('operator')} {c.get('value')} "
        f"-> {','.join(alert.notification_channels)} ({state}, {kind}, "
        f"triggered {alert.trigger_count}x)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AlertWatch CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Check command
    check_parser = subparsers.add_parser("check", help="Check and process alerts")
    check_parser.add_argument("--type", choices=ALERT_TYPES, help="Alert type")
    check_parser.add_argument("--user", type=int, help="Check alerts of one user")
    check_parser.add_argument("--alert", type=int, help="Check a single alert")
    check_parser.add_argument(
        "--sync", action="store_true", help="Run inline instead of queuing"
    )
    check_parser.add_argument(
        "--force", action="store_true", help="Check stocks outside market hours"
    )

    # User commands
    user_parser = subparsers.add_parser("user", help="User management")
    user_subparsers = user_parser.add_subparsers(dest="action")

    add_user_parser = user_subparsers.add_parser("add", help="Add user")
    add_user_parser.add_argument("--name", help="Display name")
    add_user_parser.add_argument("--email", help="User email")
    add_user_parser.add_argument("--phone", help="Phone number for SMS")
    add_user_parser.add_argument(
        "--verify-phone", action="store_true", help="Mark phone as verified"
    )
    add_user_parser.add_argument("--telegram", help="Telegram chat ID")
    add_user_parser.add_argument("--whatsapp", help="WhatsApp number")
    add_user_parser.add_argument("--slack", help="Slack incoming webhook URL")
    add_user_parser.add_argument(
        "--balance", type=float, default=0.0, help="Initial SMS balance"
    )

    user_subparsers.add_parser("list", help="List users")

    # Push commands
    push_parser = subparsers.add_parser("push", help="Push subscriptions")
    push_subparsers = push_parser.add_subparsers(dest="action")

    subscribe_parser = push_subparsers.add_parser("subscribe", help="Store a subscription")
    subscribe_parser.add_argument("--user", type=int, required=True, help="User ID")
    subscribe_parser.add_argument("--endpoint", required=True, help="Push service endpoint")
    subscribe_parser.add_argument("--p256dh", required=True, help="Client public key")
    subscribe_parser.add_argument("--auth", required=True, help="Client auth secret")

    # Alert commands
    alert_parser = subparsers.add_parser("alert", help="Alert management")
    alert_subparsers = alert_parser.add_subparsers(dest="action")

    add_alert_parser = alert_subparsers.add_parser("add", help="Add alert")
    add_alert_parser.add_argument("--user", type=int, required=True, help="User ID")
    add_alert_parser.add_argument("--type", required=True, choices=ALERT_TYPES)
    add_alert_parser.add_argument("--name", required=True, help="Alert name")
    add_alert_parser.add_argument(
        "--asset", required=True, help="Ticker, currency pair, location or URL"
    )
    add_alert_parser.add_argument("--field", required=True, help="Data field")
    add_alert_parser.add_argument("--operator", required=True, help="Comparison operator")
    add_alert_parser.add_argument("--value", required=True, help="Target value")
    add_alert_parser.add_argument(
        "--channels", default="email", help="Comma-separated channels"
    )
    add_alert_parser.add_argument(
        "--frequency", type=int, help="Seconds between checks"
    )
    add_alert_parser.add_argument(
        "--once", action="store_true", help="Deactivate after first trigger"
    )

    list_alert_parser = alert_subparsers.add_parser("list", help="List alerts")
    list_alert_parser.add_argument("--user", type=int, help="User ID")

    # History command
    history_parser = subparsers.add_parser("history", help="Show trigger history")
    history_parser.add_argument("--user", type=int, help="User ID")
    history_parser.add_argument("--alert", type=int, help="Alert ID")
    history_parser.add_argument("--limit", type=int, default=20)

    # Channel commands
    channel_parser = subparsers.add_parser("channel", help="Notification channels")
    channel_subparsers = channel_parser.add_subparsers(dest="action")

    test_parser = channel_subparsers.add_parser("test", help="Send a test message")
    test_parser.add_argument("--user", type=int, required=True, help="User ID")
    test_parser.add_argument("--channel", required=True, choices=CHANNEL_NAMES)

    # Schedule command
    schedule_parser = subparsers.add_parser(
        "schedule", help="Print crontab entries for the configured check intervals"
    )
    schedule_parser.add_argument(
        "--program", default="alertwatch", help="Command used to invoke the CLI"
    )

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("init", help="Create schema and seed alert types")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_app_config(args)
    except (ConfigValidationError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.advanced.log_level, debug=args.debug)

    service = create_service(config)

    try:
        return _dispatch_command(args, service, parser)
    except (ValueError, LookupError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.db.close()


def _dispatch_command(
    args: argparse.Namespace,
    service: AlertService,
    parser: argparse.ArgumentParser,
) -> int:
    db = service.db

    if args.command == "check":
        result = run_check(
            service,
            alert_type=args.type,
            user_id=args.user,
            alert_id=args.alert,
            sync=args.sync,
            force=args.force,
        )
        if args.sync:
            print(f"Check completed: {result} alert(s) triggered")
        else:
            print(f"Check jobs completed ({result} failed)")

    elif args.command == "user":
        if args.action == "add":
            user = add_user(
                db,
                name=args.name,
                email=args.email,
                phone=args.phone,
                verify_phone=args.verify_phone,
                telegram_chat_id=args.telegram,
                whatsapp_number=args.whatsapp,
                slack_webhook_url=args.slack,
                sms_balance=args.balance,
            )
            print(f"Created user with ID: {user.id}")
        elif args.action == "list":
            for user in UserRepository(db).list_all():
                print(_format_user(user))

    elif args.command == "push":
        if args.action == "subscribe":
            if UserRepository(db).get_by_id(args.user) is None:
                raise LookupError(f"User {args.user} not found")
            subscription = PushSubscriptionRepository(db).add(
                PushSubscription(
                    user_id=args.user,
                    endpoint=args.endpoint,
                    p256dh=args.p256dh,
                    auth=args.auth,
                )
            )
            print(f"Stored push subscription with ID: {subscription.id}")

    elif args.command == "alert":
        if args.action == "add":
            alert = add_alert(
                db,
                user_id=args.user,
                alert_type=args.type,
                name=args.name,
                asset=args.asset,
                field=args.field,
                operator=args.operator,
                value=parse_value(args.value),
                channels=parse_channels(args.channels),
                check_frequency=args.frequency,
                recurring=not args.once,
            )
            print(f"Created alert with ID: {alert.id}")
        elif args.action == "list":
            repo = PersonalAlertRepository(db)
            if args.user is not None:
                alerts = repo.get_user_alerts(args.user)
            else:
                alerts = [
                    alert
                    for alert_type in ALERT_TYPES
                    for alert in repo.get_active_by_type(alert_type)
                ]
            for alert in alerts:
                print(_format_alert(alert))

    elif args.command == "history":
        repo = AlertHistoryRepository(db)
        if args.alert is not None:
            entries = repo.get_alert_history(args.alert)[-args.limit:]
        elif args.user is not None:
            entries = repo.get_user_history(args.user, limit=args.limit)
        else:
            raise ValueError("history requires --user or --alert")
        for entry in entries:
            failed = entry.failed_channels()
            status = "delivered" if entry.is_fully_delivered() else f"failed: {', '.join(failed)}"
            print(
                f"[{entry.triggered_at:%Y-%m-%d %H:%M:%S}] alert {entry.personal_alert_id} "
                f"-> {','.join(entry.notification_channels)} ({status})"
            )

    elif args.command == "channel":
        if args.action == "test":
            user = UserRepository(db).get_by_id(args.user)
            if user is None:
                raise LookupError(f"User {args.user} not found")
            result = service.dispatcher.test_channel(user, args.channel)
            if result.success:
                print(f"Test {args.channel} message sent")
            else:
                print(f"Test {args.channel} failed: {result.error}")
                return 1

    elif args.command == "schedule":
        command = args.program
        if Path(args.config).exists():
            command += f" --config {Path(args.config).resolve()}"
        if args.db:
            command += f" --db {args.db}"
        for line in crontab_lines(service.config.schedule, command):
            print(line)

    elif args.command == "db":
        if args.action == "init":
            print(f"Database initialized at {db.db_path}")

    else:
        parser.print_help()

    return 0


if __name__ == "__main__":
    sys.exit(main())
