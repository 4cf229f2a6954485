"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        # Serializes writes when checks run from the background job queue
        self.lock = threading.RLock()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        # Enable foreign keys
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT,
                email TEXT,
                phone TEXT,
                phone_verified_at TIMESTAMP,
                telegram_chat_id TEXT,
                whatsapp_number TEXT,
                slack_webhook_url TEXT,
                sms_balance REAL NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS push_subscriptions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                endpoint TEXT NOT NULL UNIQUE,
                p256dh TEXT NOT NULL,
                auth TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alert_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                slug TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                check_interval INTEGER NOT NULL DEFAULT 300,
                condition_fields TEXT NOT NULL DEFAULT '{}',
                is_active INTEGER NOT NULL DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS personal_alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                alert_type TEXT NOT NULL,
                name TEXT NOT NULL,
                asset TEXT NOT NULL,
                conditions TEXT NOT NULL,
                notification_channels TEXT NOT NULL,
                check_frequency INTEGER NOT NULL DEFAULT 300,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_recurring INTEGER NOT NULL DEFAULT 1,
                last_checked_at TIMESTAMP,
                last_triggered_at TIMESTAMP,
                trigger_count INTEGER NOT NULL DEFAULT 0,
                metadata TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alert_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                personal_alert_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                triggered_conditions TEXT NOT NULL,
                current_values TEXT NOT NULL,
                notification_channels TEXT NOT NULL,
                delivery_status TEXT NOT NULL DEFAULT '{}',
                message TEXT,
                triggered_at TIMESTAMP NOT NULL,
                FOREIGN KEY (personal_alert_id) REFERENCES personal_alerts(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)

        # Create indexes for common queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_push_subscriptions_user
            ON push_subscriptions(user_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_type_active
            ON personal_alerts(alert_type, is_active)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_user_active
            ON personal_alerts(user_id, is_active)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alert_history_alert
            ON alert_history(personal_alert_id, triggered_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alert_history_user
            ON alert_history(user_id, triggered_at)
        """)

        self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
