"""
Email SMTP notification channel.
"""

import html
import re
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

from alertwatch.config import EmailNotificationConfig
from alertwatch.database.models import PersonalAlert, User
from .base import NotificationChannel, NotificationResult

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")


def is_valid_email(address: Optional[str]) -> bool:
    return bool(address) and bool(EMAIL_PATTERN.match(address.strip()))


class EmailChannel(NotificationChannel):
    """Sends notifications via email SMTP."""

    name = "email"
    not_configured_error = "Email not configured"

    def __init__(
        self,
        config: Optional[EmailNotificationConfig] = None,
        app_url: str = "https://alertwatch.app",
        mock_mode: bool = False,
    ):
        """
        Initialize email channel.

        Args:
            config: SMTP server and sender settings
            app_url: Base URL linked from the message footer
            mock_mode: Log alert payloads instead of sending
        """
        super().__init__(mock_mode=mock_mode)
        self.config = config or EmailNotificationConfig()
        self.app_url = app_url.rstrip("/")

    def is_configured(self, user: User) -> bool:
        return is_valid_email(user.email)

    def deliver(
        self,
        user: User,
        text: str,
        alert: Optional[PersonalAlert],
        data: dict[str, Any],
    ) -> NotificationResult:
        title = alert.name if alert else "Test Notification"
        subject = f"Alert: {alert.name} - AlertWatch" if alert else "Test Notification - AlertWatch"
        message = self._create_message(user.email, subject, title, text)

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as server:
                server.starttls()
                if self.config.smtp_user:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as e:
            return self.failure(f"Authentication failed: {str(e)}")
        except (smtplib.SMTPException, OSError) as e:
            return self.failure(f"SMTP error: {str(e)}")

        return self.success()

    def _create_message(
        self, to_address: str, subject: str, title: str, text: str
    ) -> MIMEMultipart:
        """Create email message."""
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.config.from_address
        message["To"] = to_address

        # Plain text version
        message.attach(MIMEText(self._create_text_body(title, text), "plain", "utf-8"))

        # HTML version
        message.attach(MIMEText(self._create_body(title, text), "html", "utf-8"))

        return message

    def _create_text_body(self, title: str, text: str) -> str:
        """Create plain text email body."""
        plain = re.sub(r"\*\*(.*?)\*\*", r"\1", text, flags=re.DOTALL)
        return f"""AlertWatch Notification
{"=" * 40}

Alert: {title}

{plain}

{"-" * 40}
Timestamp: {datetime.now().strftime("%Y-%m-%d %H:%M:%S")}

View your alerts: {self.app_url}/alerts
"""

    def _create_body(self, title: str, text: str) -> str:
        """Create HTML email body."""
        body = html.escape(text)
        body = re.sub(r"\*\*(.*?)\*\*", r"<strong>\1</strong>", body, flags=re.DOTALL)
        body = body.replace("\n", "<br>\n")

        return f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f3f4f6; }}
        .header {{
            background: linear-gradient(135deg, #515BC3 0%, #7C3AED 100%);
            color: #ffffff;
            padding: 24px;
            border-radius: 12px 12px 0 0;
            text-align: center;
        }}
        .alert-box {{ background-color: #ffffff; padding: 24px; }}
        .title {{ font-size: 18px; font-weight: bold; color: #1F2937; margin-bottom: 16px; }}
        .message {{ color: #4B5563; font-size: 15px; line-height: 1.6; }}
        .footer {{
            background-color: #F9FAFB;
            padding: 16px;
            border-radius: 0 0 12px 12px;
            text-align: center;
            font-size: 12px;
            color: #9CA3AF;
        }}
        .footer a {{ color: #515BC3; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="header"><h1>AlertWatch</h1></div>
    <div class="alert-box">
        <div class="title">{html.escape(title)}</div>
        <div class="message">{body}</div>
    </div>
    <div class="footer">
        <a href="{self.app_url}/alerts">View your alerts</a>
    </div>
</body>
</html>
"""
