"""
Notifier tests.
Tests for channel formatting, provider calls and failure handling.
"""

import pytest
import smtplib
from datetime import datetime
from unittest.mock import MagicMock, Mock, patch

import requests
from pywebpush import WebPushException
from twilio.base.exceptions import TwilioRestException

from alertwatch.billing import BalanceBilling
from alertwatch.config import (
    EmailNotificationConfig,
    PushNotificationConfig,
    SlackNotificationConfig,
    SMSNotificationConfig,
    TelegramNotificationConfig,
    WhatsAppNotificationConfig,
)
from alertwatch.database.models import PersonalAlert, PushSubscription, User
from alertwatch.notifiers.base import NotificationResult, truncate
from alertwatch.notifiers.email import EmailChannel, is_valid_email
from alertwatch.notifiers.push import PushChannel
from alertwatch.notifiers.slack import SlackChannel, plain_text, to_slack_markdown
from alertwatch.notifiers.sms import SMSChannel, clean_message, format_phone, is_valid_phone
from alertwatch.notifiers.telegram import TelegramChannel, format_telegram_message
from alertwatch.notifiers.whatsapp import WhatsAppChannel, format_whatsapp_message


ALERT_MESSAGE = (
    "💰 **Crypto Alert: BTC breakout**\n\n"
    "🪙 **BTC**\n\n"
    "⚠️ **Alert Triggered:**\n"
    "• Condition: price above 50000\n"
    "• Current Value: 51,000.00\n"
)


def _response(status_code=200, json_data=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.text = text
    response.headers = {}
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def user():
    return User(
        id=1,
        email="aysel@example.com",
        phone="+994501234567",
        phone_verified_at=datetime(2024, 1, 1),
        telegram_chat_id="123456789",
        whatsapp_number="+994501234567",
        slack_webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
        sms_balance=1.0,
    )


@pytest.fixture
def alert():
    return PersonalAlert(
        id=7,
        user_id=1,
        alert_type="crypto",
        name="BTC breakout",
        asset="BTC",
        conditions={"field": "price", "operator": "above", "value": 50000},
        notification_channels=["sms"],
    )


def _twilio_call(client_cls):
    return client_cls.return_value.messages.create.call_args.kwargs


class TestNotificationResult:
    """Test NotificationResult model."""

    def test_success_to_dict(self):
        """Should serialize success with a timestamp."""
        result = NotificationResult(success=True, channel="email")
        status = result.to_dict()
        assert status["success"] is True
        assert status["error"] is None
        assert "timestamp" in status
        assert "error_code" not in status

    def test_failure_to_dict_with_details(self):
        """Should include error code, mocked flag and details."""
        result = NotificationResult(
            success=False,
            channel="sms",
            error="Insufficient balance to send SMS",
            error_code="insufficient_balance",
            details={"cost": 0.04},
        )
        status = result.to_dict()
        assert status["error_code"] == "insufficient_balance"
        assert status["cost"] == 0.04

    def test_truncate(self):
        """Should cut long text and end with an ellipsis."""
        assert truncate("short", 10) == "short"
        assert truncate("x" * 20, 10) == "x" * 7 + "..."


class TestSMSChannel:
    """Test SMS formatting, billing and gateways."""

    @pytest.fixture
    def config(self):
        return SMSNotificationConfig(
            provider="twilio",
            twilio_sid="AC123",
            twilio_token="token",
            twilio_from="+15550001111",
        )

    def test_clean_message(self):
        """Should strip bold markers and collapse whitespace."""
        assert clean_message("**Hi**\n\n  there") == "Hi there"

    @pytest.mark.parametrize(
        "phone,valid",
        [
            ("+994501234567", True),
            ("0501234567", False),
            ("501234567", True),
            ("991234567", True),
            ("123456789", False),
            ("+15551234567", False),
            ("", False),
        ],
    )
    def test_is_valid_phone(self, phone, valid):
        """Should accept local mobile and full international numbers."""
        assert is_valid_phone(phone) is valid

    def test_format_phone(self):
        """Should prefix local numbers with the country code."""
        assert format_phone("50 123 45 67") == "+994501234567"
        assert format_phone("+994 50 123 45 67") == "+994501234567"

    def test_requires_verified_phone(self, user):
        """Should not be configured for an unverified phone."""
        user.phone_verified_at = None
        channel = SMSChannel(SMSNotificationConfig(provider="mock"))
        result = channel.send(user, ALERT_MESSAGE)
        assert result.success is False
        assert result.error == "Phone not configured or not verified"

    def test_message_truncated_to_450(self, user, config, twilio):
        """Should cap alert texts at 450 characters."""
        result = SMSChannel(config).send(user, "word " * 200)

        assert result.success is True
        body = _twilio_call(twilio)["body"]
        assert len(body) == 450
        assert body.endswith("...")

    def test_twilio_request(self, user, alert, config, twilio):
        """Should send the cleaned message through the Twilio client."""
        result = SMSChannel(config).send(user, ALERT_MESSAGE, alert)

        assert result.success is True
        assert result.details["message_sid"] == "SM123"
        assert twilio.call_args.args == ("AC123", "token")
        kwargs = _twilio_call(twilio)
        assert kwargs["to"] == "+994501234567"
        assert kwargs["from_"] == "+15550001111"
        assert "**" not in kwargs["body"]

    def test_twilio_error(self, user, config, twilio):
        """Should surface the Twilio error message."""
        twilio.return_value.messages.create.side_effect = TwilioRestException(
            400, "/Messages.json", msg="Invalid 'To' Phone Number"
        )
        result = SMSChannel(config).send(user, ALERT_MESSAGE)

        assert result.success is False
        assert result.error == "Invalid 'To' Phone Number"

    def test_vonage(self, user):
        """Should treat status "0" as success for Vonage."""
        config = SMSNotificationConfig(provider="vonage", vonage_key="k", vonage_secret="s")
        channel = SMSChannel(config)
        with patch(
            "requests.post", return_value=_response(200, {"messages": [{"status": "0"}]})
        ) as mock_post:
            result = channel.send(user, ALERT_MESSAGE)

        assert result.success is True
        assert mock_post.call_args.kwargs["json"]["to"] == "994501234567"

    def test_insufficient_balance(self, repos, sample_user, config, twilio):
        """Should refuse to send when the balance does not cover the cost."""
        billing = BalanceBilling(repos["user"], cost_per_segment=5.0)
        result = SMSChannel(config, billing=billing).send(sample_user, ALERT_MESSAGE)

        twilio.return_value.messages.create.assert_not_called()
        assert result.success is False
        assert result.error_code == "insufficient_balance"
        assert result.error == "Insufficient balance to send SMS"

    def test_charge_and_refund(self, repos, sample_user, config, twilio):
        """Should charge on success and refund on gateway failure."""
        billing = BalanceBilling(repos["user"], cost_per_segment=0.04)
        channel = SMSChannel(config, billing=billing)

        ok = channel.send(sample_user, "short message")
        assert ok.details["cost"] == pytest.approx(0.04)
        assert repos["user"].get_by_id(sample_user.id).sms_balance == pytest.approx(0.96)

        twilio.return_value.messages.create.side_effect = requests.ConnectionError("down")
        failed = channel.send(sample_user, "short message")
        assert failed.success is False
        assert failed.error.startswith("Connection error")
        assert repos["user"].get_by_id(sample_user.id).sms_balance == pytest.approx(0.96)

    def test_mock_mode_does_not_call_provider(self, user, config, twilio):
        """Should log instead of sending in mock mode."""
        result = SMSChannel(config, mock_mode=True).send(user, ALERT_MESSAGE)

        twilio.return_value.messages.create.assert_not_called()
        assert result.success is True
        assert result.mocked is True

    def test_test_message_bypasses_mock_mode(self, user, config, twilio):
        """Should send test messages for real, prefixed and capped at 160."""
        result = SMSChannel(config, mock_mode=True).send_test(user, "x" * 300)

        assert result.success is True
        body = _twilio_call(twilio)["body"]
        assert body.startswith("Test: ")
        assert len(body) == 160


class TestTelegramChannel:
    """Test Telegram formatting and delivery."""

    @pytest.fixture
    def channel(self):
        return TelegramChannel(TelegramNotificationConfig(bot_token="bot-token"))

    def test_format_converts_bold_and_escapes(self):
        """Should convert bold markers and escape markup characters."""
        text = format_telegram_message("**BTC** price > 50,000.5 (up!) C:\\data")
        assert text == "*BTC* price \\> 50,000\\.5 \\(up\\!\\) C:\\\\data"

    def test_format_truncates(self):
        """Should cap messages at 4000 characters with an escaped ellipsis."""
        text = format_telegram_message("a" * 5000)
        assert len(text) == 4000
        assert text.endswith("\\.\\.\\.")

    def test_truncation_keeps_escapes_and_bold_whole(self):
        """Should not end a cut text inside an escape or an open bold marker."""
        text = format_telegram_message("**" + "." * 2500 + "**")
        assert len(text) <= 4000
        assert text.count("*") % 2 == 0
        body = text[: -len("\\.\\.\\.")]
        assert (len(body) - len(body.rstrip("\\"))) % 2 == 0

    def test_send_test_is_capped(self, channel, user):
        """Should keep test messages within the limit including the header."""
        with patch("requests.post", return_value=_response(200, {"ok": True})) as mock_post:
            result = channel.send_test(user, "a" * 5000)

        assert result.success is True
        text = mock_post.call_args.kwargs["json"]["text"]
        assert text.startswith("🔔 *Test Notification*")
        assert len(text) <= 4000

    def test_send_success(self, channel, user, alert):
        """Should call sendMessage with MarkdownV2 parse mode."""
        with patch("requests.post", return_value=_response(200, {"ok": True})) as mock_post:
            result = channel.send(user, ALERT_MESSAGE, alert)

        assert result.success is True
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.telegram.org/botbot-token/sendMessage"
        assert kwargs["json"]["chat_id"] == "123456789"
        assert kwargs["json"]["parse_mode"] == "MarkdownV2"

    def test_send_failure(self, channel, user):
        """Should return the API description on failure."""
        with patch(
            "requests.post",
            return_value=_response(400, {"ok": False, "description": "Bad Request: chat not found"}),
        ):
            result = channel.send(user, ALERT_MESSAGE)

        assert result.success is False
        assert result.error == "Bad Request: chat not found"

    def test_not_configured_without_bot_token(self, user):
        """Should fail when no bot token is configured."""
        result = TelegramChannel().send(user, ALERT_MESSAGE)
        assert result.success is False
        assert result.error == "Telegram not configured"


class TestWhatsAppChannel:
    """Test WhatsApp formatting and providers."""

    def test_format(self):
        """Should convert bold markers and collapse blank runs."""
        assert format_whatsapp_message("**Hi**\n\n\n\nthere") == "*Hi*\n\nthere"

    def test_twilio(self, user, twilio):
        """Should send via Twilio with whatsapp: addressing."""
        config = WhatsAppNotificationConfig(twilio_sid="AC1", twilio_token="t")
        result = WhatsAppChannel(config).send(user, ALERT_MESSAGE)

        assert result.success is True
        kwargs = _twilio_call(twilio)
        assert kwargs["to"] == "whatsapp:+994501234567"
        assert kwargs["from_"] == "whatsapp:+14155238886"

    def test_send_test_is_capped(self, user, twilio):
        """Should keep test messages within the limit including the header."""
        config = WhatsAppNotificationConfig(twilio_sid="AC1", twilio_token="t")
        result = WhatsAppChannel(config).send_test(user, "a" * 5000)

        assert result.success is True
        body = _twilio_call(twilio)["body"]
        assert body.startswith("🔔 *Test from AlertWatch*")
        assert len(body) <= 4000

    def test_business_api(self, user):
        """Should succeed when the Graph API returns a message id."""
        config = WhatsAppNotificationConfig(
            provider="whatsapp_business", access_token="tok", phone_number_id="42"
        )
        with patch(
            "requests.post", return_value=_response(200, {"messages": [{"id": "wamid.1"}]})
        ) as mock_post:
            result = WhatsAppChannel(config).send(user, ALERT_MESSAGE)

        assert result.success is True
        assert result.details["message_id"] == "wamid.1"
        assert mock_post.call_args.args[0].endswith("/42/messages")
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_invalid_number(self, user):
        """Should not be configured for implausible numbers."""
        user.whatsapp_number = "123"
        result = WhatsAppChannel(WhatsAppNotificationConfig(provider="mock")).send(
            user, ALERT_MESSAGE
        )
        assert result.success is False


class TestSlackChannel:
    """Test Slack webhook delivery."""

    @pytest.fixture
    def channel(self):
        return SlackChannel(SlackNotificationConfig(max_retry_after=2.0))

    def test_markdown_conversion(self):
        """Should convert bold and links to Slack mrkdwn."""
        assert to_slack_markdown("**Hi** [site](https://x.io)") == "*Hi* <https://x.io|site>"

    def test_plain_text_strips_emoji(self):
        """Should drop emoji and bold markers for fallback text."""
        assert plain_text("💰 **BTC** up") == "BTC up"

    def test_send_success(self, channel, user, alert):
        """Should succeed when Slack answers ok."""
        with patch("requests.post", return_value=_response(200, text="ok")) as mock_post:
            result = channel.send(user, ALERT_MESSAGE, alert)

        assert result.success is True
        payload = mock_post.call_args.kwargs["json"]
        assert payload["blocks"][0]["text"]["text"] == "🔔 BTC breakout"
        assert payload["attachments"][0]["color"] == "#f7931a"

    def test_non_ok_body_is_failure(self, channel, user):
        """Should fail when the webhook answers anything but ok."""
        with patch("requests.post", return_value=_response(404, text="no_service")):
            result = channel.send(user, ALERT_MESSAGE)

        assert result.success is False
        assert result.error == "no_service"

    def test_rate_limit_retry(self, channel, user):
        """Should wait Retry-After (capped) and retry once on 429."""
        limited = _response(429, text="rate_limited")
        limited.headers = {"Retry-After": "30"}
        with patch("requests.post", side_effect=[limited, _response(200, text="ok")]) as mock_post:
            with patch("time.sleep") as mock_sleep:
                result = channel.send(user, ALERT_MESSAGE)

        assert result.success is True
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(2.0)

    def test_invalid_webhook_url(self, channel, user):
        """Should not be configured without a webhook URL."""
        user.slack_webhook_url = "not a url"
        assert channel.is_configured(user) is False


class TestEmailChannel:
    """Test SMTP delivery."""

    @pytest.fixture
    def channel(self):
        return EmailChannel(
            EmailNotificationConfig(
                smtp_host="smtp.example.com",
                smtp_port=587,
                smtp_user="alerts@example.com",
                smtp_password="secret",
            )
        )

    def test_is_valid_email(self):
        """Should validate address shape."""
        assert is_valid_email("a@example.com") is True
        assert is_valid_email("not-an-email") is False
        assert is_valid_email(None) is False

    def test_send_email_success(self, channel, user, alert):
        """Should send via SMTP with TLS and login."""
        with patch("smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            result = channel.send(user, ALERT_MESSAGE, alert)

        assert result.success is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts@example.com", "secret")
        message = server.send_message.call_args.args[0]
        assert message["Subject"] == "Alert: BTC breakout - AlertWatch"
        assert message["To"] == "aysel@example.com"

    def test_send_email_auth_failure(self, channel, user, alert):
        """Should report authentication failures."""
        with patch("smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            result = channel.send(user, ALERT_MESSAGE, alert)

        assert result.success is False
        assert result.error.startswith("Authentication failed")

    def test_send_email_connection_failure(self, channel, user, alert):
        """Should report SMTP connection errors."""
        with patch("smtplib.SMTP", side_effect=OSError("connection refused")):
            result = channel.send(user, ALERT_MESSAGE, alert)

        assert result.success is False
        assert result.error == "SMTP error: connection refused"

    def test_html_body_is_escaped(self, channel):
        """Should escape HTML and render bold markers."""
        body = channel._create_body("Title", "**BTC** <script>")
        assert "<strong>BTC</strong>" in body
        assert "&lt;script&gt;" in body


class TestPushChannel:
    """Test web push delivery and subscription pruning."""

    @pytest.fixture
    def config(self):
        return PushNotificationConfig(vapid_public_key="pub", vapid_private_key="priv")

    @pytest.fixture
    def subscribed_user(self, repos, sample_user):
        for endpoint in ("https://push.example.com/a", "https://push.example.com/b"):
            repos["subscription"].add(
                PushSubscription(
                    user_id=sample_user.id, endpoint=endpoint, p256dh="key", auth="auth"
                )
            )
        return sample_user

    def test_not_configured_without_vapid(self, repos, subscribed_user):
        """Should require VAPID keys."""
        channel = PushChannel(repos["subscription"], PushNotificationConfig())
        assert channel.is_configured(subscribed_user) is False

    def test_not_configured_without_subscription(self, repos, sample_user, config):
        """Should require at least one stored subscription."""
        channel = PushChannel(repos["subscription"], config)
        assert channel.is_configured(sample_user) is False

    def test_build_payload(self, repos, config, alert):
        """Should use the first line as title and next lines as body."""
        channel = PushChannel(repos["subscription"], config)
        payload = channel.build_payload(ALERT_MESSAGE, alert, {"price": 51000.0})

        assert payload["title"] == "💰 Crypto Alert: BTC breakout"
        assert payload["body"].split("\n")[0] == "🪙 BTC"
        assert len(payload["body"].split("\n")) == 3
        assert payload["data"]["alertId"] == 7
        assert payload["data"]["alertType"] == "crypto"
        assert payload["data"]["price"] == 51000.0
        assert payload["tag"].startswith("alert-7-")

    def test_send_to_all_subscriptions(self, repos, subscribed_user, config, alert):
        """Should push to every subscription of the user."""
        channel = PushChannel(repos["subscription"], config)
        with patch("alertwatch.notifiers.push.webpush") as mock_webpush:
            result = channel.send(subscribed_user, ALERT_MESSAGE, alert)

        assert result.success is True
        assert result.details == {"sent_count": 2, "total_subscriptions": 2}
        assert mock_webpush.call_count == 2
        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["vapid_private_key"] == "priv"
        assert kwargs["vapid_claims"] == {"sub": "mailto:admin@alertwatch.app"}

    def test_gone_subscription_is_pruned(self, repos, subscribed_user, config, alert):
        """Should delete subscriptions the push service reports as gone."""
        gone = WebPushException("Push failed", response=Mock(status_code=410))
        channel = PushChannel(repos["subscription"], config)

        with patch("alertwatch.notifiers.push.webpush", side_effect=[gone, None]):
            result = channel.send(subscribed_user, ALERT_MESSAGE, alert)

        assert result.success is True
        assert result.details["sent_count"] == 1
        remaining = repos["subscription"].get_user_subscriptions(subscribed_user.id)
        assert [s.endpoint for s in remaining] == ["https://push.example.com/b"]

    def test_all_subscriptions_fail(self, repos, subscribed_user, config, alert):
        """Should fail and keep subscriptions on transient errors."""
        error = WebPushException("Push failed", response=Mock(status_code=500))
        channel = PushChannel(repos["subscription"], config)

        with patch("alertwatch.notifiers.push.webpush", side_effect=error):
            result = channel.send(subscribed_user, ALERT_MESSAGE, alert)

        assert result.success is False
        assert result.error.startswith("Failed to send to any subscription")
        assert len(repos["subscription"].get_user_subscriptions(subscribed_user.id)) == 2
