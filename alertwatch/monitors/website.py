"""
Website uptime alert messages.
"""

from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert
from .base import timestamp_line, trigger_block


ALERT_TYPE = "website"


def format_message(
    alert: PersonalAlert, data: dict[str, Any], triggered_at: Optional[datetime] = None
) -> str:
    """Render a triggered website alert."""
    online = bool(data.get("is_online"))
    status = "🟢 Online" if online else "🔴 Offline"

    message = f"🌐 **Website Alert: {alert.name}**\n\n"
    message += f"🔗 **{data.get('url', alert.asset)}**\n\n"
    message += trigger_block(alert, data) + "\n"
    message += "📡 **Status:**\n"
    message += f"• State: {status}\n"
    message += f"• HTTP Status: {data.get('status_code') or 'no response'}\n"
    message += f"• Response Time: {data.get('response_time')} ms\n"
    if data.get("error"):
        message += f"• Error: {data['error']}\n"
    message += f"\n{timestamp_line(triggered_at)}"
    return message
