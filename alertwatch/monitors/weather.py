"""
Weather alert messages.
"""

from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert
from .base import timestamp_line, trigger_block


ALERT_TYPE = "weather"


def format_message(
    alert: PersonalAlert, data: dict[str, Any], triggered_at: Optional[datetime] = None
) -> str:
    """Render a triggered weather alert."""
    message = f"🌤️ **Weather Alert: {alert.name}**\n\n"
    message += f"📍 **{data.get('location', alert.asset)}**\n\n"
    message += trigger_block(alert, data) + "\n"
    message += "🌡️ **Current Conditions:**\n"
    message += (
        f"• Temperature: {data.get('temperature')}°C "
        f"(feels like {data.get('feels_like')}°C)\n"
    )
    message += f"• Humidity: {data.get('humidity')}%\n"
    message += f"• Wind: {data.get('wind_speed')} m/s\n"

    if (data.get("rain_1h") or 0) > 0:
        message += f"• Rain (1h): {data['rain_1h']} mm\n"

    message += f"• Description: {data.get('description', '')}\n"
    message += f"\n{timestamp_line(triggered_at)}"
    return message
