"""
Cryptocurrency alert messages.
"""

from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert
from .base import format_number, timestamp_line, trigger_block


ALERT_TYPE = "crypto"


def format_message(
    alert: PersonalAlert, data: dict[str, Any], triggered_at: Optional[datetime] = None
) -> str:
    """Render a triggered crypto alert."""
    symbol = data.get("symbol", alert.asset.upper())

    message = f"💰 **Crypto Alert: {alert.name}**\n\n"
    message += f"🪙 **{symbol}**\n\n"
    message += trigger_block(alert, data) + "\n"
    message += "📊 **Market Data:**\n"
    message += f"• Price: ${format_number(data.get('price'))}\n"
    message += f"• 24h Change: {format_number(data.get('change_24h', 0))}%\n"
    if data.get("high_24h") and data.get("low_24h"):
        message += (
            f"• 24h Range: ${format_number(data['low_24h'])} - "
            f"${format_number(data['high_24h'])}\n"
        )
    message += f"• 24h Volume: ${format_number(data.get('volume', 0), 0)}\n"
    message += f"\n{timestamp_line(triggered_at)}"
    return message
