"""
Stock alert messages.
"""

from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert
from .base import format_number, timestamp_line, trigger_block


ALERT_TYPE = "stock"


def format_message(
    alert: PersonalAlert, data: dict[str, Any], triggered_at: Optional[datetime] = None
) -> str:
    """Render a triggered stock alert."""
    symbol = data.get("symbol", alert.asset.upper())
    change = data.get("change", 0)
    arrow = "🔺" if isinstance(change, (int, float)) and change >= 0 else "🔻"

    message = f"📈 **Stock Alert: {alert.name}**\n\n"
    message += f"🏢 **{symbol}**\n\n"
    message += trigger_block(alert, data) + "\n"
    message += "📊 **Quote:**\n"
    message += f"• Price: ${format_number(data.get('price'))}\n"
    message += (
        f"• Change: {arrow} {format_number(change)} "
        f"({format_number(data.get('change_percent', 0))}%)\n"
    )
    message += (
        f"• Day Range: ${format_number(data.get('low'))} - "
        f"${format_number(data.get('high'))}\n"
    )
    message += f"• Volume: {format_number(data.get('volume', 0), 0)}\n"
    message += f"\n{timestamp_line(triggered_at)}"
    return message
