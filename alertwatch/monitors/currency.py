"""
Currency exchange rate alert messages.
"""

from datetime import datetime
from typing import Any, Optional

from alertwatch.database.models import PersonalAlert
from .base import format_number, timestamp_line, trigger_block


ALERT_TYPE = "currency"


def format_message(
    alert: PersonalAlert, data: dict[str, Any], triggered_at: Optional[datetime] = None
) -> str:
    """Render a triggered currency alert."""
    pair = f"{data.get('from_currency', '')}/{data.get('to_currency', '')}"
    if pair == "/":
        pair = alert.asset.upper()

    message = f"💱 **Currency Alert: {alert.name}**\n\n"
    message += f"🏦 **{pair}**\n\n"
    message += trigger_block(alert, data) + "\n"
    message += "📈 **Exchange Rate:**\n"
    message += f"• Rate: {format_number(data.get('rate'), 4)}\n"
    message += (
        f"• Bid / Ask: {format_number(data.get('bid'), 4)} / "
        f"{format_number(data.get('ask'), 4)}\n"
    )
    message += f"• Change: {format_number(data.get('change_percent', 0))}%\n"
    message += f"• Source: {data.get('source', 'unknown')}\n"
    message += f"\n{timestamp_line(triggered_at)}"
    return message
