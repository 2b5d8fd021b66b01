"""
Notification Adapters - Status Update Delivery
"""

from xramp.adapters.notifications.fanout import (
    CompositeFanout,
    LoggingFanout,
    NotificationFanout,
    TelegramFanout,
)

__all__ = ["CompositeFanout", "LoggingFanout", "NotificationFanout", "TelegramFanout"]
