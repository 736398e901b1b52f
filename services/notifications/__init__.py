from .http import post_json
from .telegram import send_telegram_message
from .types import NotificationError, NotificationResult

__all__ = [
    "post_json",
    "send_telegram_message",
    "NotificationError",
    "NotificationResult",
]
