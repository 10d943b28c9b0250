from .dispatcher import NotificationDispatcher
from .templates import MESSAGE_TEMPLATES, construct_message

__all__ = ["NotificationDispatcher", "MESSAGE_TEMPLATES", "construct_message"]
