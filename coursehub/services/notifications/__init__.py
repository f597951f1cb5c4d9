from coursehub.services.notifications.dispatch import NotificationDispatcher
from coursehub.services.notifications.messages import MessageFormat, RenderedNotification
from coursehub.services.notifications.service import NotificationService

__all__ = [
    "MessageFormat",
    "NotificationDispatcher",
    "NotificationService",
    "RenderedNotification",
]
