from listing_guard.notify.email import EmailService
from listing_guard.notify.notifier import Notification, NotificationStore

__all__ = ["EmailService", "Notification", "NotificationStore"]
