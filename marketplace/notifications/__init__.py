from .dispatcher import NotificationDispatcher
from .emailer import SmtpEmailer

__all__ = ["NotificationDispatcher", "SmtpEmailer"]
