"""Notification service package."""

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend, build_message
from .service import NotificationEvent, NotificationService
from .subscriber import LoyaltyNotificationSubscriber

__all__ = [
    "EmailBackend",
    "SMTPEmailBackend",
    "InMemoryEmailBackend",
    "build_message",
    "LoyaltyNotificationSubscriber",
    "NotificationService",
    "NotificationEvent",
]
