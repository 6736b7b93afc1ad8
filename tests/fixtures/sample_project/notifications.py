"""Notification channels for sample project."""

from abc import ABC, abstractmethod

from .models import User


class DeliveryError(Exception):
    """Raised when a notification cannot be delivered."""


class Notifier(ABC):
    """Base class for notification channels."""

    @abstractmethod
    def send(self, user: User, message: str) -> bool:
        """Deliver a message to a user."""


class EmailNotifier(Notifier):
    """Send notifications by email."""

    def send(self, user: User, message: str) -> bool:
        if "@" not in user.email:
            raise DeliveryError(user.email)
        return True


class SmsNotifier(Notifier):
    """Send notifications by text message."""

    def send(self, user: User, message: str) -> bool:
        return bool(message)


class NotificationService:
    """Fan a message out to every registered notifier."""

    def __init__(self, notifiers):
        self.notifiers = list(notifiers)

    def broadcast(self, user: User, message: str) -> int:
        delivered = 0
        for notifier in self.notifiers:
            try:
                if notifier.send(user, message):
                    delivered += 1
            except DeliveryError:
                continue
        return delivered
