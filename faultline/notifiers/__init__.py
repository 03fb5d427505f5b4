"""Outbound notification channels."""

from .base import NotificationResult, Notifier, NotifierDispatcher
from .resend import ResendNotifier
from .slack import SlackNotifier
from .telegram import TelegramNotifier
from .webhook import WebhookNotifier

__all__ = [
    'NotificationResult',
    'Notifier',
    'NotifierDispatcher',
    'ResendNotifier',
    'SlackNotifier',
    'TelegramNotifier',
    'WebhookNotifier',
]
