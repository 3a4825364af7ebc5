"""Notification package exposing the push channel and service."""

from .channels.base import NotificationGatewayError, PushChannel
from .channels.uniqush import UniqushChannel
from .service import NotificationService

__all__ = [
    "NotificationGatewayError",
    "NotificationService",
    "PushChannel",
    "UniqushChannel",
]
