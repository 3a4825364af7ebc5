from __future__ import annotations

from typing import Protocol


class NotificationGatewayError(RuntimeError):
    """Raised when the push gateway rejects or cannot receive a request."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class PushChannel(Protocol):
    name: str

    def register_device(self, profile_id: str, device_token: str) -> None:
        ...

    def push(self, recipient_id: str, message: str) -> None:
        ...
