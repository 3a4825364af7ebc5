from __future__ import annotations

import logging

from ..alerts import AlertAction
from ..schemas import Profile
from .channels.base import NotificationGatewayError, PushChannel


logger = logging.getLogger("officeradar.notifications")


class NotificationService:
    def __init__(self, channel: PushChannel) -> None:
        self._channel = channel

    def close(self) -> None:
        close_fn = getattr(self._channel, "close", None)
        if callable(close_fn):
            close_fn()

    def register_profile(self, profile: Profile) -> int:
        """
        Subscribe every device token of ``profile``. A failing token is logged
        and the rest are still attempted. Returns the number registered.
        """
        registered = 0
        for device_token in profile.device_tokens:
            try:
                self._channel.register_device(profile.id, device_token)
            except NotificationGatewayError as exc:
                logger.error(
                    "Failed to register device for profile %s: %s",
                    profile.id,
                    exc,
                    extra={"profile_id": profile.id, "channel": self._channel.name},
                )
                continue
            registered += 1
        logger.info(
            "Registered %s/%s device tokens for profile %s",
            registered,
            len(profile.device_tokens),
            profile.id,
        )
        return registered

    def deliver(self, action: AlertAction) -> None:
        """Push one alert action; gateway errors propagate to the caller."""
        logger.info(
            "Pushing alert message to %s",
            action.recipient,
            extra={"recipient": action.recipient, "channel": self._channel.name},
        )
        self._channel.push(action.recipient, action.message)
