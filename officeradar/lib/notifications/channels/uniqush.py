from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from .base import NotificationGatewayError, PushChannel


logger = logging.getLogger("officeradar.notifications.uniqush")


class UniqushChannel(PushChannel):
    """Push delivery through a Uniqush push server."""

    name = "uniqush"

    def __init__(
        self,
        base_url: str,
        *,
        service: str = "officeradar",
        push_service_type: str = "apns",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._service = service
        self._push_service_type = push_service_type
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, data: Dict[str, str], subject: str) -> str:
        logger.debug("Posting to uniqush %s", path, extra={"subscriber": data.get("subscriber")})
        try:
            response = self._client.post(path, data=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise NotificationGatewayError(
                f"Uniqush {path} failed for {subject}: HTTP {status}",
                retryable=status >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationGatewayError(
                f"Uniqush {path} failed for {subject}: {exc}",
                retryable=True,
            ) from exc
        body = response.text
        logger.debug("Uniqush response body: %s", body)
        return body

    def register_device(self, profile_id: str, device_token: str) -> None:
        self._post(
            "/subscribe",
            {
                "service": self._service,
                "subscriber": profile_id,
                "pushservicetype": self._push_service_type,
                "devtoken": device_token,
            },
            subject=profile_id,
        )

    def push(self, recipient_id: str, message: str) -> None:
        self._post(
            "/push",
            {
                "service": self._service,
                "subscriber": recipient_id,
                "msg": message,
            },
            subject=recipient_id,
        )
