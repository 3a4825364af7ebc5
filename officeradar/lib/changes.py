"""
Follow the database changes feed and route changed documents.

The feed is read with long-poll requests, one batch at a time. The cursor
only advances past a batch that decoded, so an undecodable batch is simply
requested again on the next poll. A change that fails to route is logged
and skipped.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional, Protocol, Union

from pydantic import ValidationError

from .alerts import AlertConfigurationError
from .clients import ChangesTimeout
from .dispatcher import EventDispatcher
from .notifications import NotificationService
from .schemas import ChangeEntry, ChangesResponse
from .store import DocumentStore, fetch_envelope, fetch_geofence_event, fetch_profile


logger = logging.getLogger("officeradar.changes")

PROFILE_TYPE = "profile"
GEOFENCE_EVENT_TYPE = "geofence_event"

Cursor = Union[int, str]


class ChangesDecodeError(ValueError):
    """Raised when a changes batch cannot be decoded."""


class ChangesFeed(DocumentStore, Protocol):
    def changes(self, since: Optional[Cursor], *, feed: str = "longpoll", timeout: Optional[float] = None) -> bytes:
        ...

    def last_sequence(self) -> Cursor:
        ...


def decode_changes(body: Union[bytes, str]) -> ChangesResponse:
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ChangesDecodeError(f"Changes batch is not valid JSON: {exc}") from exc
    try:
        return ChangesResponse.model_validate(payload)
    except ValidationError as exc:
        raise ChangesDecodeError(f"Changes batch has an unexpected shape: {exc}") from exc


class ChangeRouter:
    """Fetch each changed document and hand it on according to its ``type``."""

    def __init__(
        self,
        client: DocumentStore,
        notifier: NotificationService,
        dispatcher: EventDispatcher,
    ) -> None:
        self._client = client
        self._notifier = notifier
        self._dispatcher = dispatcher

    def route(self, change: ChangeEntry) -> Optional[str]:
        """Returns the routed document type, or None when the change was skipped."""
        if change.deleted:
            logger.debug("Change %s was deleted, skipping", change.id)
            return None

        try:
            envelope = fetch_envelope(self._client, change.id)
        except Exception as exc:  # noqa: BLE001 - skip this document only
            logger.error("Didn't retrieve %s: %s", change.id, exc, extra={"doc_id": change.id})
            return None

        if envelope.type == PROFILE_TYPE:
            self._route_profile(change)
        elif envelope.type == GEOFENCE_EVENT_TYPE:
            self._route_geofence_event(change)
        else:
            logger.debug("Ignoring change %s of type %r", change.id, envelope.type)
            return None
        return envelope.type

    def _route_profile(self, change: ChangeEntry) -> None:
        try:
            profile = fetch_profile(self._client, change.id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Load fail: %s - %s", change.id, exc, extra={"doc_id": change.id})
            return
        self._notifier.register_profile(profile)

    def _route_geofence_event(self, change: ChangeEntry) -> None:
        try:
            event = fetch_geofence_event(self._client, change.id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Load fail: %s - %s", change.id, exc, extra={"doc_id": change.id})
            return
        self._dispatcher.dispatch(event)


class ChangesFollower:
    def __init__(
        self,
        client: ChangesFeed,
        router: ChangeRouter,
        *,
        since: Optional[Cursor] = None,
        poll_timeout: Optional[float] = None,
        error_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._router = router
        self._since: Optional[Cursor] = since if since != "" else None
        self._poll_timeout = poll_timeout
        self._error_delay = error_delay
        self._sleep = sleep

    @property
    def since(self) -> Optional[Cursor]:
        return self._since

    def initialize_cursor(self) -> Cursor:
        """Start from the caller's cursor, or from the current end of the feed."""
        if self._since is None:
            self._since = self._client.last_sequence()
            logger.info("Starting from last sequence %s", self._since)
        else:
            logger.info("Starting from supplied sequence %s", self._since)
        return self._since

    def poll_once(self) -> bool:
        """
        Process one batch. Returns True when the batch was handled and the
        cursor advanced; False when the cursor was kept for the next poll.
        """
        if self._since is None:
            self.initialize_cursor()

        try:
            body = self._client.changes(self._since, feed="longpoll", timeout=self._poll_timeout)
        except ChangesTimeout:
            logger.debug("Changes long-poll timed out at since=%s", self._since)
            return False
        except Exception as exc:  # noqa: BLE001 - retried by the next poll
            logger.warning("Failed to fetch changes since %s: %s", self._since, exc)
            self._sleep(self._error_delay)
            return False

        try:
            batch = decode_changes(body)
        except ChangesDecodeError as exc:
            logger.warning("%s; keeping since=%s", exc, self._since)
            self._sleep(self._error_delay)
            return False

        logger.debug(
            "changes.batch",
            extra={"since": self._since, "results": len(batch.results), "last_seq": batch.last_seq},
        )
        for change in batch.results:
            try:
                self._router.route(change)
            except AlertConfigurationError:
                raise
            except Exception:  # noqa: BLE001 - one change must not stall the feed
                logger.exception("Failed to process change %s", change.id, extra={"doc_id": change.id})

        self._since = batch.last_seq
        return True

    def follow(self, max_batches: Optional[int] = None) -> None:
        """Follow the feed forever, or for ``max_batches`` polls when given."""
        self.initialize_cursor()
        polls = 0
        while max_batches is None or polls < max_batches:
            self.poll_once()
            polls += 1
