from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Protocol, Type, TypeVar

from pydantic import ValidationError

from .alerts import Alert, AlertDocumentError, GeofenceEvent, alert_from_document, alert_to_document
from .alerts.registry import ALERT_TYPES, format_timestamp
from .alerts.models import ensure_utc
from .schemas import Beacon, DocumentEnvelope, GeofenceEventDocument, Profile


logger = logging.getLogger("officeradar.store")

ACTIVE_ALERTS_VIEW = "active_alerts"

# keyed on activeOn so an endkey of "now" selects every alert that is due;
# unset activeOn emits null, which collates before any timestamp
_ACTIVE_ALERTS_MAP = """function (doc, meta) {
  var types = %s;
  if (types.indexOf(doc.type) !== -1) {
    emit(doc.activeOn || null, null);
  }
}"""

M = TypeVar("M", bound=DocumentEnvelope)


class DocumentFormatError(ValueError):
    """Raised when a stored document does not match its expected shape."""


class DocumentStore(Protocol):
    def get(self, doc_id: str) -> Dict[str, Any]:
        ...

    def put(self, document: Dict[str, Any]) -> str:
        ...

    def delete(self, doc_id: str, rev: Any) -> str:
        ...

    def query_view(self, design: str, view: str, **params: Any) -> Dict[str, Any]:
        ...

    def put_design(self, design: str, document: Dict[str, Any]) -> str:
        ...


def _fetch(client: DocumentStore, doc_id: str, model: Type[M]) -> M:
    document = client.get(doc_id)
    try:
        return model.model_validate(document)
    except ValidationError as exc:
        raise DocumentFormatError(f"Document {doc_id} is not a valid {model.__name__}: {exc}") from exc


def fetch_envelope(client: DocumentStore, doc_id: str) -> DocumentEnvelope:
    return _fetch(client, doc_id, DocumentEnvelope)


def fetch_profile(client: DocumentStore, profile_id: str) -> Profile:
    return _fetch(client, profile_id, Profile)


def fetch_beacon(client: DocumentStore, beacon_id: str) -> Beacon:
    return _fetch(client, beacon_id, Beacon)


def fetch_geofence_event(client: DocumentStore, event_id: str) -> GeofenceEvent:
    document = _fetch(client, event_id, GeofenceEventDocument)
    return GeofenceEvent(
        id=document.id,
        revision=document.rev,
        action=document.action,
        beacon_id=document.beacon,
        profile_id=document.profile,
        created_at=ensure_utc(document.created_at) if document.created_at else None,
    )


class AlertStore:
    """
    Alert documents in the database. Nothing is cached: every listing reads
    the alerts fresh, and lifecycle writes go out with the revision the alert
    was loaded with so concurrent edits are rejected by the database.
    """

    def __init__(self, client: DocumentStore, *, design: str = "officeradar") -> None:
        self._client = client
        self._design = design

    def ensure_views(self) -> str:
        view_map = _ACTIVE_ALERTS_MAP % ("[" + ", ".join(f'"{tag}"' for tag in sorted(ALERT_TYPES)) + "]")
        return self._client.put_design(
            self._design,
            {"views": {ACTIVE_ALERTS_VIEW: {"map": view_map}}},
        )

    def list_active_alert_ids(self, now: datetime) -> List[str]:
        payload = self._client.query_view(
            self._design,
            ACTIVE_ALERTS_VIEW,
            endkey=format_timestamp(now),
            stale=False,
        )
        ids: List[str] = []
        for row in payload.get("rows") or []:
            doc_id = row.get("id") if isinstance(row, dict) else None
            if isinstance(doc_id, str) and doc_id not in ids:
                ids.append(doc_id)
        return ids

    def list_active_alerts(self, now: datetime) -> List[Alert]:
        """
        Load every alert due at ``now`` in view order. A malformed alert is
        logged and skipped; store failures propagate.
        """
        alerts: List[Alert] = []
        for alert_id in self.list_active_alert_ids(now):
            document = self._client.get(alert_id)
            try:
                alerts.append(alert_from_document(document))
            except AlertDocumentError as exc:
                logger.error(
                    "Skipping malformed alert %s: %s",
                    alert_id,
                    exc,
                    extra={"alert_id": alert_id},
                )
        return alerts

    def update(self, alert: Alert) -> Alert:
        """Write ``alert`` with its expected revision; returns it at the new revision."""
        document = alert_to_document(alert)
        new_rev = self._client.put(document)
        return replace(alert, revision=new_rev, document={**document, "_rev": new_rev})

    def delete(self, alert: Alert) -> None:
        self._client.delete(alert.id, alert.revision)
