from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx

from ..utils.retry import with_retry

__all__ = [
    "ChangesTimeout",
    "DocumentNotFoundError",
    "DocumentStoreError",
    "RevisionConflictError",
    "SyncGatewayClient",
    "build_sync_gateway_client",
]


_JSON_PARAMS = {"key", "keys", "startkey", "endkey", "start_key", "end_key"}


class DocumentStoreError(RuntimeError):
    """Raised when a Sync Gateway request fails."""

    def __init__(self, message: str, *, retryable: bool = False, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status = status


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document does not exist (or was deleted)."""


class RevisionConflictError(DocumentStoreError):
    """Raised when a write carries a revision that is no longer current."""


class ChangesTimeout(DocumentStoreError):
    """Raised when a long-poll request ends without a response."""


logger = logging.getLogger("officeradar.clients.sync_gateway")


def _doc_path(doc_id: str) -> str:
    if not doc_id:
        raise ValueError("Document id must be a non-empty string")
    if doc_id.startswith("_design/"):
        return "/_design/" + quote(doc_id[len("_design/"):], safe="")
    return "/" + quote(doc_id, safe="")


def _check_response(response: httpx.Response, operation: str) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200]
    if status == 404:
        raise DocumentNotFoundError(f"{operation}: not found ({detail})", status=status)
    if status == 409:
        raise RevisionConflictError(f"{operation}: revision conflict ({detail})", status=status)
    raise DocumentStoreError(
        f"{operation}: HTTP {status} ({detail})",
        retryable=status >= 500,
        status=status,
    )


class SyncGatewayClient:
    """
    Thin wrapper over the Sync Gateway (CouchDB-compatible) document API.
    ``base_url`` includes the database name, without a trailing slash.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        longpoll_timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
        attempts: int = 3,
        base_delay: float = 0.5,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._timeout = timeout
        self._longpoll_timeout = longpoll_timeout
        self._attempts = max(1, attempts)
        self._base_delay = base_delay

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SyncGatewayClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise DocumentStoreError(f"{operation}: timed out", retryable=True) from exc
        except httpx.TransportError as exc:
            raise DocumentStoreError(f"{operation}: {exc}", retryable=True) from exc
        duration = time.perf_counter() - start
        logger.debug(
            "sync_gateway.request",
            extra={
                "operation": operation,
                "method": method,
                "status": response.status_code,
                "duration": duration,
            },
        )
        _check_response(response, operation)
        return response

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise DocumentStoreError(f"{operation}: invalid JSON body") from exc
        if not isinstance(payload, dict):
            raise DocumentStoreError(f"{operation}: expected a JSON object")
        return payload

    def get(self, doc_id: str) -> Dict[str, Any]:
        operation = f"get {doc_id}"
        response = self._request("GET", _doc_path(doc_id), operation)
        return self._json(response, operation)

    def put(self, document: Dict[str, Any]) -> str:
        """
        Write ``document``; its ``_rev`` is the expected current revision.
        Returns the new revision.
        """
        doc_id = document.get("_id")
        if not isinstance(doc_id, str):
            raise ValueError("Document to put must carry an '_id'")
        operation = f"put {doc_id}"
        response = self._request("PUT", _doc_path(doc_id), operation, json=document)
        payload = self._json(response, operation)
        return str(payload.get("rev"))

    def delete(self, doc_id: str, rev: Optional[str]) -> str:
        operation = f"delete {doc_id}"
        if not rev:
            raise RevisionConflictError(f"{operation}: no revision supplied")
        response = self._request("DELETE", _doc_path(doc_id), operation, params={"rev": rev})
        payload = self._json(response, operation)
        return str(payload.get("rev"))

    def changes(
        self,
        since: Optional[Union[int, str]],
        *,
        feed: str = "longpoll",
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Fetch the next batch from the changes feed and return the raw body.
        A long-poll that ends without a response raises ``ChangesTimeout``.
        """
        poll_timeout = self._longpoll_timeout if timeout is None else timeout
        params: Dict[str, Any] = {
            "feed": feed,
            "timeout": int(poll_timeout * 1000),
        }
        if since is not None:
            params["since"] = since
        # leave the server room to answer an idle long-poll itself
        read_timeout = poll_timeout + self._timeout
        operation = f"changes since={since}"
        try:
            response = self._client.get(
                "/_changes",
                params=params,
                timeout=httpx.Timeout(self._timeout, read=read_timeout),
            )
        except httpx.TimeoutException as exc:
            raise ChangesTimeout(f"{operation}: no response within {read_timeout}s", retryable=True) from exc
        except httpx.TransportError as exc:
            raise DocumentStoreError(f"{operation}: {exc}", retryable=True) from exc
        _check_response(response, operation)
        return response.content

    def last_sequence(self) -> Union[int, str]:
        """Sequence of the most recent change in the database."""

        def _call() -> Union[int, str]:
            response = self._request("GET", "/", "database info")
            payload = self._json(response, "database info")
            sequence = payload.get("update_seq")
            if sequence is None:
                raise DocumentStoreError("database info: missing 'update_seq'")
            return sequence

        return with_retry(
            _call,
            attempts=self._attempts,
            base_delay=self._base_delay,
            logger=logger,
            description="Sync Gateway last sequence",
            exceptions=(DocumentStoreError,),
        )

    def query_view(self, design: str, view: str, **params: Any) -> Dict[str, Any]:
        encoded = {
            key: json.dumps(value) if key in _JSON_PARAMS or isinstance(value, bool) else value
            for key, value in params.items()
            if value is not None
        }
        operation = f"view {design}/{view}"
        path = f"/_design/{quote(design, safe='')}/_view/{quote(view, safe='')}"
        response = self._request("GET", path, operation, params=encoded)
        return self._json(response, operation)

    def put_design(self, design: str, document: Dict[str, Any]) -> str:
        """Create or replace a design document, keeping its current revision."""
        doc_id = f"_design/{design}"
        body = dict(document)
        body["_id"] = doc_id
        try:
            existing = self.get(doc_id)
        except DocumentNotFoundError:
            existing = None
        if existing is not None:
            if existing.get("views") == body.get("views"):
                return str(existing.get("_rev"))
            body["_rev"] = existing.get("_rev")
        return self.put(body)


def build_sync_gateway_client(
    url: str,
    *,
    timeout: float = 10.0,
    longpoll_timeout: float = 60.0,
) -> SyncGatewayClient:
    return SyncGatewayClient(
        base_url=url.rstrip("/"),
        timeout=timeout,
        longpoll_timeout=longpoll_timeout,
    )
