"""
Client for the spreadsheet web-hook endpoint.

The endpoint is a single URL:

- ``GET`` returns the whole snapshot as a loosely shaped JSON document.
- ``POST`` takes ``{"action": ..., "payload": ...}`` and answers either
  ``{"status": "error", "message": ...}`` or a success document that may carry
  the canonical row under ``"data"``.

The body is sent as ``text/plain`` so the hosting script accepts it without a
CORS preflight; it is still JSON. The endpoint answers through a redirect,
which the client follows.

Every failure is raised as one of the ``ems_sync.core.errors`` exceptions;
nothing from httpx leaks to callers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from ems_sync.core.errors import (
    MalformedResponseError,
    ServerRejectedError,
    TransportError,
    TransportTimeoutError,
)
from ems_sync.core.remote.retry import with_retry
from ems_sync.core.snapshot.models import POST_SELECTIONS_KEY, EntityKind

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 120.0
DEFAULT_WRITE_TIMEOUT = 180.0

WRITE_HEADERS = {"Content-Type": "text/plain;charset=utf-8"}

# A snapshot document must carry at least one of these
SNAPSHOT_KEYS = frozenset(kind.table for kind in EntityKind) | {POST_SELECTIONS_KEY}


def _decode_object(response: httpx.Response) -> dict[str, Any]:
    """Parse a 2xx body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"Response is not valid JSON: {e}",
            body=response.text,
            status_code=response.status_code,
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(data).__name__}",
            body=response.text,
            status_code=response.status_code,
        )
    return data


class RemoteStore:
    """
    Async client for the remote store endpoint.

    Example:
        >>> async with RemoteStore("https://script.example/exec") as remote:
        ...     raw = await remote.fetch_snapshot()
        ...     data = await remote.send("upsertPost", {"Post_ID": 0, "Post_Name": "Clerk"})
    """

    def __init__(
        self,
        endpoint: str,
        *,
        client: httpx.AsyncClient | None = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        fetch_retries: int = 2,
        retry_base_delay: float = 1.0,
    ) -> None:
        self.endpoint = endpoint
        self.fetch_timeout = fetch_timeout
        self.write_timeout = write_timeout
        self._owns_client = client is None
        self._client = client
        self._get = with_retry(max_retries=fetch_retries, base_delay=retry_base_delay)(self._get_once)

    async def __aenter__(self) -> RemoteStore:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying httpx client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def _get_once(self) -> httpx.Response:
        response = await self.client.get(self.endpoint, follow_redirects=True, timeout=self.fetch_timeout)
        response.raise_for_status()
        return response

    async def fetch_snapshot(self) -> dict[str, Any]:
        """
        Fetch the raw snapshot document.

        Transient failures are retried; the whole fetch, retries included,
        is bounded by ``fetch_timeout``.

        Returns:
            The decoded JSON object, still untyped

        Raises:
            TransportTimeoutError: If the fetch took longer than ``fetch_timeout``
            TransportError: On connection failure or a non-2xx response
            ServerRejectedError: If the endpoint answered ``status: "error"``
            MalformedResponseError: If the body is not a JSON object or holds
                no known table
        """
        try:
            response = await asyncio.wait_for(self._get(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(
                f"Fetch timed out after {self.fetch_timeout:g}s",
                timeout_seconds=self.fetch_timeout,
            ) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Fetch failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Fetch timed out: {e}", timeout_seconds=self.fetch_timeout) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Fetch failed: {e}") from e

        data = _decode_object(response)
        if str(data.get("status", "")).lower() == "error":
            message = data.get("message") or "Server rejected the fetch"
            raise ServerRejectedError(str(message))
        if not SNAPSHOT_KEYS.intersection(data):
            raise MalformedResponseError(
                "Snapshot holds none of the known tables",
                body=response.text,
                status_code=response.status_code,
            )
        logger.debug("Fetched snapshot with keys: %s", sorted(data))
        return data

    async def send(self, action: str, payload: Any) -> dict[str, Any] | None:
        """
        Send one write action. Writes are never retried.

        Args:
            action: Action name, e.g. ``"upsertEmployee"``
            payload: JSON-serializable payload

        Returns:
            The canonical object under ``"data"`` if the server returned one,
            else None

        Raises:
            TransportTimeoutError: If the write took longer than ``write_timeout``
            TransportError: On connection failure or a non-2xx response
            ServerRejectedError: If the endpoint answered ``status: "error"``
            MalformedResponseError: If the body or its ``data`` is unusable
        """
        if isinstance(payload, dict) and (payload.get("photoData") or payload.get("fileData")):
            logger.info(
                "Sending %s with attachments (photo=%s, file=%s)",
                action,
                bool(payload.get("photoData")),
                bool(payload.get("fileData")),
            )

        body = json.dumps({"action": action, "payload": payload})
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.endpoint,
                    content=body.encode("utf-8"),
                    headers=WRITE_HEADERS,
                    follow_redirects=True,
                    timeout=self.write_timeout,
                ),
                timeout=self.write_timeout,
            )
            response.raise_for_status()
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(
                f"{action} timed out after {self.write_timeout:g}s",
                timeout_seconds=self.write_timeout,
                action=action,
            ) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{action} failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                action=action,
            ) from e
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(
                f"{action} timed out: {e}", timeout_seconds=self.write_timeout, action=action
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{action} failed: {e}", action=action) from e

        result = _decode_object(response)
        if str(result.get("status", "")).lower() == "error":
            message = result.get("message") or "Server rejected the request"
            raise ServerRejectedError(str(message), action=action)

        data = result.get("data")
        if data is None:
            return None
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"{action} returned data of type {type(data).__name__}",
                body=response.text,
                action=action,
            )
        return data


__all__ = ["DEFAULT_FETCH_TIMEOUT", "DEFAULT_WRITE_TIMEOUT", "RemoteStore"]
