"""Remote relational adapter over an authenticated PostgREST-style HTTP API.

The project row lives in ``<table>`` keyed by ``id``; its ``data`` JSON
column holds project settings alongside ``tags``. Only ``data.tags`` is
replaced on write; every other key in ``data`` is preserved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from tagloom.errors import AdapterError, NotFoundError
from tagloom.model.tag import utcnow
from tagloom.storage.adapter import Blob, CollectionAdapter, normalize_blob

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "implementations"
DEFAULT_TIMEOUT = 30.0

# Statuses that repeating the same request cannot fix.
_PERMANENT_STATUSES: frozenset[int] = frozenset({400, 401, 403, 404, 409, 422})


def _status_error(response: httpx.Response) -> AdapterError:
    status = response.status_code
    msg = f"remote store error {status}: {response.text[:200]}"
    return AdapterError(msg, retryable=status not in _PERMANENT_STATUSES)


class RemoteAdapter(CollectionAdapter):
    """Stores the tag blob in a remote row, one HTTP round trip per read or write."""

    backend = "remote"

    def __init__(
        self,
        base_url: str,
        project_id: str,
        *,
        api_key: str,
        access_token: str | None = None,
        table: str = DEFAULT_TABLE,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(project_id, clock=clock)
        self.table = table
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            transport=transport,
            timeout=timeout,
        )

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, self._path, **kwargs)
        except httpx.TimeoutException as exc:
            msg = f"remote store timed out: {exc}"
            raise AdapterError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"remote store unreachable: {exc}"
            raise AdapterError(msg) from exc
        if response.status_code >= 400:
            raise _status_error(response)
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as exc:
            msg = "remote store returned a non-JSON response"
            raise AdapterError(msg, retryable=False) from exc
        if not isinstance(rows, list):
            msg = "remote store returned an unexpected payload"
            raise AdapterError(msg, retryable=False)
        return rows

    async def _read_row_data(self) -> dict[str, Any] | None:
        response = await self._request(
            "GET", params={"id": f"eq.{self.project_id}", "select": "data"}
        )
        rows = self._rows(response)
        if not rows:
            return None
        data = rows[0].get("data")
        if data is None:
            return {}
        if not isinstance(data, dict):
            msg = f"project '{self.project_id}' data must be a JSON object"
            raise AdapterError(msg, retryable=False)
        return data

    async def _read_blob(self) -> Blob:
        data = await self._read_row_data()
        return normalize_blob(None if data is None else data.get("tags"))

    async def _write_blob(self, blob: Blob) -> None:
        data = await self._read_row_data()
        if data is None:
            raise NotFoundError(f"project '{self.project_id}' not found in {self.table}")
        payload = {**data, "tags": blob}
        response = await self._request(
            "PATCH",
            params={"id": f"eq.{self.project_id}"},
            json={"data": payload, "updated_at": self._now()},
            headers={"Prefer": "return=representation"},
        )
        if not self._rows(response):
            raise NotFoundError(f"project '{self.project_id}' not found in {self.table}")
        logger.debug("Wrote tag collection for project %s to %s", self.project_id, self.table)

    async def close(self) -> None:
        await self._client.aclose()
