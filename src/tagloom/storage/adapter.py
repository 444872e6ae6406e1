"""Storage adapter contract and the collection-blob CRUD shared by every backing store.

Each project stores its tags as one structured blob::

    {"library": [<tag record>, ...], "custom": [<tag record>, ...]}

Adapters only move that blob. :class:`CollectionAdapter` implements the
per-tag operations on top of two primitives, ``_read_blob`` and
``_write_blob``, so every backend yields the same logical results.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tagloom.errors import AdapterError, NotFoundError
from tagloom.model.serialization import format_datetime
from tagloom.model.tag import CUSTOM_SECTION, LIBRARY_SECTION, SECTIONS, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from tagloom.errors import FieldError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = dict[str, Any]
Blob = dict[str, list[Record]]

# Keys the adapter owns; values sent by callers are ignored.
SERVER_KEYS: frozenset[str] = frozenset({"id", "createdAt", "updatedAt"})


def empty_blob() -> Blob:
    return {LIBRARY_SECTION: [], CUSTOM_SECTION: []}


def record_section(record: Record) -> str:
    return CUSTOM_SECTION if record.get("isCustom") is True else LIBRARY_SECTION


def normalize_blob(raw: Any) -> Blob:
    """Check the stored blob's outer shape and fill in missing sections.

    Records inside the sections are passed through untouched, whatever their
    content; judging them is the caller's job.

    Raises :class:`AdapterError` (not retryable) when the blob is not a
    mapping of lists.
    """
    if raw is None:
        return empty_blob()
    if not isinstance(raw, dict):
        msg = f"stored tag collection must be a mapping, got {type(raw).__name__}"
        raise AdapterError(msg, retryable=False)
    blob = empty_blob()
    for section in SECTIONS:
        records = raw.get(section, [])
        if records is None:
            records = []
        if not isinstance(records, list):
            msg = f"stored tag collection section '{section}' must be a list"
            raise AdapterError(msg, retryable=False)
        blob[section] = list(records)
    return blob


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageResult(Generic[T]):
    """``{data, error}`` pair returned by every adapter and repository call.

    ``validation_errors`` is only ever filled by the repository, when a tag
    was rejected before reaching storage.
    """

    data: T | None = None
    error: AdapterError | None = None
    validation_errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None and not self.validation_errors

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class StorageAdapter(abc.ABC):
    """CRUD over one project's tag collection. Methods never raise; failures come back in the result."""

    project_id: str

    @abc.abstractmethod
    async def get_all(self) -> StorageResult[list[Record]]: ...

    @abc.abstractmethod
    async def get(self, tag_id: str) -> StorageResult[Record]: ...

    @abc.abstractmethod
    async def create(self, data: Record) -> StorageResult[Record]: ...

    @abc.abstractmethod
    async def update(self, tag_id: str, patch: Record) -> StorageResult[Record]: ...

    @abc.abstractmethod
    async def delete(self, tag_id: str) -> StorageResult[Record]: ...

    @abc.abstractmethod
    async def get_collection(self) -> StorageResult[Blob]: ...

    @abc.abstractmethod
    async def save_collection(self, blob: Blob) -> StorageResult[Blob]: ...

    async def close(self) -> None:
        """Release connections held by the adapter."""


class CollectionAdapter(StorageAdapter):
    """Per-tag CRUD implemented as read-modify-write of the project blob.

    Subclasses implement ``_read_blob`` / ``_write_blob`` and convert their
    own library errors into :class:`AdapterError` there. Mutations are
    serialized by an :class:`asyncio.Lock`, so interleaved calls on one
    adapter never lose each other's writes.
    """

    backend = "collection"

    def __init__(self, project_id: str, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.project_id = project_id
        self._clock = clock
        self._lock = asyncio.Lock()

    @abc.abstractmethod
    async def _read_blob(self) -> Blob:
        """Return the stored blob, normalized. Raise AdapterError on failure."""

    @abc.abstractmethod
    async def _write_blob(self, blob: Blob) -> None:
        """Replace the stored blob. Raise AdapterError on failure."""

    def _now(self) -> str:
        return format_datetime(self._clock())

    def _fail(self, operation: str, exc: AdapterError) -> StorageResult[Any]:
        logger.warning(
            "%s adapter %s failed for project %s: %s (retryable=%s)",
            self.backend,
            operation,
            self.project_id,
            exc,
            exc.retryable,
        )
        return StorageResult(error=exc)

    @staticmethod
    def _locate(blob: Blob, tag_id: str) -> tuple[str, int] | None:
        for section in SECTIONS:
            for index, record in enumerate(blob[section]):
                if isinstance(record, dict) and record.get("id") == tag_id:
                    return section, index
        return None

    # -- reads ---------------------------------------------------------------

    async def get_all(self) -> StorageResult[list[Record]]:
        try:
            blob = await self._read_blob()
        except AdapterError as exc:
            return self._fail("get_all", exc)
        return StorageResult(data=[*blob[LIBRARY_SECTION], *blob[CUSTOM_SECTION]])

    async def get(self, tag_id: str) -> StorageResult[Record]:
        try:
            blob = await self._read_blob()
        except AdapterError as exc:
            return self._fail("get", exc)
        found = self._locate(blob, tag_id)
        if found is None:
            return self._fail("get", NotFoundError(f"tag '{tag_id}' not found"))
        section, index = found
        return StorageResult(data=blob[section][index])

    async def get_collection(self) -> StorageResult[Blob]:
        try:
            return StorageResult(data=await self._read_blob())
        except AdapterError as exc:
            return self._fail("get_collection", exc)

    # -- writes --------------------------------------------------------------

    async def create(self, data: Record) -> StorageResult[Record]:
        record = {k: copy.deepcopy(v) for k, v in data.items() if k not in SERVER_KEYS}
        record["id"] = str(data.get("id") or uuid.uuid4())
        now = self._now()
        record["createdAt"] = now
        record["updatedAt"] = now

        async with self._lock:
            try:
                blob = await self._read_blob()
                if self._locate(blob, record["id"]) is not None:
                    msg = f"tag '{record['id']}' already exists"
                    raise AdapterError(msg, retryable=False)
                blob[record_section(record)].append(record)
                await self._write_blob(blob)
            except AdapterError as exc:
                return self._fail("create", exc)
        logger.debug("Created tag %s in project %s", record["id"], self.project_id)
        return StorageResult(data=record)

    async def update(self, tag_id: str, patch: Record) -> StorageResult[Record]:
        async with self._lock:
            try:
                blob = await self._read_blob()
                found = self._locate(blob, tag_id)
                if found is None:
                    raise NotFoundError(f"tag '{tag_id}' not found")
                section, index = found
                current = blob[section][index]
                merged = {
                    **current,
                    **{k: copy.deepcopy(v) for k, v in patch.items() if k not in SERVER_KEYS},
                }
                if merged == current:
                    # Nothing changed: no write, no timestamp bump.
                    return StorageResult(data=current)
                merged["updatedAt"] = self._now()

                target = record_section(merged)
                if target == section:
                    blob[section][index] = merged
                else:
                    del blob[section][index]
                    blob[target].append(merged)
                await self._write_blob(blob)
            except AdapterError as exc:
                return self._fail("update", exc)
        logger.debug("Updated tag %s in project %s", tag_id, self.project_id)
        return StorageResult(data=merged)

    async def delete(self, tag_id: str) -> StorageResult[Record]:
        async with self._lock:
            try:
                blob = await self._read_blob()
                found = self._locate(blob, tag_id)
                if found is None:
                    raise NotFoundError(f"tag '{tag_id}' not found")
                section, index = found
                removed = blob[section].pop(index)
                await self._write_blob(blob)
            except AdapterError as exc:
                return self._fail("delete", exc)
        logger.debug("Deleted tag %s from project %s", tag_id, self.project_id)
        return StorageResult(data=removed)

    async def save_collection(self, blob: Blob) -> StorageResult[Blob]:
        async with self._lock:
            try:
                normalized = normalize_blob(copy.deepcopy(blob))
                await self._write_blob(normalized)
            except AdapterError as exc:
                return self._fail("save_collection", exc)
        logger.debug(
            "Saved collection for project %s (%d library, %d custom)",
            self.project_id,
            len(normalized[LIBRARY_SECTION]),
            len(normalized[CUSTOM_SECTION]),
        )
        return StorageResult(data=normalized)
