"""Shared test fixtures for Tagloom."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import pytest

from tagloom.catalog.data_model import default_data_model
from tagloom.catalog.events import EventCatalog
from tagloom.model.conditions import PropertyCondition, QualificationRules
from tagloom.model.tag import Tag
from tagloom.repository import TagRepository
from tagloom.storage.adapter import StorageAdapter, StorageResult
from tagloom.storage.sqlite import SQLiteAdapter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator
    from pathlib import Path

    from tagloom.catalog.data_model import DataModel
    from tagloom.errors import AdapterError
    from tagloom.storage.adapter import Blob, Record

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class _ManualCall:
    def __init__(self, due: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by :meth:`advance` instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._calls: list[_ManualCall] = []
        self.fired = 0

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> _ManualCall:
        call = _ManualCall(self.now + delay, callback)
        self._calls.append(call)
        return call

    @property
    def pending(self) -> int:
        return sum(1 for c in self._calls if not c.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move time forward, running every callback that falls due, in order."""
        target = self.now + seconds
        while True:
            self._calls = [c for c in self._calls if not c.cancelled]
            due = sorted((c for c in self._calls if c.due <= target), key=lambda c: c.due)
            if not due:
                break
            call = due[0]
            self._calls.remove(call)
            self.now = call.due
            self.fired += 1
            await call.callback()
        self.now = target


# ---------------------------------------------------------------------------
# Adapter wrapper
# ---------------------------------------------------------------------------


class SpyAdapter(StorageAdapter):
    """Records calls to a real adapter; can fail or hold individual operations."""

    def __init__(self, inner: StorageAdapter) -> None:
        self.inner = inner
        self.project_id = inner.project_id
        self.calls: list[str] = []
        self.failures: dict[str, AdapterError] = {}
        self.fail_after: dict[str, int] = {}  # successful calls allowed before failing
        self.gates: dict[str, asyncio.Event] = {}

    async def _call(self, name: str, *args: Any) -> StorageResult[Any]:
        self.calls.append(name)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.failures and self.count(name) > self.fail_after.get(name, 0):
            return StorageResult(error=self.failures[name])
        result: StorageResult[Any] = await getattr(self.inner, name)(*args)
        return result

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def get_all(self) -> StorageResult[list[Record]]:
        return await self._call("get_all")

    async def get(self, tag_id: str) -> StorageResult[Record]:
        return await self._call("get", tag_id)

    async def create(self, data: Record) -> StorageResult[Record]:
        return await self._call("create", data)

    async def update(self, tag_id: str, patch: Record) -> StorageResult[Record]:
        return await self._call("update", tag_id, patch)

    async def delete(self, tag_id: str) -> StorageResult[Record]:
        return await self._call("delete", tag_id)

    async def get_collection(self) -> StorageResult[Blob]:
        return await self._call("get_collection")

    async def save_collection(self, blob: Blob) -> StorageResult[Blob]:
        return await self._call("save_collection", blob)

    async def close(self) -> None:
        await self.inner.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def build_tag(
    tag_id: str = "tag-loyal",
    name: str = "Loyal Customer",
    *,
    rules: QualificationRules | None = None,
    dependencies: tuple[str, ...] = (),
    is_custom: bool = True,
    **changes: Any,
) -> Tag:
    if rules is None:
        rules = QualificationRules(
            rule_type="property",
            conditions=(
                PropertyCondition(
                    object_name="contact", field="age", operator="greater_than", value=30
                ),
            ),
        )
    tag = Tag(
        id=tag_id,
        name=name,
        category="behavior",
        description="Members with a long and active relationship.",
        icon="Star",
        color="#1A2B3C",
        behavior="dynamic",
        is_permanent=False,
        qualification_rules=rules,
        dependencies=frozenset(dependencies),
        is_custom=is_custom,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    return tag.evolve(**changes) if changes else tag


@pytest.fixture()
def make_tag() -> Callable[..., Tag]:
    """Factory for valid custom tags; keyword arguments override attributes."""
    return build_tag


@pytest.fixture()
def data_model() -> DataModel:
    return default_data_model()


@pytest.fixture()
def sqlite_adapter(tmp_path: Path) -> Iterator[SQLiteAdapter]:
    adapter = SQLiteAdapter(tmp_path / ".tagloom" / "tagloom.db", "proj-1", clock=fixed_clock)
    yield adapter
    asyncio.run(adapter.close())


@pytest.fixture()
def spy_adapter(sqlite_adapter: SQLiteAdapter) -> SpyAdapter:
    return SpyAdapter(sqlite_adapter)


@pytest.fixture()
def repository(spy_adapter: SpyAdapter, data_model: DataModel) -> TagRepository:
    return TagRepository(spy_adapter, data_model=data_model, event_catalog=EventCatalog())
