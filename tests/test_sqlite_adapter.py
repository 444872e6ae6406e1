"""Tests for tagloom.storage.sqlite and the shared collection-blob CRUD."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest

from tagloom.errors import AdapterError, NotFoundError
from tagloom.model.serialization import tag_to_dict
from tagloom.storage.adapter import normalize_blob
from tagloom.storage.sqlite import (
    SCHEMA_VERSION,
    SQLiteAdapter,
    create_schema,
    get_meta,
    open_db,
    set_meta,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from tagloom.model.tag import Tag


class _Clock:
    """Clock that moves one minute per call."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def adapter(tmp_path: Path, clock: _Clock) -> SQLiteAdapter:
    return SQLiteAdapter(tmp_path / "db" / "tagloom.db", "proj-1", clock=clock)


class TestNormalizeBlob:
    def test_missing_sections_are_filled(self) -> None:
        assert normalize_blob({"custom": [{"id": "x"}]}) == {"library": [], "custom": [{"id": "x"}]}
        assert normalize_blob(None) == {"library": [], "custom": []}

    def test_bad_shape_is_permanent(self) -> None:
        with pytest.raises(AdapterError) as exc_info:
            normalize_blob({"library": "oops"})
        assert exc_info.value.retryable is False


class TestReads:
    @pytest.mark.asyncio()
    async def test_missing_project_reads_empty(self, adapter: SQLiteAdapter) -> None:
        result = await adapter.get_collection()
        assert result.ok
        assert result.data == {"library": [], "custom": []}
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_schema_version_recorded(self, adapter: SQLiteAdapter) -> None:
        await adapter.get_all()
        await adapter.close()
        conn = open_db(adapter.db_path)
        assert get_meta(conn, "schema_version") == SCHEMA_VERSION
        conn.close()

    @pytest.mark.asyncio()
    async def test_other_schema_version_is_refused(self, adapter: SQLiteAdapter) -> None:
        conn = open_db(adapter.db_path)
        create_schema(conn)
        set_meta(conn, "schema_version", "99")
        conn.close()

        result = await adapter.get_all()
        assert result.error is not None
        assert "schema version 99" in str(result.error)
        assert result.retryable is False
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_get_unknown_tag(self, adapter: SQLiteAdapter) -> None:
        result = await adapter.get("nope")
        assert isinstance(result.error, NotFoundError)
        assert result.retryable is False
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_corrupt_json_is_not_retryable(self, adapter: SQLiteAdapter) -> None:
        await adapter.get_all()
        conn = open_db(adapter.db_path)
        conn.execute(
            "INSERT INTO projects (id, tags, updated_at) VALUES (?, ?, ?)",
            ("proj-1", "{not json", "2026-01-01"),
        )
        conn.commit()
        conn.close()

        result = await adapter.get_collection()
        assert result.error is not None
        assert result.retryable is False
        await adapter.close()


class TestCreate:
    @pytest.mark.asyncio()
    async def test_server_owns_id_and_timestamps(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        record = tag_to_dict(make_tag())
        record["createdAt"] = "1999-01-01T00:00:00+00:00"
        result = await adapter.create(record)
        assert result.ok
        assert result.data is not None
        assert result.data["id"] == "tag-loyal"
        assert result.data["createdAt"] == "2026-01-01T00:01:00+00:00"
        assert result.data["updatedAt"] == result.data["createdAt"]
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_id_is_assigned_when_missing(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        record = tag_to_dict(make_tag())
        del record["id"]
        result = await adapter.create(record)
        assert result.data is not None
        assert len(result.data["id"]) == 36
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_records_land_in_their_section(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        await adapter.create(tag_to_dict(make_tag("lib-1", "Library Tag", is_custom=False)))
        await adapter.create(tag_to_dict(make_tag()))
        blob = (await adapter.get_collection()).data
        assert blob is not None
        assert [r["id"] for r in blob["library"]] == ["lib-1"]
        assert [r["id"] for r in blob["custom"]] == ["tag-loyal"]
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_duplicate_id(self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]) -> None:
        await adapter.create(tag_to_dict(make_tag()))
        result = await adapter.create(tag_to_dict(make_tag()))
        assert result.error is not None
        assert result.retryable is False
        assert len((await adapter.get_all()).data or []) == 1
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_persists_across_connections(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        await adapter.create(tag_to_dict(make_tag()))
        await adapter.close()

        reopened = SQLiteAdapter(adapter.db_path, "proj-1")
        result = await reopened.get("tag-loyal")
        assert result.data is not None
        assert result.data["name"] == "Loyal Customer"
        other = SQLiteAdapter(adapter.db_path, "proj-2")
        assert (await other.get_all()).data == []
        await reopened.close()
        await other.close()


class TestUpdate:
    @pytest.mark.asyncio()
    async def test_patch_merges_and_bumps_updated_at(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        created = (await adapter.create(tag_to_dict(make_tag()))).data
        assert created is not None
        result = await adapter.update("tag-loyal", {"name": "Very Loyal", "createdAt": "x"})
        assert result.data is not None
        assert result.data["name"] == "Very Loyal"
        assert result.data["createdAt"] == created["createdAt"]
        assert result.data["updatedAt"] > created["updatedAt"]
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_identical_update_is_idempotent(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        created = (await adapter.create(tag_to_dict(make_tag()))).data
        assert created is not None
        first = await adapter.update("tag-loyal", {"name": "Loyal Customer"})
        second = await adapter.update("tag-loyal", {"name": "Loyal Customer"})
        assert first.data == created
        assert second.data == created
        stored = (await adapter.get("tag-loyal")).data
        assert stored is not None
        assert stored["updatedAt"] == created["updatedAt"]
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_is_custom_change_moves_section(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        await adapter.create(tag_to_dict(make_tag()))
        await adapter.update("tag-loyal", {"isCustom": False})
        blob = (await adapter.get_collection()).data
        assert blob is not None
        assert blob["custom"] == []
        assert [r["id"] for r in blob["library"]] == ["tag-loyal"]
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_unknown_tag(self, adapter: SQLiteAdapter) -> None:
        result = await adapter.update("nope", {"name": "x"})
        assert isinstance(result.error, NotFoundError)
        await adapter.close()


class TestDeleteAndSave:
    @pytest.mark.asyncio()
    async def test_delete_returns_record(
        self, adapter: SQLiteAdapter, make_tag: Callable[..., Tag]
    ) -> None:
        await adapter.create(tag_to_dict(make_tag()))
        result = await adapter.delete("tag-loyal")
        assert result.data is not None
        assert result.data["id"] == "tag-loyal"
        assert (await adapter.get_all()).data == []
        missing = await adapter.delete("tag-loyal")
        assert isinstance(missing.error, NotFoundError)
        await adapter.close()

    @pytest.mark.asyncio()
    async def test_save_collection_replaces_blob(self, adapter: SQLiteAdapter) -> None:
        blob = {"library": [{"id": "a"}], "custom": [{"id": "b", "isCustom": True}]}
        result = await adapter.save_collection(blob)
        assert result.data == blob
        assert (await adapter.get_collection()).data == blob
        await adapter.close()
        conn = open_db(adapter.db_path)
        row = conn.execute("SELECT tags FROM projects WHERE id = ?", ("proj-1",)).fetchone()
        assert json.loads(row["tags"]) == blob
        conn.close()

    @pytest.mark.asyncio()
    async def test_save_collection_rejects_bad_shape(self, adapter: SQLiteAdapter) -> None:
        result = await adapter.save_collection({"library": {"id": "a"}})  # type: ignore[dict-item]
        assert result.error is not None
        assert result.retryable is False
        await adapter.close()
