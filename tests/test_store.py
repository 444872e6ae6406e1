"""Tests for tagloom.sync.store (pure reducer and store)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from conftest import FIXED_NOW

from tagloom.errors import AdapterError, CorruptionWarning
from tagloom.model.tag import TagCollection
from tagloom.sync.corruption import LoadedCollection, QuarantinedRecord
from tagloom.sync.store import (
    EditStaged,
    ErrorCleared,
    LoadStarted,
    LoadSucceeded,
    QuarantineDiscarded,
    RolledBack,
    Saved,
    SaveFailed,
    TagRemoved,
    TagState,
    TagStore,
    TagUpserted,
    position_of,
    reduce,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from tagloom.model.tag import Tag


def _state(*tags: Tag, **kwargs: Any) -> TagState:
    return TagState(project_id="proj-1", collection=TagCollection.from_tags(list(tags)), **kwargs)


def _ids(state: TagState) -> list[str]:
    return [t.id for t in state.tags]


class TestTagMutations:
    def test_upsert_appends_to_its_section(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(), TagUpserted(make_tag("lib", "Library", is_custom=False)))
        state = reduce(state, TagUpserted(make_tag()))
        assert [t.id for t in state.collection.library] == ["lib"]
        assert [t.id for t in state.collection.custom] == ["tag-loyal"]

    def test_upsert_replaces_in_place(self, make_tag: Callable[..., Tag]) -> None:
        state = _state(make_tag("A", "Tag A"), make_tag("B", "Tag B"), make_tag("C", "Tag C"))
        state = reduce(state, TagUpserted(make_tag("B", "Renamed")))
        assert _ids(state) == ["A", "B", "C"]
        tag = state.get("B")
        assert tag is not None
        assert tag.name == "Renamed"

    def test_upsert_moves_tag_when_custom_flag_changes(self, make_tag: Callable[..., Tag]) -> None:
        state = _state(make_tag())
        state = reduce(state, TagUpserted(make_tag(is_custom=False)))
        assert state.collection.custom == ()
        assert [t.id for t in state.collection.library] == ["tag-loyal"]

    def test_remove(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(make_tag("A", "Tag A"), make_tag("B", "Tag B")), TagRemoved("A"))
        assert _ids(state) == ["B"]

    def test_original_state_is_untouched(self, make_tag: Callable[..., Tag]) -> None:
        original = _state(make_tag())
        reduce(original, TagRemoved("tag-loyal"))
        assert _ids(original) == ["tag-loyal"]


class TestRollback:
    def test_restores_original_position(self, make_tag: Callable[..., Tag]) -> None:
        state = _state(make_tag("A", "Tag A"), make_tag("B", "Tag B"), make_tag("C", "Tag C"))
        snapshot = position_of(state, "B")
        assert (snapshot.section, snapshot.index) == ("custom", 1)

        changed = reduce(state, TagRemoved("B"))
        assert reduce(changed, RolledBack(snapshot)) == state

    def test_removes_tag_that_did_not_exist(self, make_tag: Callable[..., Tag]) -> None:
        state = _state()
        snapshot = position_of(state, "new")
        assert snapshot.tag is None
        changed = reduce(state, TagUpserted(make_tag("new", "New Tag")))
        assert reduce(changed, RolledBack(snapshot)) == state


class TestSaving:
    def test_staged_edit_marks_dirty(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(), EditStaged(make_tag()))
        assert state.dirty is True

    def test_save_of_current_collection_clears_dirty(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(), EditStaged(make_tag()))
        saved = reduce(state, Saved(collection=state.collection, saved_at=FIXED_NOW))
        assert saved.dirty is False
        assert saved.last_saved_at == FIXED_NOW

    def test_edit_during_save_stays_dirty(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(), EditStaged(make_tag()))
        written = state.collection
        state = reduce(state, EditStaged(make_tag(name="Loyal Members")))
        assert reduce(state, Saved(collection=written, saved_at=FIXED_NOW)).dirty is True

    def test_failure_and_clear(self) -> None:
        state = reduce(_state(), SaveFailed(error=AdapterError("offline")))
        assert str(state.error) == "offline"
        assert reduce(state, ErrorCleared()).error is None


class TestLoading:
    def test_load_replaces_everything(self, make_tag: Callable[..., Tag]) -> None:
        state = reduce(_state(make_tag("old", "Old Tag"), dirty=True), LoadStarted("proj-2"))
        assert state.loading is True
        loaded = LoadedCollection(collection=TagCollection(custom=(make_tag(),)))
        state = reduce(state, LoadSucceeded("proj-2", loaded))
        assert state.project_id == "proj-2"
        assert _ids(state) == ["tag-loyal"]
        assert state.dirty is False
        assert state.loading is False

    def test_discarding_quarantine_recounts_warnings(self) -> None:
        quarantined = (
            QuarantinedRecord("custom", 0, {"id": "x"}),
            QuarantinedRecord("custom", 1, {"id": "y"}),
        )
        warning = CorruptionWarning(type="corrupt_custom_tags", count=2, detected_at=FIXED_NOW)
        state = _state(quarantined=quarantined, warnings=(warning,))

        state = reduce(state, QuarantineDiscarded((0,)))
        assert [q.record_id for q in state.quarantined] == ["y"]
        assert [(w.count, w.detected_at) for w in state.warnings] == [(1, FIXED_NOW)]
        assert state.dirty is True

        state = reduce(state, QuarantineDiscarded((0,)))
        assert state.warnings == ()


class TestStore:
    def test_unknown_action(self) -> None:
        with pytest.raises(TypeError, match="unknown action"):
            reduce(TagState(), object())  # type: ignore[arg-type]

    def test_subscribe_and_unsubscribe(self, make_tag: Callable[..., Tag]) -> None:
        store = TagStore()
        seen: list[str] = []
        unsubscribe = store.subscribe(lambda state, action: seen.append(type(action).__name__))

        store.dispatch(TagUpserted(make_tag()))
        unsubscribe()
        store.dispatch(TagRemoved("tag-loyal"))

        assert seen == ["TagUpserted"]
        assert store.state.tags == []
