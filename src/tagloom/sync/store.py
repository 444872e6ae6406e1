"""Explicit state container for the working tag set: immutable state, actions, pure reducer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Union

from tagloom.model.tag import SECTIONS, TagCollection
from tagloom.sync.corruption import build_warnings, warning_type

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from tagloom.errors import AdapterError, CorruptionWarning, FieldError
    from tagloom.model.tag import Tag
    from tagloom.sync.corruption import LoadedCollection, QuarantinedRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TagState:
    """Everything the synchronization layer knows about the loaded project."""

    project_id: str | None = None
    collection: TagCollection = field(default_factory=TagCollection)
    quarantined: tuple[QuarantinedRecord, ...] = ()
    warnings: tuple[CorruptionWarning, ...] = ()
    loading: bool = False
    dirty: bool = False  # staged edits not yet persisted
    error: AdapterError | None = None  # last load/save failure, retryable banner
    save_errors: tuple[FieldError, ...] = ()  # validation errors of the last rejected save
    last_saved_at: datetime | None = None

    @property
    def tags(self) -> list[Tag]:
        return self.collection.all()

    def get(self, tag_id: str) -> Tag | None:
        return self.collection.get(tag_id)


@dataclass(frozen=True)
class TagPosition:
    """Where a tag sat before a mutation; ``tag`` is None if it did not exist."""

    tag_id: str
    tag: Tag | None = None
    section: str = ""
    index: int = -1


def position_of(state: TagState, tag_id: str) -> TagPosition:
    for section in SECTIONS:
        for index, tag in enumerate(state.collection.section(section)):
            if tag.id == tag_id:
                return TagPosition(tag_id=tag_id, tag=tag, section=section, index=index)
    return TagPosition(tag_id=tag_id)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadStarted:
    project_id: str


@dataclass(frozen=True)
class LoadSucceeded:
    project_id: str
    loaded: LoadedCollection


@dataclass(frozen=True)
class LoadFailed:
    project_id: str
    error: AdapterError


@dataclass(frozen=True)
class TagUpserted:
    """Insert *tag*, or replace the tag with the same id in place."""

    tag: Tag


@dataclass(frozen=True)
class TagRemoved:
    tag_id: str


@dataclass(frozen=True)
class RolledBack:
    """Put a tag back exactly where a snapshot says it was (or remove it if it did not exist)."""

    snapshot: TagPosition


@dataclass(frozen=True)
class EditStaged:
    """A local edit awaiting auto-save."""

    tag: Tag


@dataclass(frozen=True)
class Saved:
    collection: TagCollection  # what was written
    saved_at: datetime


@dataclass(frozen=True)
class SaveFailed:
    error: AdapterError | None = None
    validation_errors: tuple[FieldError, ...] = ()


@dataclass(frozen=True)
class ErrorCleared:
    pass


@dataclass(frozen=True)
class QuarantineDiscarded:
    indices: tuple[int, ...]


@dataclass(frozen=True)
class QuarantineRestored:
    index: int
    tag: Tag


Action = Union[
    LoadStarted,
    LoadSucceeded,
    LoadFailed,
    TagUpserted,
    TagRemoved,
    RolledBack,
    EditStaged,
    Saved,
    SaveFailed,
    ErrorCleared,
    QuarantineDiscarded,
    QuarantineRestored,
]

# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def _without(collection: TagCollection, tag_id: str) -> TagCollection:
    return TagCollection(
        library=tuple(t for t in collection.library if t.id != tag_id),
        custom=tuple(t for t in collection.custom if t.id != tag_id),
    )


def _insert(collection: TagCollection, tag: Tag, section: str, index: int) -> TagCollection:
    tags = list(collection.section(section))
    if index < 0 or index > len(tags):
        tags.append(tag)
    else:
        tags.insert(index, tag)
    return collection.with_section(section, tuple(tags))


def _upsert(collection: TagCollection, tag: Tag) -> TagCollection:
    for section in SECTIONS:
        tags = collection.section(section)
        for index, existing in enumerate(tags):
            if existing.id != tag.id:
                continue
            if section == tag.section:
                updated = (*tags[:index], tag, *tags[index + 1 :])
                return collection.with_section(section, updated)
            return _insert(_without(collection, tag.id), tag, tag.section, -1)
    return _insert(collection, tag, tag.section, -1)


def _rewarn(state: TagState, quarantined: tuple[QuarantinedRecord, ...]) -> tuple[CorruptionWarning, ...]:
    """Recount warnings after the quarantine changed, keeping original detection times."""
    detected = {w.type: w.detected_at for w in state.warnings}
    warnings = []
    for section in SECTIONS:
        kind = warning_type(section)
        if kind not in detected:
            continue
        warnings.extend(build_warnings([q for q in quarantined if q.section == section], detected[kind]))
    return tuple(warnings)


def reduce(state: TagState, action: Action) -> TagState:
    """Return the state that follows *action*. Never mutates *state*."""
    if isinstance(action, LoadStarted):
        return replace(state, project_id=action.project_id, loading=True, error=None)
    if isinstance(action, LoadSucceeded):
        loaded = action.loaded
        return TagState(
            project_id=action.project_id,
            collection=loaded.collection,
            quarantined=loaded.quarantined,
            warnings=loaded.warnings,
        )
    if isinstance(action, LoadFailed):
        return replace(state, project_id=action.project_id, loading=False, error=action.error)
    if isinstance(action, TagUpserted):
        return replace(state, collection=_upsert(state.collection, action.tag))
    if isinstance(action, TagRemoved):
        return replace(state, collection=_without(state.collection, action.tag_id))
    if isinstance(action, RolledBack):
        snap = action.snapshot
        collection = _without(state.collection, snap.tag_id)
        if snap.tag is not None:
            collection = _insert(collection, snap.tag, snap.section, snap.index)
        return replace(state, collection=collection)
    if isinstance(action, EditStaged):
        return replace(state, collection=_upsert(state.collection, action.tag), dirty=True)
    if isinstance(action, Saved):
        return replace(
            state,
            dirty=state.collection != action.collection,
            error=None,
            save_errors=(),
            last_saved_at=action.saved_at,
        )
    if isinstance(action, SaveFailed):
        return replace(state, error=action.error, save_errors=action.validation_errors)
    if isinstance(action, ErrorCleared):
        return replace(state, error=None, save_errors=())
    if isinstance(action, QuarantineDiscarded):
        drop = set(action.indices)
        quarantined = tuple(q for i, q in enumerate(state.quarantined) if i not in drop)
        return replace(
            state,
            quarantined=quarantined,
            warnings=_rewarn(state, quarantined),
            dirty=state.dirty or len(quarantined) != len(state.quarantined),
        )
    if isinstance(action, QuarantineRestored):
        quarantined = tuple(q for i, q in enumerate(state.quarantined) if i != action.index)
        return replace(
            state,
            collection=_upsert(state.collection, action.tag),
            quarantined=quarantined,
            warnings=_rewarn(state, quarantined),
            dirty=True,
        )
    msg = f"unknown action {type(action).__name__}"
    raise TypeError(msg)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TagStore:
    """Holds the current :class:`TagState`; the only place it changes."""

    def __init__(self, state: TagState | None = None) -> None:
        self._state = state if state is not None else TagState()
        self._listeners: list[Callable[[TagState, Action], None]] = []

    @property
    def state(self) -> TagState:
        return self._state

    def dispatch(self, action: Action) -> TagState:
        self._state = reduce(self._state, action)
        logger.debug("Dispatched %s", type(action).__name__)
        for listener in list(self._listeners):
            listener(self._state, action)
        return self._state

    def subscribe(self, listener: Callable[[TagState, Action], None]) -> Callable[[], None]:
        """Call *listener* after every dispatch; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
