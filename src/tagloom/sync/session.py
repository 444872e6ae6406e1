"""Optimistic synchronization of the working tag set with storage.

Every immediate mutation moves through
``IDLE -> OPTIMISTIC_APPLIED -> COMMITTED | ROLLED_BACK``: the store is
updated before the repository call suspends, and the touched tags are put
back exactly as they were if the call fails. Staged edits are persisted by
a debounced auto-save, which waits for mutations in flight to settle and
stays suspended while any loaded record is quarantined.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tagloom.catalog.library import library_closure
from tagloom.errors import NotFoundError
from tagloom.model.tag import utcnow
from tagloom.storage.adapter import StorageResult
from tagloom.sync.scheduler import DEFAULT_AUTOSAVE_DELAY, AsyncioScheduler, DebouncedTask
from tagloom.sync.store import (
    EditStaged,
    ErrorCleared,
    LoadFailed,
    LoadStarted,
    LoadSucceeded,
    QuarantineDiscarded,
    QuarantineRestored,
    RolledBack,
    Saved,
    SaveFailed,
    TagRemoved,
    TagStore,
    TagUpserted,
    position_of,
    reduce,
)
from tagloom.validation.engine import ValidationResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from tagloom.errors import AdapterError, CorruptionWarning, FieldError
    from tagloom.model.tag import Tag, TagCollection
    from tagloom.repository import TagRepository
    from tagloom.sync.scheduler import Scheduler
    from tagloom.sync.store import TagPosition, TagState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MutationPhase(enum.Enum):
    IDLE = "idle"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class MutationOutcome(Generic[T]):
    """Final phase of a mutation plus whatever the repository returned."""

    phase: MutationPhase
    data: T | None = None
    error: AdapterError | None = None
    validation_errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.phase is MutationPhase.COMMITTED


@dataclass(frozen=True)
class LoadOutcome:
    stale: bool = False
    error: AdapterError | None = None
    warnings: tuple[CorruptionWarning, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.stale and self.error is None


class TagSession:
    """Owns the :class:`TagStore` of one project and keeps it in sync with a repository.

    Parameters
    ----------
    repository:
        Repository of the project to work on.
    scheduler:
        Timer source for auto-save; defaults to the running event loop.
    autosave_delay:
        Seconds of inactivity after the last staged edit before auto-save runs.
    clock:
        Source of ``last_saved_at`` timestamps.
    """

    def __init__(
        self,
        repository: TagRepository,
        *,
        scheduler: Scheduler | None = None,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
        store: TagStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.store = store if store is not None else TagStore()
        self._clock = clock
        self._autosave = DebouncedTask(
            scheduler if scheduler is not None else AsyncioScheduler(),
            autosave_delay,
            self._run_autosave,
        )
        self._load_token = 0
        # Pre-mutation snapshot of every tag with a repository call in flight.
        self._inflight: dict[str, TagPosition] = {}

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> TagState:
        return self.store.state

    @property
    def autosave_enabled(self) -> bool:
        """False while any quarantined record is outstanding."""
        return not self.store.state.quarantined

    @property
    def autosave_pending(self) -> bool:
        return self._autosave.pending

    def _working_tags(self) -> list[Tag]:
        return self.store.state.tags

    def phase_of(self, tag_id: str) -> MutationPhase:
        """Phase of the mutation in flight on *tag_id*; IDLE when there is none."""
        if tag_id in self._inflight:
            return MutationPhase.OPTIMISTIC_APPLIED
        return MutationPhase.IDLE

    def _apply(self, snapshot: TagPosition, action: TagUpserted | TagRemoved) -> None:
        self._inflight.setdefault(snapshot.tag_id, snapshot)
        self.store.dispatch(action)

    def _confirmed_collection(self) -> TagCollection:
        """The working set with every in-flight mutation undone."""
        state = self.store.state
        for snapshot in reversed(list(self._inflight.values())):
            state = reduce(state, RolledBack(snapshot))
        return state.collection

    # -- loading -------------------------------------------------------------

    async def load(self, repository: TagRepository | None = None) -> LoadOutcome:
        """Load the project, optionally switching to another *repository*.

        Starting a new load makes any load still in flight stale; its result
        is discarded when it arrives.
        """
        if self._autosave.pending:
            await self._autosave.flush()
        target = repository if repository is not None else self.repository
        self._load_token += 1
        token = self._load_token
        self.store.dispatch(LoadStarted(target.project_id))

        result = await target.load()
        if token != self._load_token:
            logger.debug("Discarded stale load of project %s", target.project_id)
            return LoadOutcome(stale=True)

        self.repository = target
        if result.data is None:
            error = result.error or NotFoundError(f"project '{target.project_id}' could not be loaded")
            self.store.dispatch(LoadFailed(target.project_id, error))
            return LoadOutcome(error=error)

        self.store.dispatch(LoadSucceeded(target.project_id, result.data))
        if result.data.warnings:
            logger.warning(
                "Auto-save suspended for project %s: %s",
                target.project_id,
                ", ".join(f"{w.type} ({w.count})" for w in result.data.warnings),
            )
        return LoadOutcome(warnings=result.data.warnings)

    # -- immediate mutations -------------------------------------------------

    def _rollback(self, snapshots: Iterable[TagPosition]) -> None:
        for snapshot in snapshots:
            self.store.dispatch(RolledBack(snapshot))
            self._inflight.pop(snapshot.tag_id, None)
        self._rearm_autosave()

    def _commit(self, tag_id: str, tag: Tag | None = None) -> None:
        if tag is not None:
            self.store.dispatch(TagUpserted(tag))
        self._inflight.pop(tag_id, None)
        logger.debug("Committed mutation of %s", tag_id)
        self._rearm_autosave()

    def _settle(
        self, result: StorageResult[Any], snapshots: list[TagPosition], label: str
    ) -> MutationOutcome[Any] | None:
        """Roll back and build the failed outcome, or return None on success."""
        if result.ok:
            return None
        self._rollback(reversed(snapshots))
        logger.debug("Rolled back %s: %s", label, result.error or "validation failed")
        return MutationOutcome(
            phase=MutationPhase.ROLLED_BACK,
            error=result.error,
            validation_errors=result.validation_errors,
        )

    async def create_tag(self, tag: Tag) -> MutationOutcome[Tag]:
        """Show *tag* immediately, then create it; removed again if creation fails."""
        if not tag.id:
            tag = tag.evolve(id=str(uuid.uuid4()))
        tags = self._working_tags()
        snapshots = [position_of(self.store.state, tag.id)]
        self._apply(snapshots[0], TagUpserted(tag))

        result = await self.repository.create(tag, tags=tags)
        failed = self._settle(result, snapshots, f"create of {tag.id}")
        if failed is not None:
            return failed
        self._commit(tag.id, result.data)
        return MutationOutcome(phase=MutationPhase.COMMITTED, data=result.data)

    async def update_tag(self, tag_id: str, changes: dict[str, Any]) -> MutationOutcome[Tag]:
        """Apply attribute *changes* immediately, then persist them."""
        snapshot = position_of(self.store.state, tag_id)
        if snapshot.tag is None:
            return MutationOutcome(
                phase=MutationPhase.IDLE, error=NotFoundError(f"tag '{tag_id}' not found")
            )
        tags = self._working_tags()
        optimistic = snapshot.tag.evolve(**{k: v for k, v in changes.items() if k != "id"})
        self._apply(snapshot, TagUpserted(optimistic))

        result = await self.repository.update(tag_id, changes, tags=tags)
        failed = self._settle(result, [snapshot], f"update of {tag_id}")
        if failed is not None:
            return failed
        self._commit(tag_id, result.data)
        return MutationOutcome(phase=MutationPhase.COMMITTED, data=result.data)

    async def delete_tag(
        self, tag_id: str, *, detach_dependents: bool = False
    ) -> MutationOutcome[Tag]:
        """Remove the tag immediately, then delete it; restored if the delete is refused or fails.

        Dependents the repository already detached before a failure keep
        their stored form; only the rest are restored.
        """
        snapshot = position_of(self.store.state, tag_id)
        if snapshot.tag is None:
            return MutationOutcome(
                phase=MutationPhase.IDLE, error=NotFoundError(f"tag '{tag_id}' not found")
            )
        tags = self._working_tags()
        snapshots = [snapshot]
        self._apply(snapshot, TagRemoved(tag_id))
        if detach_dependents:
            for dependent in [t for t in tags if tag_id in t.dependencies and t.id != tag_id]:
                snapshots.append(position_of(self.store.state, dependent.id))
                detached = dependent.evolve(dependencies=dependent.dependencies - {tag_id})
                self._apply(snapshots[-1], TagUpserted(detached))

        result = await self.repository.delete(
            tag_id, detach_dependents=detach_dependents, tags=tags
        )
        stored = result.data.detached if result.data is not None else ()
        for dependent in stored:
            self._commit(dependent.id, dependent)
        if not result.ok:
            stored_ids = {t.id for t in stored}
            undone = [s for s in snapshots if s.tag_id not in stored_ids]
            failed = self._settle(result, undone, f"delete of {tag_id}")
            if failed is not None:
                return failed
        for done in snapshots:
            self._commit(done.tag_id)
        deleted = result.data.tag if result.data is not None else None
        return MutationOutcome(phase=MutationPhase.COMMITTED, data=deleted or snapshot.tag)

    async def add_from_library(self, tag_id: str) -> MutationOutcome[list[Tag]]:
        """Import a pre-built tag (and the library tags it needs) with optimistic display.

        Tags the repository managed to create stay committed even if a later
        one in the same import fails; only the uncreated ones are rolled back.
        """
        tags = self._working_tags()
        existing = {t.id for t in tags}
        incoming = [
            t for t in library_closure(tag_id, self.repository.library) if t.id not in existing
        ]
        snapshots = []
        for tag in incoming:
            snapshots.append(position_of(self.store.state, tag.id))
            self._apply(snapshots[-1], TagUpserted(tag))

        result = await self.repository.add_from_library(tag_id, tags=tags)
        created = list(result.data or [])
        for tag in created:
            self._commit(tag.id, tag)
        if result.ok:
            return MutationOutcome(phase=MutationPhase.COMMITTED, data=created)

        created_ids = {t.id for t in created}
        self._rollback(reversed([s for s in snapshots if s.tag_id not in created_ids]))
        return MutationOutcome(
            phase=MutationPhase.ROLLED_BACK,
            data=created,
            error=result.error,
            validation_errors=result.validation_errors,
        )

    # -- staged edits & saving -----------------------------------------------

    def stage_edit(self, tag: Tag) -> ValidationResult:
        """Record a local edit and (re)start the auto-save timer.

        The edit is kept even when invalid; the returned result lets the
        caller show field errors while the user keeps typing.
        """
        result = ValidationResult(errors=self.repository.validate(tag, self._working_tags()))
        self.store.dispatch(EditStaged(tag))
        if self.autosave_enabled:
            self._autosave.trigger()
        return result

    async def save(self) -> StorageResult[TagCollection]:
        """Persist the working set now, bypassing the timer.

        Quarantined records are written back untouched, so a manual save
        is allowed even while auto-save is suspended. Tags with a mutation
        still in flight are written as they were before it, and the state
        stays dirty until that mutation settles.
        """
        self._autosave.cancel()
        return await self._persist()

    async def _persist(self) -> StorageResult[TagCollection]:
        state = self.store.state
        collection = self._confirmed_collection()
        result = await self.repository.save_collection(collection, quarantined=state.quarantined)
        if result.ok:
            self.store.dispatch(Saved(collection=collection, saved_at=self._clock()))
            logger.info("Saved project %s (%d tags)", state.project_id, len(collection))
        else:
            self.store.dispatch(
                SaveFailed(error=result.error, validation_errors=result.validation_errors)
            )
            logger.warning("Save of project %s failed", state.project_id)
        return result

    async def _run_autosave(self) -> None:
        if not self.autosave_enabled:
            logger.info("Auto-save skipped: quarantined records must be resolved first")
            return
        if not self.store.state.dirty:
            return
        if self._inflight:
            logger.debug("Auto-save deferred: %d mutation(s) in flight", len(self._inflight))
            self._autosave.trigger()
            return
        logger.info("Auto-saving project %s", self.store.state.project_id)
        await self._persist()

    def _rearm_autosave(self) -> None:
        if (
            not self._inflight
            and self.store.state.dirty
            and self.autosave_enabled
            and not self._autosave.pending
        ):
            self._autosave.trigger()

    def clear_error(self) -> None:
        self.store.dispatch(ErrorCleared())

    # -- quarantine resolution -----------------------------------------------

    def discard_quarantined(self, indices: Iterable[int] | None = None) -> int:
        """Drop quarantined records for good (all of them by default).

        The records disappear from storage with the next save. Returns the
        number discarded.
        """
        count = len(self.store.state.quarantined)
        chosen = tuple(range(count)) if indices is None else tuple(i for i in indices if 0 <= i < count)
        if not chosen:
            return 0
        self.store.dispatch(QuarantineDiscarded(chosen))
        logger.info("Discarded %d quarantined record(s)", len(chosen))
        self._resume_autosave()
        return len(chosen)

    def restore_quarantined(self, index: int, fixed: Tag) -> ValidationResult:
        """Replace quarantined record *index* with a repaired tag, if it now validates."""
        quarantined = self.store.state.quarantined
        if not 0 <= index < len(quarantined):
            msg = f"no quarantined record at index {index}"
            raise IndexError(msg)
        result = ValidationResult(errors=self.repository.validate(fixed, self._working_tags()))
        if not result.valid:
            return result
        self.store.dispatch(QuarantineRestored(index, fixed))
        logger.info("Restored quarantined record %d as tag %s", index, fixed.id)
        self._resume_autosave()
        return result

    def _resume_autosave(self) -> None:
        if self.autosave_enabled and self.store.state.dirty:
            logger.info("Quarantine resolved, auto-save resumed")
            self._autosave.trigger()

    async def close(self) -> None:
        """Flush a pending auto-save, if allowed, and stop the timer."""
        if self._autosave.pending and self.autosave_enabled:
            await self._autosave.flush()
        self._autosave.cancel()
