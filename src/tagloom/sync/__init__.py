"""Sync domain: state container, optimistic session, auto-save, corruption containment."""

from tagloom.sync.corruption import (
    LoadedCollection,
    QuarantinedRecord,
    partition_records,
)
from tagloom.sync.scheduler import AsyncioScheduler, DebouncedTask, Scheduler
from tagloom.sync.session import LoadOutcome, MutationOutcome, MutationPhase, TagSession
from tagloom.sync.store import TagState, TagStore, reduce

__all__ = [
    "AsyncioScheduler",
    "DebouncedTask",
    "LoadOutcome",
    "LoadedCollection",
    "MutationOutcome",
    "MutationPhase",
    "QuarantinedRecord",
    "Scheduler",
    "TagSession",
    "TagState",
    "TagStore",
    "partition_records",
    "reduce",
]
