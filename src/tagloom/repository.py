"""Validation-gated repository: the only caller of storage adapter mutations.

Every mutation validates first. A rejected tag comes back as a
:class:`StorageResult` carrying ``validation_errors`` and the adapter is
never touched; otherwise the adapter's ``{data, error}`` passes through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from tagloom.catalog.library import library_closure, load_library
from tagloom.dependencies import find_dependents
from tagloom.errors import AdapterError, DependencyConflictError, NotFoundError
from tagloom.model.serialization import collection_to_blob, tag_from_dict, tag_patch, tag_to_dict
from tagloom.model.tag import TagCollection
from tagloom.storage.adapter import StorageResult
from tagloom.sync.corruption import partition_records
from tagloom.validation.engine import ValidationContext, validate_collection, validate_tag

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from tagloom.catalog.data_model import DataModel
    from tagloom.catalog.events import EventCatalog
    from tagloom.errors import FieldError
    from tagloom.model.tag import Tag
    from tagloom.storage.adapter import StorageAdapter
    from tagloom.sync.corruption import LoadedCollection, QuarantinedRecord

logger = logging.getLogger(__name__)


def _record_to_tag(record: Any) -> Tag:
    tag, errors = tag_from_dict(record)
    if tag is None:
        details = "; ".join(f"{e.field}: {e.message}" for e in errors)
        msg = f"storage returned a malformed tag record: {details}"
        raise AdapterError(msg, retryable=False)
    return tag


@dataclass(frozen=True)
class Deletion:
    """Outcome of :meth:`TagRepository.delete`.

    ``tag`` is the deleted tag (``None`` when nothing was deleted or the
    stored record could not be parsed); ``detached`` holds the dependents
    whose reference was removed and stored.
    """

    tag: Tag | None = None
    detached: tuple[Tag, ...] = ()


class TagRepository:
    """Tag CRUD for one project, validated against the data model and the project's tags.

    Parameters
    ----------
    adapter:
        Backing store for the project.
    data_model:
        Entities and fields property conditions may reference; ``None``
        disables referential field checks.
    event_catalog:
        Known event types; ``None`` disables event-type checks.
    library:
        Pre-built tags for :meth:`add_from_library`; defaults to the
        packaged library.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        data_model: DataModel | None = None,
        event_catalog: EventCatalog | None = None,
        library: list[Tag] | None = None,
    ) -> None:
        self.adapter = adapter
        self.data_model = data_model
        self.event_catalog = event_catalog
        self._library = library

    @property
    def project_id(self) -> str:
        return self.adapter.project_id

    @property
    def library(self) -> list[Tag]:
        if self._library is None:
            self._library = load_library()
        return self._library

    def context(self, tags: Iterable[Tag] = ()) -> ValidationContext:
        """Validation context over *tags* with this repository's data model and catalog."""
        return ValidationContext(
            data_model=self.data_model, tags=tuple(tags), event_catalog=self.event_catalog
        )

    def validate(self, tag: Tag, tags: Iterable[Tag]) -> tuple[FieldError, ...]:
        """Errors *tag* would have among *tags* (the tag itself is excluded by id)."""
        return validate_tag(tag, self.context(tags)).errors

    # -- reads ---------------------------------------------------------------

    async def load(self) -> StorageResult[LoadedCollection]:
        """Read the project blob and partition it into valid tags and quarantined records."""
        result = await self.adapter.get_collection()
        if result.error is not None or result.data is None:
            return StorageResult(error=result.error)
        return StorageResult(data=partition_records(result.data, self.context()))

    async def get_all(self) -> StorageResult[list[Tag]]:
        """Every tag that passes validation; quarantined records are left out."""
        result = await self.load()
        if result.data is None:
            return StorageResult(error=result.error)
        return StorageResult(data=result.data.collection.all())

    async def get(self, tag_id: str) -> StorageResult[Tag]:
        result = await self.adapter.get(tag_id)
        if result.error is not None:
            return StorageResult(error=result.error)
        try:
            return StorageResult(data=_record_to_tag(result.data))
        except AdapterError as exc:
            return StorageResult(error=exc)

    async def _current_tags(self, tags: Iterable[Tag] | None) -> StorageResult[list[Tag]]:
        if tags is not None:
            return StorageResult(data=list(tags))
        return await self.get_all()

    # -- mutations -----------------------------------------------------------

    async def create(self, tag: Tag, *, tags: Iterable[Tag] | None = None) -> StorageResult[Tag]:
        """Validate *tag* against the project's tags, then store it.

        *tags* is the caller's current working set; when omitted it is read
        from storage.
        """
        current = await self._current_tags(tags)
        if current.data is None:
            return StorageResult(error=current.error)
        errors = self.validate(tag, current.data)
        if errors:
            logger.info("Rejected new tag '%s': %d validation error(s)", tag.name, len(errors))
            return StorageResult(validation_errors=errors)

        result = await self.adapter.create(tag_to_dict(tag))
        if result.error is not None:
            return StorageResult(error=result.error)
        try:
            return StorageResult(data=_record_to_tag(result.data))
        except AdapterError as exc:
            return StorageResult(error=exc)

    async def update(
        self,
        tag_id: str,
        changes: dict[str, Any],
        *,
        tags: Iterable[Tag] | None = None,
    ) -> StorageResult[Tag]:
        """Apply attribute *changes* to the tag, validate the result, then store the difference.

        ``id`` cannot be changed. Updating with changes that leave the tag
        as it is performs no write.
        """
        current = await self._current_tags(tags)
        if current.data is None:
            return StorageResult(error=current.error)
        before = next((t for t in current.data if t.id == tag_id), None)
        if before is None:
            return StorageResult(error=NotFoundError(f"tag '{tag_id}' not found"))

        after = before.evolve(**{k: v for k, v in changes.items() if k != "id"})
        errors = self.validate(after, current.data)
        if errors:
            logger.info("Rejected update of tag %s: %d validation error(s)", tag_id, len(errors))
            return StorageResult(validation_errors=errors)

        result = await self.adapter.update(tag_id, tag_patch(before, after))
        if result.error is not None:
            return StorageResult(error=result.error)
        try:
            return StorageResult(data=_record_to_tag(result.data))
        except AdapterError as exc:
            return StorageResult(error=exc)

    async def delete(
        self,
        tag_id: str,
        *,
        detach_dependents: bool = False,
        tags: Iterable[Tag] | None = None,
    ) -> StorageResult[Deletion]:
        """Delete a tag nothing depends on.

        When other tags list *tag_id* in their dependencies the delete is
        refused with a :class:`DependencyConflictError`, unless
        *detach_dependents* is set: then the reference is removed from each
        dependent first. Each detach is its own write, so a failure part way
        still reports the dependents already detached in ``data.detached``.
        """
        current = await self._current_tags(tags)
        if current.data is None:
            return StorageResult(error=current.error)
        dependents = find_dependents(tag_id, current.data)

        if dependents and not detach_dependents:
            names = ", ".join(f"'{t.name}'" for t in dependents)
            conflict = DependencyConflictError(
                field="dependencies",
                message=f"{len(dependents)} tag(s) depend on this tag: {names}",
                dependents=tuple(t.id for t in dependents),
            )
            return StorageResult(validation_errors=(conflict,))

        detached: list[Tag] = []
        for dependent in dependents:
            remaining = sorted(dependent.dependencies - {tag_id})
            written = await self.adapter.update(dependent.id, {"dependencies": remaining})
            if written.error is not None:
                return StorageResult(data=Deletion(detached=tuple(detached)), error=written.error)
            try:
                detached.append(_record_to_tag(written.data))
            except AdapterError:
                detached.append(dependent.evolve(dependencies=frozenset(remaining)))
            logger.info("Detached %s from dependent tag %s", tag_id, dependent.id)

        result = await self.adapter.delete(tag_id)
        if result.error is not None:
            return StorageResult(data=Deletion(detached=tuple(detached)), error=result.error)
        try:
            deleted: Tag | None = _record_to_tag(result.data)
        except AdapterError:
            # The record is gone either way; a corrupt one simply cannot be echoed back.
            deleted = None
        return StorageResult(data=Deletion(tag=deleted, detached=tuple(detached)))

    async def save_collection(
        self,
        collection: TagCollection,
        *,
        quarantined: Sequence[QuarantinedRecord] = (),
    ) -> StorageResult[TagCollection]:
        """Replace the whole project blob in one write.

        Every tag is validated against the whole collection first. Raw
        *quarantined* records are written back untouched after the valid
        tags of their section, so a save never deletes them.
        """
        report = validate_collection(collection, self.context())
        if not report.valid:
            errors = tuple(
                replace(error, field=f"tags.{tag_id}.{error.field}")
                for tag_id, error in report.errors()
            )
            logger.info("Rejected collection save: %d validation error(s)", len(errors))
            return StorageResult(validation_errors=errors)

        blob = collection_to_blob(collection)
        for record in quarantined:
            blob[record.section].append(record.raw)
        result = await self.adapter.save_collection(blob)
        if result.error is not None:
            return StorageResult(error=result.error)
        return StorageResult(data=collection)

    async def add_from_library(
        self, tag_id: str, *, tags: Iterable[Tag] | None = None
    ) -> StorageResult[list[Tag]]:
        """Import a pre-built tag together with any library tags it depends on.

        Tags already in the project are skipped. Returns the tags created.
        """
        closure = library_closure(tag_id, self.library)
        if not closure:
            return StorageResult(error=NotFoundError(f"library tag '{tag_id}' not found"))

        current = await self._current_tags(tags)
        if current.data is None:
            return StorageResult(error=current.error)
        working = list(current.data)
        existing = {t.id for t in working}
        if tag_id in existing:
            msg = f"library tag '{tag_id}' is already in project '{self.project_id}'"
            return StorageResult(error=AdapterError(msg, retryable=False))

        created: list[Tag] = []
        for library_tag in closure:
            if library_tag.id in existing:
                continue
            result = await self.create(library_tag, tags=working)
            if result.data is None:
                return StorageResult(
                    data=created, error=result.error, validation_errors=result.validation_errors
                )
            working.append(result.data)
            created.append(result.data)
        logger.info("Added library tag %s (%d tag(s) created)", tag_id, len(created))
        return StorageResult(data=created)
