"""Corruption containment: split a loaded blob into usable tags and quarantined records.

Each record is judged on its own, so one corrupt entry never fails the
whole load. Quarantined records keep their raw form untouched so they can
be written back, repaired, or discarded deliberately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tagloom.errors import CorruptionWarning, StructuralValidationError
from tagloom.model.serialization import tag_from_dict
from tagloom.model.tag import SECTIONS, TagCollection, utcnow
from tagloom.validation.engine import validate_tag

if TYPE_CHECKING:
    from datetime import datetime

    from tagloom.errors import FieldError
    from tagloom.model.tag import Tag
    from tagloom.storage.adapter import Blob
    from tagloom.validation.engine import ValidationContext

logger = logging.getLogger(__name__)


def warning_type(section: str) -> str:
    """``corrupt_library_tags`` / ``corrupt_custom_tags``."""
    return f"corrupt_{section}_tags"


@dataclass(frozen=True)
class QuarantinedRecord:
    """A persisted record that failed validation on load."""

    section: str
    position: int  # index within its section in the stored blob
    raw: Any
    errors: tuple[FieldError, ...] = ()

    @property
    def record_id(self) -> str | None:
        if isinstance(self.raw, dict) and isinstance(self.raw.get("id"), str):
            return self.raw["id"]
        return None


@dataclass(frozen=True)
class LoadedCollection:
    """The working set plus whatever had to be set aside."""

    collection: TagCollection
    quarantined: tuple[QuarantinedRecord, ...] = ()
    warnings: tuple[CorruptionWarning, ...] = ()

    @property
    def is_corrupt(self) -> bool:
        return bool(self.quarantined)


def build_warnings(
    quarantined: tuple[QuarantinedRecord, ...] | list[QuarantinedRecord],
    detected_at: datetime,
) -> tuple[CorruptionWarning, ...]:
    """One warning per section that holds quarantined records."""
    warnings: list[CorruptionWarning] = []
    for section in SECTIONS:
        count = sum(1 for q in quarantined if q.section == section)
        if count:
            warnings.append(
                CorruptionWarning(type=warning_type(section), count=count, detected_at=detected_at)
            )
    return tuple(warnings)


def partition_records(
    blob: Blob,
    context: ValidationContext,
    *,
    detected_at: datetime | None = None,
) -> LoadedCollection:
    """Parse and validate every record of *blob* independently.

    A record is quarantined when it does not parse into a tag, fails
    validation against the other surviving tags, or sits in the section that
    contradicts its ``isCustom`` flag.
    """
    parsed: list[tuple[str, int, Any, Tag]] = []
    quarantined: list[QuarantinedRecord] = []

    for section in SECTIONS:
        for position, raw in enumerate(blob.get(section, [])):
            tag, errors = tag_from_dict(raw)
            if tag is None:
                quarantined.append(QuarantinedRecord(section, position, raw, tuple(errors)))
                continue
            if tag.section != section:
                mismatch = StructuralValidationError(
                    field="isCustom",
                    message=f"record stored under '{section}' but isCustom places it in '{tag.section}'",
                )
                quarantined.append(QuarantinedRecord(section, position, raw, (mismatch,)))
                continue
            parsed.append((section, position, raw, tag))

    # Dropping a record can break the tags that depend on it, so validate
    # again until no further record falls out.
    candidates = parsed
    while True:
        closure = context.with_tags(t for _, _, _, t in candidates)
        survivors: list[tuple[str, int, Any, Tag]] = []
        for section, position, raw, tag in candidates:
            result = validate_tag(tag, closure)
            if result.valid:
                survivors.append((section, position, raw, tag))
            else:
                quarantined.append(QuarantinedRecord(section, position, raw, result.errors))
        if len(survivors) == len(candidates):
            break
        candidates = survivors
    valid = [tag for _, _, _, tag in candidates]

    quarantined.sort(key=lambda q: (SECTIONS.index(q.section), q.position))
    for record in quarantined:
        logger.warning(
            "Quarantined %s record %s (position %d): %s",
            record.section,
            record.record_id or "<no id>",
            record.position,
            "; ".join(f"{e.field}: {e.message}" for e in record.errors),
        )

    when = detected_at if detected_at is not None else utcnow()
    return LoadedCollection(
        collection=TagCollection.from_tags(valid),
        quarantined=tuple(quarantined),
        warnings=build_warnings(quarantined, when),
    )
