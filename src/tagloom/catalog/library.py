"""Static catalog of pre-built tags shipped with the package."""

from __future__ import annotations

import logging
from importlib import resources

import yaml

from tagloom.model.serialization import tag_from_dict
from tagloom.model.tag import Tag

logger = logging.getLogger(__name__)

LIBRARY_RESOURCE = "library.yml"


def load_library(text: str | None = None) -> list[Tag]:
    """Parse the pre-built tag library.

    *text* defaults to the packaged ``library.yml``. Every record must parse;
    a broken shipped library is a packaging bug, so ``ValueError`` is raised
    listing the offending record.
    """
    if text is None:
        text = resources.files("tagloom.catalog").joinpath(LIBRARY_RESOURCE).read_text(
            encoding="utf-8"
        )
    data = yaml.safe_load(text) or {}
    records = data.get("tags", []) if isinstance(data, dict) else None
    if not isinstance(records, list):
        msg = "tag library must be a mapping with a 'tags' list"
        raise ValueError(msg)

    tags: list[Tag] = []
    for index, record in enumerate(records):
        tag, errors = tag_from_dict(record)
        if tag is None:
            details = "; ".join(f"{e.field}: {e.message}" for e in errors)
            msg = f"tag library entry {index} is invalid: {details}"
            raise ValueError(msg)
        # Library tags are never custom, whatever the record says.
        tags.append(tag.evolve(is_custom=False))
    logger.debug("Loaded %d library tags", len(tags))
    return tags


def find_library_tag(tag_id: str, library: list[Tag] | None = None) -> Tag | None:
    """Look up a pre-built tag by id."""
    for tag in library if library is not None else load_library():
        if tag.id == tag_id:
            return tag
    return None


def library_closure(tag_id: str, library: list[Tag] | None = None) -> list[Tag]:
    """Return the library tag *tag_id* preceded by every library tag it depends on.

    Dependencies come first so that importing the list in order never
    references a tag that does not exist yet. Unknown ids yield ``[]``.
    """
    tags = library if library is not None else load_library()
    by_id = {t.id: t for t in tags}
    ordered: list[Tag] = []
    seen: set[str] = set()

    def visit(current: str) -> None:
        if current in seen or current not in by_id:
            return
        seen.add(current)
        for dep in sorted(by_id[current].dependencies):
            visit(dep)
        ordered.append(by_id[current])

    visit(tag_id)
    return ordered
