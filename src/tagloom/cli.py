"""Tagloom CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from tagloom import __version__

if TYPE_CHECKING:
    from tagloom.config import TagloomConfig
    from tagloom.errors import AdapterError, FieldError
    from tagloom.model.tag import Tag
    from tagloom.repository import TagRepository

_PROJECT_OPTION = click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)
_JSON_OPTION = click.option("--json", "output_json", is_flag=True, help="Output as JSON.")


@click.group()
@click.version_option(version=__version__, prog_name="tagloom")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Tagloom - segmentation tag rules, validation and storage."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config_or_exit(project: Path | None) -> TagloomConfig:
    from tagloom.config import ConfigError, load_config

    project_root = project or Path.cwd()
    try:
        return load_config(project_root)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


def _repository_or_exit(config: TagloomConfig) -> TagRepository:
    from tagloom.config import ConfigError, build_repository

    try:
        return build_repository(config)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


def _read_tag_file(path: Path) -> Any:
    """Parse a tag record from JSON or YAML (YAML is a superset, one loader covers both)."""
    import yaml

    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        click.echo(f"Error: {path}: invalid JSON/YAML: {exc}", err=True)
        sys.exit(1)


def _echo_errors(errors: tuple[FieldError, ...] | list[FieldError]) -> None:
    for error in errors:
        click.echo(f"  [{error.kind.value}] {error.field}: {error.message}")


def _fail(error: AdapterError | None, validation_errors: tuple[FieldError, ...] = ()) -> None:
    """Report a failed storage call and exit 1."""
    if validation_errors:
        click.echo("Error: rejected by validation:", err=True)
        _echo_errors(validation_errors)
    if error is not None:
        hint = " (retryable)" if error.retryable else ""
        click.echo(f"Error: {error}{hint}", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@main.command()
@click.option("--project-id", default=None, help="Project id (default: directory name).")
@click.option(
    "--adapter",
    type=click.Choice(["sqlite", "remote"]),
    default="sqlite",
    show_default=True,
    help="Storage backend.",
)
@_PROJECT_OPTION
def init(*, project_id: str | None, adapter: str, project: Path | None) -> None:
    """Create .tagloom/config.yml for this project."""
    from tagloom.config import config_path, write_default_config

    project_root = project or Path.cwd()
    path = config_path(project_root)
    if path.exists():
        click.echo(f"Already initialized: {path}")
        return
    write_default_config(project_root, project_id or project_root.resolve().name, adapter=adapter)
    click.echo(f"Created {path}")
    if adapter == "remote":
        click.echo("Set storage.url and the TAGLOOM_API_KEY environment variable before use.")


@main.command()
@click.argument("tag_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_JSON_OPTION
@_PROJECT_OPTION
def validate(*, tag_file: Path, output_json: bool, project: Path | None) -> None:
    """Validate a tag record (JSON or YAML) against the project's data model.

    Uniqueness and dependencies are checked against the tags already in
    the project. Exit codes: 0 = valid, 1 = invalid, 2 = configuration error.
    """
    import anyio

    from tagloom.model.serialization import tag_from_dict
    from tagloom.summary import summarize_rules
    from tagloom.validation.complexity import analyze_complexity

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)
    tag, errors = tag_from_dict(_read_tag_file(tag_file))

    async def _run() -> list[Tag]:
        try:
            result = await repository.get_all()
        finally:
            await repository.adapter.close()
        if result.data is None:
            _fail(result.error)
        return result.data or []

    if tag is not None:
        existing = anyio.run(_run)
        errors = list(repository.validate(tag, existing))

    summary = ""
    if tag is not None:
        summary = summarize_rules(
            tag.qualification_rules, repository.event_catalog, repository.data_model
        )

    if output_json:
        data: dict[str, Any] = {
            "valid": tag is not None and not errors,
            "errors": [e.to_dict() for e in errors],
        }
        if tag is not None:
            data["summary"] = summary
            data["complexity"] = analyze_complexity(tag.qualification_rules).to_dict()
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
    else:
        if tag is not None:
            click.echo(f"{tag.name}: {summary}")
        if errors:
            click.echo(f"{len(errors)} error(s):")
            _echo_errors(errors)
        else:
            click.echo("Valid.")

    if tag is None or errors:
        sys.exit(1)


@main.command()
@click.argument("tag_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_JSON_OPTION
def complexity(*, tag_file: Path, output_json: bool) -> None:
    """Score how complex a tag's qualification rules are."""
    from tagloom.model.serialization import parse_rules
    from tagloom.validation.complexity import analyze_complexity

    raw = _read_tag_file(tag_file)
    rules_raw = raw.get("qualificationRules", raw) if isinstance(raw, dict) else raw
    rules, errors = parse_rules(rules_raw)
    if rules is None:
        click.echo("Error: malformed qualification rules:", err=True)
        _echo_errors(errors)
        sys.exit(1)

    analysis = analyze_complexity(rules)
    if output_json:
        click.echo(json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2))
        return
    click.echo(f"Complexity: {analysis.score}/100 ({analysis.level})")
    for warning in analysis.warnings:
        click.echo(f"  ! {warning}")


@main.command(name="list")
@_JSON_OPTION
@_PROJECT_OPTION
def list_tags(*, output_json: bool, project: Path | None) -> None:
    """List the project's tags."""
    import anyio

    from tagloom.model.serialization import tag_to_dict
    from tagloom.summary import summarize_rules

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)

    async def _run() -> list[Tag]:
        try:
            result = await repository.get_all()
        finally:
            await repository.adapter.close()
        if result.data is None:
            _fail(result.error)
        return result.data or []

    tags = anyio.run(_run)
    if output_json:
        click.echo(json.dumps([tag_to_dict(t) for t in tags], ensure_ascii=False, indent=2))
        return
    if not tags:
        click.echo("No tags.")
        return

    from rich.console import Console
    from rich.table import Table

    table = Table(title=f"Tags in {config.project}")
    table.add_column("id", style="cyan")
    table.add_column("name")
    table.add_column("category")
    table.add_column("rules")
    for tag in tags:
        table.add_row(
            tag.id,
            tag.name,
            tag.category,
            summarize_rules(
                tag.qualification_rules, repository.event_catalog, repository.data_model
            ),
        )
    Console().print(table)


@main.command()
@_JSON_OPTION
@_PROJECT_OPTION
def check(*, output_json: bool, project: Path | None) -> None:
    """Load the project and report corrupt records and dependency cycles.

    Exit codes: 0 = clean, 1 = corruption or cycles found, 2 = configuration error.
    """
    import anyio

    from tagloom.validation.cycles import find_all_cycles, format_cycle

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)

    async def _run() -> Any:
        try:
            result = await repository.load()
        finally:
            await repository.adapter.close()
        if result.data is None:
            _fail(result.error)
        return result.data

    loaded = anyio.run(_run)
    tags = loaded.collection.all()
    edges: dict[str, set[str]] = {t.id: set(t.dependencies) for t in tags}
    for record in loaded.quarantined:
        deps = record.raw.get("dependencies") if isinstance(record.raw, dict) else None
        if record.record_id and isinstance(deps, list):
            edges[record.record_id] = {str(d) for d in deps}
    cycles = find_all_cycles(edges)

    if output_json:
        data = {
            "tags": len(tags),
            "warnings": [w.to_dict() for w in loaded.warnings],
            "quarantined": [
                {
                    "section": q.section,
                    "position": q.position,
                    "id": q.record_id,
                    "errors": [e.to_dict() for e in q.errors],
                }
                for q in loaded.quarantined
            ],
            "cycles": [list(c) for c in cycles],
        }
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
    else:
        click.echo(f"{len(tags)} valid tag(s) in {config.project}")
        for warning in loaded.warnings:
            click.echo(f"Warning: {warning.count} {warning.type.replace('_', ' ')}")
        for record in loaded.quarantined:
            label = record.record_id or f"#{record.position}"
            click.echo(f"  [{record.section}] {label}")
            _echo_errors(record.errors)
        for cycle in cycles:
            click.echo(f"Cycle: {format_cycle(cycle)}")
        if not loaded.is_corrupt and not cycles:
            click.echo("No problems found.")

    if loaded.is_corrupt or cycles:
        sys.exit(1)


@main.command()
@_JSON_OPTION
def library(*, output_json: bool) -> None:
    """List the pre-built tag library."""
    from tagloom.catalog.data_model import default_data_model
    from tagloom.catalog.events import EventCatalog
    from tagloom.catalog.library import load_library
    from tagloom.model.serialization import tag_to_dict
    from tagloom.summary import summarize_rules

    tags = load_library()
    if output_json:
        click.echo(json.dumps([tag_to_dict(t) for t in tags], ensure_ascii=False, indent=2))
        return

    from rich.console import Console
    from rich.table import Table

    catalog = EventCatalog()
    data_model = default_data_model()
    table = Table(title="Tag Library", show_header=False, box=None, padding=(0, 1))
    table.add_column("id", style="cyan")
    table.add_column("category", style="magenta")
    table.add_column("rules")
    for tag in tags:
        deps = f" (needs {', '.join(sorted(tag.dependencies))})" if tag.dependencies else ""
        rules = summarize_rules(tag.qualification_rules, catalog, data_model)
        table.add_row(tag.id, tag.category, rules + deps)
    Console().print(table)


@main.command()
@click.argument("tag_id")
@_PROJECT_OPTION
def add(*, tag_id: str, project: Path | None) -> None:
    """Add a library tag (and the library tags it depends on) to the project."""
    import anyio

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)

    async def _run() -> Any:
        try:
            return await repository.add_from_library(tag_id)
        finally:
            await repository.adapter.close()

    result = anyio.run(_run)
    for tag in result.data or []:
        click.echo(f"Added {tag.id} ({tag.name})")
    if not result.ok:
        _fail(result.error, result.validation_errors)


@main.command()
@click.argument("tag_id")
@click.option("--detach", is_flag=True, help="Remove the tag from its dependents' dependencies.")
@_PROJECT_OPTION
def delete(*, tag_id: str, detach: bool, project: Path | None) -> None:
    """Delete a tag. Refused while other tags depend on it, unless --detach."""
    import anyio

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)

    async def _run() -> Any:
        try:
            return await repository.delete(tag_id, detach_dependents=detach)
        finally:
            await repository.adapter.close()

    result = anyio.run(_run)
    if not result.ok:
        if result.validation_errors and not detach:
            click.echo("Use --detach to remove the dependency from those tags.", err=True)
        _fail(result.error, result.validation_errors)
    click.echo(f"Deleted {tag_id}")


@main.command()
@click.argument("tag_id")
@_JSON_OPTION
@_PROJECT_OPTION
def deps(*, tag_id: str, output_json: bool, project: Path | None) -> None:
    """Show what a tag depends on and which tags depend on it."""
    import anyio

    from tagloom.dependencies import check_tag_dependencies

    config = _load_config_or_exit(project)
    repository = _repository_or_exit(config)

    async def _run() -> list[Tag]:
        try:
            result = await repository.get_all()
        finally:
            await repository.adapter.close()
        if result.data is None:
            _fail(result.error)
        return result.data or []

    tags = anyio.run(_run)
    if not any(t.id == tag_id for t in tags):
        click.echo(f"Error: tag '{tag_id}' not found", err=True)
        sys.exit(1)

    report = check_tag_dependencies(tag_id, tags)
    if output_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        return
    click.echo(f"{tag_id}")
    click.echo(f"  requires:    {', '.join(t.id for t in report.requires) or '-'}")
    click.echo(f"  required by: {', '.join(t.id for t in report.required_by) or '-'}")
    if report.missing:
        click.echo(f"  missing:     {', '.join(report.missing)}")
