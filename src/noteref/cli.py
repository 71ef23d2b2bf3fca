#!/usr/bin/env python3
"""
noteref: CLI for compiling notes with embedded note references

Usage:
    noteref compile journal.2020.01.01       # Expand references, print markdown
    noteref compile foo --dest html          # Portal-wrapped HTML
    noteref refs foo                         # List references and how they resolve
    noteref check                            # Report unresolved references
    noteref publish -o _site                 # Static HTML site
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as NOTEREF_VERSION


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Print an error (JSON with --json-errors) and exit.

    Args:
        ctx: Click context (must have obj["json_errors"] set).
        error: The exception that occurred.
        exit_code: Exit code to use (default 1).
    """
    from .errors import ErrorCode, NoteRefError, format_error_json

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, NoteRefError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            suggestion = error.details.get("suggestion") if error.details else None
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        if json_errors:
            click.echo(format_error_json(ErrorCode.PARSE_ERROR, str(error)), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


def format_json_error(code: str, message: str) -> str:
    return json.dumps({"error": {"code": code, "message": message}})


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    return "CLI_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# JSON Error Handling
# ─────────────────────────────────────────────────────────────────────────────


class JsonErrorGroup(click.Group):
    """Click group that formats usage errors as JSON when --json-errors is set."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ClickException as e:
            if ctx.params.get("json_errors"):
                code = get_error_code_for_exception(e)
                click.echo(format_json_error(code, e.format_message()), err=True)
                raise SystemExit(1)
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        # A misplaced --json-errors (after the subcommand) is moved to the front
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" in argv:
            argv = ["--json-errors"] + [a for a in argv if a != "--json-errors"]
        return super().main(argv, prog_name, complete_var, standalone_mode, **extra)


# ─────────────────────────────────────────────────────────────────────────────
# Workspace helpers
# ─────────────────────────────────────────────────────────────────────────────


def _load_workspace(ctx: click.Context):
    """Return (workspace config, note store) for the selected workspace."""
    from .config import get_workspace_root
    from .context import get_workspace_config, load_store

    workspace_opt = ctx.obj.get("workspace") if ctx.obj else None
    root = Path(workspace_opt) if workspace_opt else get_workspace_root()
    workspace = get_workspace_config(root.resolve())
    return workspace, load_store(workspace)


def _find_note(store, name: str, vault: str | None = None):
    """Look up a note by name (``vault/name`` accepted) or by id.

    Raises:
        NoteNotFound: If nothing matches.
        AmbiguousReference: If the name matches notes in several vaults.
    """
    from .errors import AmbiguousReference, NoteNotFound
    from .parser.refs import build_ref
    from .resolver import resolve

    ref = build_ref(name, name, syntax="link")
    if ref is None or ref.is_wildcard:
        raise NoteNotFound(f"Invalid note name: {name}", {"name": name})

    resolution = resolve(ref, store, vault)
    if resolution.status == "ambiguous":
        candidates = [f"{note.vault}/{note.fname}" for note in resolution.notes]
        raise AmbiguousReference(
            f"'{name}' matches notes in several vaults: {', '.join(candidates)}",
            candidates,
            {"suggestion": "Qualify the name with its vault, e.g. vault/name"},
        )
    if resolution.note is None:
        raise NoteNotFound(f"Note not found: {name}", {"name": name})
    return resolution.note


def _issue_dict(source: str, issue) -> dict:
    return {"source": source, **issue.to_dict()}


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=NOTEREF_VERSION, prog_name="noteref")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="NOTEREF_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False),
    help="Workspace root (default: nearest directory with a .kbconfig)",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool, workspace: str | None):
    """noteref: expand note references across vaults.

    \b
    Reference forms:
      ((ref: [[target]]))                  # Whole note
      ((ref: [[vault/target]]#start:#end)) # Heading range in a given vault
      ![[target#^block-id]]                # Embed syntax, block anchor
      ![[journal.2020.*]]                  # Every matching note

    \b
    For programmatic error handling:
      noteref --json-errors compile ...    # Errors output as JSON with error codes
    """
    from ._logging import configure_logging, set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet
    ctx.obj["workspace"] = workspace

    configure_logging()
    if quiet:
        set_quiet_mode(True)


@cli.command("compile")
@click.argument("note_name", metavar="NOTE")
@click.option(
    "--dest",
    "-d",
    type=click.Choice(["source", "standalone", "html", "preview"]),
    default="standalone",
    show_default=True,
    help="Output destination",
)
@click.option("--vault", help="Vault to look the note up in first")
@click.option("--insert-title", is_flag=True, help="Prefix each html/preview embed with its note title")
@click.option("--max-depth", type=click.IntRange(min=0), help="Maximum expansion depth")
@click.pass_context
def compile_cmd(
    ctx: click.Context,
    note_name: str,
    dest: str,
    vault: str | None,
    insert_title: bool,
    max_depth: int | None,
):
    """Compile a note, expanding every reference it contains.

    \b
    Examples:
      noteref compile foo                       # Standalone markdown
      noteref compile work/foo --dest html      # Portal-wrapped HTML
      noteref compile foo --max-depth 0         # Expand one level only
    """
    from .engine import Compiler
    from .errors import NoteRefError
    from .models import Destination

    try:
        workspace, store = _load_workspace(ctx)
        note = _find_note(store, note_name, vault)
    except NoteRefError as e:
        _handle_error(ctx, e)

    overrides: dict[str, Any] = {}
    if insert_title:
        overrides["insert_title_on_embed"] = True
    if max_depth is not None:
        overrides["max_expansion_depth"] = max_depth
    options = workspace.noteref.model_copy(update=overrides)

    result = Compiler(store, options).compile_note(note, Destination(dest))
    click.echo(result.output.rstrip("\n"))


@cli.command("refs")
@click.argument("note_name", metavar="NOTE")
@click.option("--vault", help="Vault to look the note up in first")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def refs(ctx: click.Context, note_name: str, vault: str | None, as_json: bool):
    """List the references in a note and what each one resolves to."""
    from .errors import NoteRefError
    from .parser.refs import extract_refs
    from .resolver import resolve

    try:
        workspace, store = _load_workspace(ctx)
        note = _find_note(store, note_name, vault)
    except NoteRefError as e:
        _handle_error(ctx, e)

    rows = []
    for ref in extract_refs(note.body, workspace.noteref.legacy_reference_syntax):
        resolution = resolve(ref, store, note.vault)
        rows.append(
            {
                "raw": ref.raw,
                "target": ref.qualified_target,
                "start": str(ref.anchor_start) if ref.anchor_start else None,
                "end": str(ref.anchor_end) if ref.anchor_end else None,
                "status": resolution.status,
                "matches": [n.id for n in resolution.notes],
            }
        )

    if as_json:
        output(rows, as_json=True)
        return

    if not rows:
        click.echo(f"No references in {note.id}")
        return
    for row in rows:
        matches = ", ".join(row["matches"]) or "-"
        click.echo(f"{row['raw']}  [{row['status']}]  {matches}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx: click.Context, as_json: bool):
    """Compile every note and report unresolved references.

    Exits with status 1 when any reference is missing, ambiguous or points
    at an anchor that does not exist.
    """
    from .engine import Compiler
    from .errors import NoteRefError
    from .models import Destination

    try:
        workspace, store = _load_workspace(ctx)
    except NoteRefError as e:
        _handle_error(ctx, e)

    compiler = Compiler(store, workspace.noteref)
    results = run_async(compiler.compile_notes(list(store.iter_notes()), Destination.STANDALONE))

    problems = []
    for result in results:
        assert result.note is not None
        problems.extend(_issue_dict(result.note.id, issue) for issue in result.report.unresolved)

    if as_json:
        output({"notes_checked": len(results), "unresolved": problems}, as_json=True)
    elif problems:
        click.echo(f"{len(problems)} unresolved reference(s):")
        for problem in problems:
            click.echo(f"  - {problem['source']}: {problem['message']}")
    else:
        click.echo(f"All references resolve ({len(results)} notes checked)")

    if problems:
        sys.exit(1)


@cli.command()
@click.option(
    "--output",
    "-o",
    "output_dir",
    type=click.Path(),
    default=None,
    help="Output directory (default: publish.output_dir from .kbconfig, or _site)",
)
@click.option(
    "--base-url",
    "-b",
    default=None,
    help="Base URL for links (e.g., /my-kb for subdirectory hosting)",
)
@click.option("--no-clean", is_flag=True, help="Don't remove output directory before build")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def publish(
    ctx: click.Context,
    output_dir: str | None,
    base_url: str | None,
    no_clean: bool,
    as_json: bool,
):
    """Generate a static HTML site with embedded notes rendered as portals.

    \b
    Examples:
      noteref publish                      # Uses .kbconfig settings
      noteref publish -o docs -b /my-kb    # Subdirectory hosting
    """
    from .errors import NoteRefError
    from .publisher import PublishConfig, SiteGenerator

    try:
        workspace, store = _load_workspace(ctx)
    except NoteRefError as e:
        _handle_error(ctx, e)

    resolved_output = Path(output_dir) if output_dir else workspace.root / workspace.publish_dir
    options = workspace.noteref
    if base_url is not None:
        options = options.model_copy(update={"base_url": base_url})

    config = PublishConfig(output_dir=resolved_output, clean=not no_clean)
    try:
        result = run_async(SiteGenerator(config, store, options).generate())
    except OSError as e:
        _handle_error(ctx, e)

    if as_json:
        output(
            {
                "pages_published": result.pages_published,
                "output_dir": result.output_dir,
                "broken_links": result.broken_links,
                "unresolved_refs": result.unresolved_refs,
            },
            as_json=True,
        )
        return

    click.echo(f"Published {result.pages_published} notes to {result.output_dir}")

    if result.broken_links:
        click.echo(f"\n⚠ Broken links ({len(result.broken_links)}):")
        for bl in result.broken_links[:10]:
            click.echo(f"  - {bl['source']} -> {bl['target']}")
        if len(result.broken_links) > 10:
            click.echo(f"  ... and {len(result.broken_links) - 10} more")

    if result.unresolved_refs:
        click.echo(f"\n⚠ Unresolved references ({len(result.unresolved_refs)}):")
        for ref in result.unresolved_refs[:10]:
            click.echo(f"  - {ref['source']}: {ref['message']}")
        if len(result.unresolved_refs) > 10:
            click.echo(f"  ... and {len(result.unresolved_refs) - 10} more")


def main():
    """Entry point for noteref CLI."""
    cli()


if __name__ == "__main__":
    main()
