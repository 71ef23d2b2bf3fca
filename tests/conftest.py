"""Shared test fixtures for the noteref test suite.

Design:
- make_note / make_store: in-memory notes and stores, no disk access
- workspace: isolated two-vault workspace in a temp directory
- cli_invoke: CliRunner bound to that workspace
- Module state (workspace cache, package logger) is reset around every test
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pytest
from click.testing import CliRunner

from noteref import _logging
from noteref.cli import cli
from noteref.context import clear_workspace_cache
from noteref.models import Note
from noteref.parser.markdown import parse_note_text
from noteref.store import NoteStore

# Body with a known outline, shared by extractor and engine tests.
#   line 0  "# Foo"           line 8  "- item one ^item-1"
#   line 4  "## Header1"      line 11 "## Header2"
OUTLINE_BODY = """\
# Foo

Intro text.

## Header1

First section. ^first-para

- item one ^item-1
- item two

## Header2

Second section.
"""

HEADER1_SECTION = """\
## Header1

First section. ^first-para

- item one ^item-1
- item two

"""


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def make_note(fname: str, body: str, vault: str = "main", **metadata) -> Note:
    """Build a note the way the loader would, with optional frontmatter.

    Usage in tests:
        from conftest import make_note
        note = make_note("foo", "foo body", title="Foo")
    """
    if metadata:
        header = "".join(f"{key}: {value}\n" for key, value in metadata.items())
        body = f"---\n{header}---\n\n{body}"
    return parse_note_text(body, fname=fname, vault=vault)


def make_store(notes: Iterable[Note], vaults: list[str] | None = None) -> NoteStore:
    return NoteStore(notes, vaults=vaults or ["main", "work"])


def write_note(vault_dir: Path, fname: str, content: str) -> Path:
    """Write a note file into a vault directory."""
    path = vault_dir / f"{fname}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _reset_logging() -> None:
    logger = logging.getLogger("noteref")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    _logging._quiet = False


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolate_module_state():
    """Fresh workspace cache and package logger for every test."""
    clear_workspace_cache()
    _reset_logging()
    yield
    clear_workspace_cache()
    _reset_logging()


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a two-vault workspace.

    Creates:
    - .kbconfig declaring vaults main (notes/) and work (work/)
    - notes/foo.md        title Foo, body "foo body"
    - notes/host.md       "# Host" plus a reference to foo
    - notes/shared.md     also present in work/
    - work/shared.md
    - work/_drafts/skip.md (ignored by the loader)
    """
    root = tmp_path / "ws"
    root.mkdir()
    (root / ".kbconfig").write_text(
        """vaults:
  - name: main
    path: notes
  - name: work
    path: work
noteref:
  max_expansion_depth: 8
publish:
  base_url: /kb
""",
        encoding="utf-8",
    )

    notes = root / "notes"
    work = root / "work"
    write_note(notes, "foo", "---\ntitle: Foo\n---\n\nfoo body\n")
    write_note(notes, "host", "# Host\n\n((ref: [[foo]]))\n")
    write_note(notes, "shared", "main shared\n")
    write_note(work, "shared", "work shared\n")
    write_note(work / "_drafts", "skip", "never loaded\n")
    return root


@pytest.fixture
def cli_invoke(runner: CliRunner, workspace: Path):
    """Helper for invoking the CLI against the workspace fixture.

    Usage:
        def test_compile(cli_invoke):
            result = cli_invoke(["compile", "host"])
            assert result.exit_code == 0
    """

    def _invoke(args: list[str], catch_exceptions: bool = False):
        # The package logger binds to the runner's stderr on first use
        _reset_logging()
        return runner.invoke(
            cli,
            ["--workspace", str(workspace), *args],
            catch_exceptions=catch_exceptions,
        )

    return _invoke


@pytest.fixture
def outline_note() -> Note:
    return make_note("doc", OUTLINE_BODY)
