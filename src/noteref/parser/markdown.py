"""Markdown note loading with YAML frontmatter support."""

from pathlib import Path

import frontmatter

from ..errors import NoteRefError
from ..models import Note


class ParseError(NoteRefError):
    """Raised when a note file cannot be parsed."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}", {"path": str(path)})


def title_from_fname(fname: str) -> str:
    """Derive a display title from the last dot-segment of a note name.

    ``project.meeting-notes`` -> ``Meeting notes``
    """
    last = fname.rsplit(".", 1)[-1].replace("-", " ").replace("_", " ").strip()
    if not last:
        return fname
    return last[0].upper() + last[1:]


def parse_note(path: Path, vault: str) -> Note:
    """Parse a markdown note with optional YAML frontmatter.

    Args:
        path: Path to the markdown file.
        vault: Name of the vault the file belongs to.

    Returns:
        The loaded Note. ``id`` and ``title`` come from frontmatter when
        declared, otherwise from the vault and file name.

    Raises:
        ParseError: If the file cannot be read or has invalid frontmatter.
    """
    if not path.exists():
        raise ParseError(path, "File does not exist")

    if not path.is_file():
        raise ParseError(path, "Path is not a file")

    try:
        post = frontmatter.load(str(path))
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e

    return note_from_post(post, fname=path.stem, vault=vault, path=str(path))


def parse_note_text(text: str, fname: str, vault: str) -> Note:
    """Build a Note from in-memory markdown (frontmatter optional)."""
    try:
        post = frontmatter.loads(text)
    except Exception as e:
        raise ParseError(Path(fname), f"Failed to parse frontmatter: {e}") from e
    return note_from_post(post, fname=fname, vault=vault)


def note_from_post(post: frontmatter.Post, fname: str, vault: str, path: str | None = None) -> Note:
    metadata = dict(post.metadata or {})

    # Bodies are stored with exactly one trailing newline
    body = post.content.strip("\n")
    if body:
        body += "\n"

    note_id = metadata.get("id")
    title = metadata.get("title")

    return Note(
        id=str(note_id) if note_id else f"{vault}.{fname}",
        fname=fname,
        vault=vault,
        title=str(title) if title else title_from_fname(fname),
        body=body,
        frontmatter=metadata,
        path=path,
    )


def split_lines(text: str) -> list[str]:
    """Split text on ``\\n`` only, keeping line endings.

    Matches markdown-it's line numbering (``str.splitlines`` also breaks on
    form feeds and unicode separators, which markdown-it does not).
    """
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines
