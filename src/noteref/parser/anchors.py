"""Anchor resolution and sub-range extraction for embedded notes.

Headings and block ids are located from markdown-it block tokens, so
anything that only looks like a heading inside a code fence is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

from markdown_it import MarkdownIt
from markdown_it.token import Token

from ..config import MAX_HEADING_LEVEL, OUTLINE_CACHE_SIZE
from ..errors import AnchorNotFound
from ..models import Anchor, Note, TextSpan
from .markdown import split_lines

# Block anchor at the end of a paragraph, list item or heading: "text ^block-id"
BLOCK_ANCHOR_PATTERN = re.compile(r"(?:^|\s)\^(?P<id>[\w-]+)\s*$")

_md = MarkdownIt("commonmark").enable("table")


def slugify(title: str) -> str:
    """Convert heading text to a URL-friendly slug (lowercase, hyphens, alphanumeric only)."""
    slug = title.lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    line: int  # 0-based body line of the heading
    end_line: int  # Exclusive; > line + 1 for setext headings
    atx: bool

    def matches(self, name: str) -> bool:
        wanted = name.strip().lower()
        if self.text.strip().lower() == wanted:
            return True
        slug = slugify(self.text)
        return bool(slug) and slug == slugify(name)


@dataclass(frozen=True)
class Outline:
    """Heading and block-id index of one note body."""

    headings: tuple[Heading, ...] = ()
    blocks: dict[str, tuple[int, int]] = field(default_factory=dict)
    line_count: int = 0

    def find_heading(self, name: str, after: int = -1) -> Heading | None:
        for heading in self.headings:
            if heading.line > after and heading.matches(name):
                return heading
        return None

    def section_end(self, heading: Heading) -> int:
        """First line of the next heading at the same or a higher level."""
        for other in self.headings:
            if other.line > heading.line and other.level <= heading.level:
                return other.line
        return self.line_count


def _parse_outline(tokens: list[Token], line_count: int) -> Outline:
    headings: list[Heading] = []
    blocks: dict[str, tuple[int, int]] = {}
    stack: list[Token] = []

    for i, token in enumerate(tokens):
        if token.nesting == 1:
            stack.append(token)
            if token.type == "heading_open" and token.map:
                inline = tokens[i + 1]
                headings.append(
                    Heading(
                        level=int(token.tag[1:]),
                        text=inline.content,
                        line=token.map[0],
                        end_line=token.map[1],
                        atx=token.markup.startswith("#"),
                    )
                )
        elif token.nesting == -1:
            if stack:
                stack.pop()
        elif token.type == "inline":
            match = BLOCK_ANCHOR_PATTERN.search(token.content)
            if not match or match.group("id") in blocks:
                continue
            owner = next((t for t in reversed(stack) if t.type == "list_item_open"), None)
            if owner is None and stack:
                owner = stack[-1]
            if owner is not None and owner.map:
                blocks[match.group("id")] = (owner.map[0], owner.map[1])

    return Outline(headings=tuple(headings), blocks=blocks, line_count=line_count)


@lru_cache(maxsize=OUTLINE_CACHE_SIZE)
def outline(body: str) -> Outline:
    """Build (and cache) the heading/block index for a note body."""
    return _parse_outline(_md.parse(body), len(split_lines(body)))


def _locate_start(doc: Outline, anchor: Anchor, note_id: str, skip: int = 0) -> tuple[int, int]:
    if anchor.kind == "wildcard":
        return 0, doc.line_count

    if anchor.kind == "heading":
        heading = doc.find_heading(anchor.value or "")
        if heading is None:
            raise AnchorNotFound(note_id, str(anchor))
        return heading.line, doc.section_end(heading)

    if anchor.kind == "block":
        block = doc.blocks.get(anchor.value or "")
        if block is None:
            raise AnchorNotFound(note_id, str(anchor))
        return block

    line = (anchor.line or 0) + skip
    if line <= skip or line > doc.line_count:
        raise AnchorNotFound(note_id, str(anchor))
    return line - 1, line


def _locate_end(doc: Outline, anchor: Anchor, first: int, note_id: str, skip: int = 0) -> int:
    if anchor.kind == "wildcard":
        return doc.line_count

    if anchor.kind == "heading":
        heading = doc.find_heading(anchor.value or "", after=first)
        if heading is None:
            raise AnchorNotFound(note_id, str(anchor))
        return heading.line

    if anchor.kind == "block":
        block = doc.blocks.get(anchor.value or "")
        if block is None or block[0] < first:
            raise AnchorNotFound(note_id, str(anchor))
        return block[1]

    line = (anchor.line or 0) + skip
    if line <= first or line <= skip or line > doc.line_count:
        raise AnchorNotFound(note_id, str(anchor))
    return line


def extract(
    note: Note,
    start: Anchor | None = None,
    end: Anchor | None = None,
    insert_title: bool = False,
) -> TextSpan:
    """Compute the part of a note's body to embed.

    Args:
        note: The resolved note.
        start: Where the span begins (heading, block id, line, or ``*``).
        end: Where it stops. A heading end is excluded; block and line ends
            are included; ``*`` runs to the end of the note.
        insert_title: Put a ``# <title>`` heading on top of the body before
            locating anchors, so the title can be addressed like any other
            heading. Line anchors still count body lines.

    Returns:
        The extracted span. Its line numbers count the title lines, if any.

    Raises:
        AnchorNotFound: If either anchor cannot be located in the note.
    """
    body = note.body
    skip = 0
    if insert_title:
        body = f"# {note.title}\n\n{body}"
        skip = 2
    lines = split_lines(body)

    if start is None and end is None:
        return TextSpan(note_id=note.id, start_line=0, end_line=len(lines), text=body)

    doc = outline(body)
    first, last = 0, doc.line_count
    if start is not None:
        first, last = _locate_start(doc, start, note.id, skip)
    if end is not None:
        last = _locate_end(doc, end, first, note.id, skip)

    if start is not None and start.kind == "block" and end is None:
        # List item maps can run over the blank line that follows them
        while last > first and not lines[last - 1].strip():
            last -= 1

    return TextSpan(note_id=note.id, start_line=first, end_line=last, text="".join(lines[first:last]))


def renumber_headings(text: str, parent_level: int) -> str:
    """Demote headings so the shallowest sits one level below ``parent_level``.

    Headings are never promoted and never go past level 6. Setext headings
    that need a new level are rewritten in ATX form.
    """
    tokens = _md.parse(text)
    headings = _parse_outline(tokens, 0).headings
    if not headings:
        return text

    shift = parent_level + 1 - min(h.level for h in headings)
    if shift <= 0:
        return text

    lines = split_lines(text)
    for heading in reversed(headings):
        level = min(heading.level + shift, MAX_HEADING_LEVEL)
        if heading.atx:
            lines[heading.line] = re.sub(
                r"^( {0,3})#{1,6}", lambda m: m.group(1) + "#" * level, lines[heading.line], count=1
            )
        else:
            content = " ".join(heading.text.split("\n"))
            lines[heading.line : heading.end_line] = [f"{'#' * level} {content}\n"]
    return "".join(lines)
