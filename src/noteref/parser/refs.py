"""Note reference syntax: micro-parser, markdown-it rules and scanner.

Two token forms are recognized:

    ((ref: [[target]]))                  legacy form, anchors outside the brackets
    ((ref: [[target]]#start:#end))
    ![[target]]                          embed form, anchors inside the brackets
    ![[target#start:#end]]

``target`` may carry a vault qualifier (``vault/name``) and glob wildcards
(``journal.*``). Anchors are ``#*`` (to end of note), ``#^block-id``,
``#L12`` (body line) or a heading name.

Scanning is delegated to markdown-it so that code spans and code blocks are
skipped by the host tokenizer; malformed tokens are left as plain text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator

from markdown_it import MarkdownIt
from markdown_it.renderer import RendererHTML
from markdown_it.rules_inline import StateInline
from markdown_it.token import Token

from ..models import Anchor, NoteRef
from .markdown import split_lines

LEGACY_PATTERN = re.compile(
    r"\(\(ref:[ \t]*\[\[(?P<target>[^\[\]\n]+)\]\](?P<anchors>[^()\n]*)\)\)"
)
EMBED_PATTERN = re.compile(r"!\[\[(?P<body>[^\[\]\n]+)\]\]")
WIKILINK_PATTERN = re.compile(r"\[\[(?P<target>[^\[\]\n|]+)(?:\|(?P<label>[^\[\]\n]+))?\]\]")

ANCHORS_PATTERN = re.compile(r"^#(?P<start>[^#:]+)(?::#(?P<end>[^#:]+))?$")
BLOCK_ID_PATTERN = re.compile(r"^\^(?P<id>[\w-]+)$")
LINE_PATTERN = re.compile(r"^L(?P<line>\d+)$")

# Same terminators as markdown-it's text rule, plus "(" so the legacy
# reference rule gets a chance to run at every opening parenthesis.
_TEXT_STOP = re.compile(r"[\n!#$%&*+\-:<=>@\[\\\]^_`{}~(]")

# Block containers whose prefix must be repeated on embedded continuation lines
_CONTAINERS = ("blockquote_open", "list_item_open")
_LIST_MARKER = re.compile(r"[-+*]|\d{1,9}[.)]")


@dataclass(frozen=True)
class TextRun:
    """A run of source text between references."""

    text: str


def parse_anchor(value: str) -> Anchor | None:
    """Parse a single anchor expression (without its leading ``#``)."""
    value = value.strip()
    if not value:
        return None
    if value == "*":
        return Anchor(kind="wildcard")
    block = BLOCK_ID_PATTERN.match(value)
    if block:
        return Anchor(kind="block", value=block.group("id"))
    line = LINE_PATTERN.match(value)
    if line:
        return Anchor(kind="line", line=int(line.group("line")))
    return Anchor(kind="heading", value=value)


def normalize_target(target: str) -> str:
    """Normalize a reference target.

    - Strips whitespace
    - Removes .md extension
    - Normalizes path separators
    """
    target = target.strip()
    if target.endswith(".md"):
        target = target[:-3]
    return target.replace("\\", "/").strip("/")


def build_ref(raw: str, target: str, anchors: str = "", syntax: str = "legacy") -> NoteRef | None:
    target = normalize_target(target.split("|", 1)[0])
    if not target:
        return None

    vault: str | None = None
    if "/" in target:
        vault, target = target.split("/", 1)
        if not vault or not target:
            return None

    start = end = None
    anchors = anchors.strip()
    if anchors:
        match = ANCHORS_PATTERN.match(anchors)
        if not match:
            return None
        start = parse_anchor(match.group("start"))
        if match.group("end") is not None:
            end = parse_anchor(match.group("end"))
            if end is None:
                return None
        if start is None:
            return None

    return NoteRef(
        raw=raw,
        target=target,
        vault=vault,
        anchor_start=start,
        anchor_end=end,
        is_wildcard="*" in target,
        syntax=syntax,
    )


def parse_note_ref(raw: str, legacy: bool = True) -> NoteRef | None:
    """Parse one complete reference token.

    Returns None (never raises) when ``raw`` is not a well-formed token, so
    callers can fall back to emitting the original text.
    """
    if legacy:
        match = LEGACY_PATTERN.fullmatch(raw)
        if match:
            return build_ref(raw, match.group("target"), match.group("anchors"), "legacy")

    match = EMBED_PATTERN.fullmatch(raw)
    if match:
        target, sep, anchors = match.group("body").partition("#")
        return build_ref(raw, target, sep + anchors, "embed")

    return None


# ─────────────────────────────────────────────────────────────────────────────
# markdown-it rules
# ─────────────────────────────────────────────────────────────────────────────


def _text_rule(state: StateInline, silent: bool) -> bool:
    match = _TEXT_STOP.search(state.src, state.pos, state.posMax)
    end = match.start() if match else state.posMax
    if end == state.pos:
        return False
    if not silent:
        state.pending += state.src[state.pos : end]
    state.pos = end
    return True


def _push_ref(state: StateInline, silent: bool, match: re.Match[str], ref: NoteRef | None) -> bool:
    if ref is None:
        return False
    if not silent:
        token = state.push("noteref", "", 0)
        token.content = match.group(0)
        token.meta = {"ref": ref, "pos": state.pos}
    state.pos = match.end()
    return True


def _legacy_ref_rule(state: StateInline, silent: bool) -> bool:
    if not state.src.startswith("((ref:", state.pos):
        return False
    match = LEGACY_PATTERN.match(state.src, state.pos, state.posMax)
    if not match:
        return False
    ref = build_ref(match.group(0), match.group("target"), match.group("anchors"), "legacy")
    return _push_ref(state, silent, match, ref)


def _embed_ref_rule(state: StateInline, silent: bool) -> bool:
    if not state.src.startswith("![[", state.pos):
        return False
    match = EMBED_PATTERN.match(state.src, state.pos, state.posMax)
    if not match:
        return False
    target, sep, anchors = match.group("body").partition("#")
    ref = build_ref(match.group(0), target, sep + anchors, "embed")
    return _push_ref(state, silent, match, ref)


def _wikilink_rule(state: StateInline, silent: bool) -> bool:
    if not state.src.startswith("[[", state.pos):
        return False
    match = WIKILINK_PATTERN.match(state.src, state.pos, state.posMax)
    if not match:
        return False
    target = normalize_target(match.group("target"))
    if not target:
        return False
    if not silent:
        token = state.push("wikilink", "", 0)
        token.content = match.group(0)
        token.meta = {"target": target, "label": (match.group("label") or "").strip() or None}
    state.pos = match.end()
    return True


def create_parser(legacy_syntax: bool = True, renderer_cls: type | None = None) -> MarkdownIt:
    """Create a markdown-it parser with the reference syntax installed.

    Args:
        legacy_syntax: Recognize the ``((ref: [[...]]))`` token form.
        renderer_cls: Optional renderer class (see renderer.PortalRenderer).

    Returns:
        A commonmark parser with tables and raw HTML enabled.
    """
    md = MarkdownIt("commonmark", {"html": True}, renderer_cls=renderer_cls or RendererHTML)
    md.enable("table")
    md.inline.ruler.at("text", _text_rule)
    if legacy_syntax:
        md.inline.ruler.before("link", "noteref_legacy", _legacy_ref_rule)
    md.inline.ruler.before("image", "noteref_embed", _embed_ref_rule)
    md.inline.ruler.before("link", "wikilink", _wikilink_rule)
    return md


@lru_cache(maxsize=2)
def _scan_parser(legacy_syntax: bool) -> MarkdownIt:
    return create_parser(legacy_syntax)


# ─────────────────────────────────────────────────────────────────────────────
# Scanner
# ─────────────────────────────────────────────────────────────────────────────


def _line_offsets(text: str) -> list[int]:
    offsets = [0]
    for line in split_lines(text):
        offsets.append(offsets[-1] + len(line))
    return offsets


def _source_offset(text: str, offsets: list[int], content: str, row0: int, pos: int, floor: int) -> int:
    """Map an offset into an inline token's content back to an offset in ``text``.

    Inline content drops container prefixes ("> ", list indents), so each
    content line is located inside its source line. Returns -1 if it cannot be.
    """
    line_start = content.rfind("\n", 0, pos) + 1
    line_end = content.find("\n", pos)
    piece = content[line_start : line_end if line_end >= 0 else len(content)]
    row = row0 + content.count("\n", 0, pos)
    if not piece or row + 1 >= len(offsets):
        return -1

    source_line = text[offsets[row] : offsets[row + 1]]
    column = pos - line_start
    base = source_line.find(piece)
    while base >= 0:
        start = offsets[row] + base + column
        if start >= floor:
            return start
        base = source_line.find(piece, base + 1)
    return -1


def _continuation_prefix(text: str, offsets: list[int], content: str, row0: int) -> str:
    """Prefix that keeps lines after the first inside the block's containers."""
    if row0 + 1 >= len(offsets):
        return ""
    first_line = text[offsets[row0] : offsets[row0 + 1]]
    base = first_line.find(content.split("\n", 1)[0])
    if base <= 0:
        return ""
    return _LIST_MARKER.sub(lambda m: " " * len(m.group(0)), first_line[:base])


def scan(text: str, legacy_syntax: bool = True) -> Iterator[TextRun | NoteRef]:
    """Split text into text runs and references.

    The concatenation of every ``TextRun.text`` and ``NoteRef.raw`` yielded is
    exactly ``text``. References inside code spans, code blocks and raw HTML
    are not recognized.

    Args:
        text: Markdown source.
        legacy_syntax: Recognize the ``((ref: [[...]]))`` token form.

    Yields:
        TextRun and NoteRef items in source order. Each NoteRef has ``start``,
        ``end``, ``heading_level``, ``line_prefix`` and ``inline_only`` set.
    """
    tokens = _scan_parser(legacy_syntax).parse(text)
    offsets = _line_offsets(text)
    cursor = 0
    heading_level = 0
    stack: list[Token] = []

    for token in tokens:
        if token.nesting == 1:
            stack.append(token)
            if token.type == "heading_open":
                heading_level = int(token.tag[1:])
            continue
        if token.nesting == -1:
            if stack:
                stack.pop()
            continue
        if token.type != "inline" or not token.children:
            continue

        # Table body cells carry no map of their own; their row does
        line_map = token.map or next((t.map for t in reversed(stack) if t.map), None)
        if line_map is None:
            continue
        row0 = min(line_map[0], len(offsets) - 1)
        block_end = offsets[min(line_map[1], len(offsets) - 1)]

        parent = stack[-1].type if stack else ""
        inline_only = parent in ("heading_open", "th_open", "td_open")
        prefix = ""
        if parent == "paragraph_open" and any(t.type in _CONTAINERS for t in stack):
            prefix = _continuation_prefix(text, offsets, token.content, row0)

        for child in token.children:
            if child.type != "noteref":
                continue
            start = _source_offset(text, offsets, token.content, row0, child.meta["pos"], cursor)
            if start < 0 or not text.startswith(child.content, start):
                start = text.find(child.content, max(cursor, offsets[row0]), block_end)
                if start < 0:
                    continue
            if start > cursor:
                yield TextRun(text[cursor:start])
            end = start + len(child.content)
            yield child.meta["ref"].model_copy(
                update={
                    "start": start,
                    "end": end,
                    "heading_level": heading_level,
                    "line_prefix": prefix,
                    "inline_only": inline_only,
                }
            )
            cursor = end

    if cursor < len(text):
        yield TextRun(text[cursor:])


def extract_refs(text: str, legacy_syntax: bool = True) -> list[NoteRef]:
    """Return the references found in text, in source order."""
    return [item for item in scan(text, legacy_syntax) if isinstance(item, NoteRef)]
