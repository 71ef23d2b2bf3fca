"""Destination rendering for expanded note references.

The expansion engine produces a tree of Fragments; this module decides how an
embedded note is wrapped for each destination and serializes the tree:

- source: reference tokens are emitted exactly as written
- standalone: embedded text substituted in place, headings renumbered
- preview: markdown with an HTML "portal" container around each embed
- html: the preview layout rendered to HTML with markdown-it, wikilinks
  resolved to note pages

Each destination is a plain function looked up once per compilation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Callable

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml
from markdown_it.renderer import RendererHTML

from .errors import NoteRefError
from .models import Destination, Note, NoteRef, NoteRefConfig
from .parser.anchors import renumber_headings
from .parser.refs import build_ref, create_parser
from .resolver import resolve
from .store import DocumentIndex


class FragmentKind(str, Enum):
    RAW_TOKEN = "raw_token"
    LITERAL_TEXT = "literal_text"
    PORTAL_BLOCK = "portal_block"
    PLACEHOLDER = "placeholder"


@dataclass
class Fragment:
    """A node of the expanded document.

    ``literal_text`` with no note is a plain run of source text (or, with
    children, a group such as the matches of a wildcard). With a note it is
    a standalone embed whose children are the expanded body.
    """

    kind: FragmentKind
    text: str = ""
    note: Note | None = None
    ref: NoteRef | None = None
    children: list[Fragment] = field(default_factory=list)
    error: NoteRefError | None = None


WILDCARD_SEPARATORS: dict[Destination, str] = {
    Destination.SOURCE: "",
    Destination.STANDALONE: "\n\n---\n\n",
    Destination.HYPERTEXT: "\n",
    Destination.LIVE_PREVIEW: "\n",
}

PORTAL_DESTINATIONS = frozenset({Destination.HYPERTEXT, Destination.LIVE_PREVIEW})


def text_fragment(text: str) -> Fragment:
    return Fragment(FragmentKind.LITERAL_TEXT, text=text)


def raw_token(ref: NoteRef) -> Fragment:
    return Fragment(FragmentKind.RAW_TOKEN, text=ref.raw, ref=ref)


def placeholder(ref: NoteRef, error: NoteRefError, note: Note | None = None) -> Fragment:
    return Fragment(FragmentKind.PLACEHOLDER, text=error.message, ref=ref, note=note, error=error)


def wrap_embed(destination: Destination, ref: NoteRef, note: Note, children: list[Fragment]) -> Fragment:
    """Wrap an embedded note's expanded body for the destination."""
    if destination in PORTAL_DESTINATIONS:
        return Fragment(FragmentKind.PORTAL_BLOCK, note=note, ref=ref, children=children)
    return Fragment(FragmentKind.LITERAL_TEXT, note=note, ref=ref, children=children)


def join_embeds(destination: Destination, ref: NoteRef, embeds: list[Fragment]) -> Fragment:
    """Concatenate the embeds of a multi-note (wildcard) reference."""
    separator = WILDCARD_SEPARATORS[destination]
    if ref.inline_only and destination is Destination.HYPERTEXT:
        separator = ""
    children: list[Fragment] = []
    for i, embed in enumerate(embeds):
        if i and separator:
            children.append(text_fragment(separator))
        if embed.ref is not None and embed.ref.line_prefix:
            # The group carries the container prefix for all of its lines
            embed.ref = embed.ref.model_copy(update={"line_prefix": ""})
        children.append(embed)
    return Fragment(FragmentKind.LITERAL_TEXT, ref=ref, children=children)


def note_href(note: Note, config: NoteRefConfig) -> str:
    return f"{config.base_url.rstrip('/')}/{note.id}.html"


# ─────────────────────────────────────────────────────────────────────────────
# Markdown destinations
# ─────────────────────────────────────────────────────────────────────────────


def _portal_open(note: Note, config: NoteRefConfig) -> str:
    title = escapeHtml(note.title)
    href = escapeHtml(note_href(note, config))
    return (
        f'<div class="portal-container" data-note-id="{escapeHtml(note.id)}">\n'
        '<div class="portal-head">\n'
        f'<div class="portal-title">From <span class="portal-text-title">{title}</span></div>\n'
        f'<a href="{href}" class="portal-arrow">Go to text <span class="right-arrow">→</span></a>\n'
        "</div>\n"
        '<div class="portal-parent">\n'
        '<div class="portal-parent-fader-top"></div>\n'
        '<div class="portal-parent-fader-bottom"></div>'
    )


_PORTAL_CLOSE = "</div>\n</div>"


def _error_html(fragment: Fragment) -> str:
    code = fragment.error.code.value if fragment.error else ""
    target = escapeHtml(fragment.ref.raw) if fragment.ref else ""
    return (
        f'<div class="portal-error" data-code="{code}">'
        f"<strong>noteref error:</strong> {escapeHtml(fragment.text)}"
        f' <code>{target}</code></div>'
    )


def _continue_lines(text: str, prefix: str) -> str:
    """Repeat a container prefix ("> ", a list indent) on every line after the first."""
    if not prefix or "\n" not in text:
        return text
    first, *rest = text.split("\n")
    blank = prefix.rstrip()
    lines = [prefix + line if line.strip() else blank for line in rest[:-1]]
    # The last line is followed by the rest of the reference's source line
    lines.append(prefix + rest[-1])
    return "\n".join([first, *lines])


def _markdown(fragment: Fragment, destination: Destination, config: NoteRefConfig) -> str:
    text = _markdown_body(fragment, destination, config)
    if fragment.ref is None or destination is Destination.SOURCE:
        return text
    return _continue_lines(text, fragment.ref.line_prefix)


def _markdown_body(fragment: Fragment, destination: Destination, config: NoteRefConfig) -> str:
    kind = fragment.kind

    if kind is FragmentKind.RAW_TOKEN:
        return fragment.text

    if kind is FragmentKind.LITERAL_TEXT:
        body = fragment.text + "".join(_markdown(c, destination, config) for c in fragment.children)
        if fragment.note is None:
            return body
        level = fragment.ref.heading_level if fragment.ref else 0
        return renumber_headings(body, level).rstrip("\n")

    if kind is FragmentKind.PLACEHOLDER:
        if destination is Destination.STANDALONE:
            return f"> **noteref error:** {fragment.text}"
        return f"\n{_error_html(fragment)}\n\n"

    # Portal: the blank lines end the HTML block so the body is parsed as markdown
    assert fragment.note is not None
    body = "".join(_markdown(c, destination, config) for c in fragment.children).strip("\n")
    return f"\n{_portal_open(fragment.note, config)}\n\n{body}\n\n{_PORTAL_CLOSE}\n\n"


def render_source(
    fragments: list[Fragment],
    config: NoteRefConfig,
    index: DocumentIndex,
    vault: str | None,
    broken_links: set[str] | None = None,
) -> str:
    return "".join(_markdown(f, Destination.SOURCE, config) for f in fragments)


def render_standalone(
    fragments: list[Fragment],
    config: NoteRefConfig,
    index: DocumentIndex,
    vault: str | None,
    broken_links: set[str] | None = None,
) -> str:
    return "".join(_markdown(f, Destination.STANDALONE, config) for f in fragments)


def render_preview(
    fragments: list[Fragment],
    config: NoteRefConfig,
    index: DocumentIndex,
    vault: str | None,
    broken_links: set[str] | None = None,
) -> str:
    return "".join(_markdown(f, Destination.LIVE_PREVIEW, config) for f in fragments)


# ─────────────────────────────────────────────────────────────────────────────
# HTML destination
# ─────────────────────────────────────────────────────────────────────────────

_STASH_PATTERN = re.compile(r"<!--noteref-stash-(\d+)-->\n?")


class PortalRenderer(RendererHTML):
    """markdown-it renderer for wikilinks and unexpanded reference tokens.

    Expects ``env`` to carry ``index``, ``vault``, ``config`` and a
    ``broken_links`` set.
    """

    def wikilink(self, tokens, idx, options, env) -> str:
        token = tokens[idx]
        target = token.meta["target"]
        label = token.meta.get("label") or target

        note = None
        ref = build_ref(token.content, target, syntax="link")
        if ref is not None and env.get("index") is not None:
            resolution = resolve(ref, env["index"], env.get("vault"))
            note = resolution.note or (resolution.notes[0] if resolution.notes else None)

        if note is None:
            env.setdefault("broken_links", set()).add(target)
            return f'<span class="wikilink wikilink-broken" data-target="{escapeHtml(target)}">{escapeHtml(label)}</span>'

        href = escapeHtml(note_href(note, env["config"]))
        return f'<a href="{href}" class="wikilink" data-note-id="{escapeHtml(note.id)}">{escapeHtml(label)}</a>'

    def noteref(self, tokens, idx, options, env) -> str:
        # Only reached for references left unexpanded (cycle or depth cut-off)
        return f'<span class="noteref-unexpanded">{escapeHtml(tokens[idx].content)}</span>'


def _html_source(
    fragment: Fragment,
    stash: list[str],
    config: NoteRefConfig,
    index: DocumentIndex,
    broken_links: set[str],
) -> str:
    kind = fragment.kind

    if kind is FragmentKind.RAW_TOKEN:
        return fragment.text

    if kind is FragmentKind.LITERAL_TEXT:
        children = "".join(
            _html_source(c, stash, config, index, broken_links) for c in fragment.children
        )
        source = fragment.text + children
        return _continue_lines(source, fragment.ref.line_prefix) if fragment.ref else source

    if kind is FragmentKind.PLACEHOLDER:
        html = _error_html(fragment) + "\n"
    else:
        assert fragment.note is not None
        inner = render_html(fragment.children, config, index, fragment.note.vault, broken_links)
        html = f"{_portal_open(fragment.note, config)}\n{inner}{_PORTAL_CLOSE}\n"

    # Rendered blocks are swapped in after the surrounding markdown is rendered
    assert fragment.ref is not None
    marker = f"<!--noteref-stash-{len(stash)}-->"
    if fragment.ref.inline_only:
        # Table cells and headings cannot be split, so the marker stays inline
        stash.append(html.rstrip("\n"))
        return marker
    stash.append(html)
    return _continue_lines(f"\n{marker}\n\n", fragment.ref.line_prefix)


@lru_cache(maxsize=2)
def _html_parser(legacy_syntax: bool) -> MarkdownIt:
    return create_parser(legacy_syntax, renderer_cls=PortalRenderer)


def render_html(
    fragments: list[Fragment],
    config: NoteRefConfig,
    index: DocumentIndex,
    vault: str | None,
    broken_links: set[str] | None = None,
) -> str:
    """Render fragments to HTML; each portal body is rendered in its note's vault."""
    stash: list[str] = []
    if broken_links is None:
        broken_links = set()
    source = "".join(_html_source(f, stash, config, index, broken_links) for f in fragments)

    md = _html_parser(config.legacy_reference_syntax)
    env = {
        "index": index,
        "vault": vault,
        "config": config,
        "broken_links": broken_links,
    }
    html = md.render(source, env)

    return _STASH_PATTERN.sub(lambda m: stash[int(m.group(1))], html)


Serializer = Callable[[list[Fragment], NoteRefConfig, DocumentIndex, str | None, set[str] | None], str]

SERIALIZERS: dict[Destination, Serializer] = {
    Destination.SOURCE: render_source,
    Destination.STANDALONE: render_standalone,
    Destination.HYPERTEXT: render_html,
    Destination.LIVE_PREVIEW: render_preview,
}


def render(
    fragments: list[Fragment],
    destination: Destination,
    config: NoteRefConfig,
    index: DocumentIndex,
    vault: str | None = None,
    broken_links: set[str] | None = None,
) -> str:
    """Serialize an expanded fragment list for ``destination``.

    Wikilinks that cannot be resolved while rendering html are added to
    ``broken_links``; markdown destinations leave wikilinks untouched.
    """
    return SERIALIZERS[destination](fragments, config, index, vault, broken_links)
