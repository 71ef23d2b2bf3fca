"""Recursive expansion of note references.

One compilation walks a document depth-first: every reference is resolved,
its target span extracted, and the span scanned again for nested references.
The walk carries an ExpansionContext that is copied (never mutated) on each
recursion, so a note only ever sees the notes on its own ancestor chain.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from .config import PUBLISH_MAX_WORKERS
from .errors import (
    AmbiguousReference,
    AnchorNotFound,
    CycleDetected,
    DepthExceeded,
    ErrorCode,
    NoteRefError,
    ReferenceNotFound,
)
from .models import Destination, Note, NoteRef, NoteRefConfig
from .parser.anchors import extract
from .parser.refs import TextRun, scan
from .renderer import (
    PORTAL_DESTINATIONS,
    Fragment,
    join_embeds,
    placeholder,
    raw_token,
    render,
    text_fragment,
    wrap_embed,
)
from .resolver import resolve
from .store import DocumentIndex

log = logging.getLogger(__name__)

# Issues that degrade output to a placeholder (the rest only stop recursion)
UNRESOLVED_CODES = frozenset(
    {ErrorCode.REFERENCE_NOT_FOUND, ErrorCode.AMBIGUOUS_REFERENCE, ErrorCode.ANCHOR_NOT_FOUND}
)


@dataclass
class CompileReport:
    """Issues met during one compilation. Owned by that compilation only."""

    issues: list[NoteRefError] = field(default_factory=list)
    embedded: list[str] = field(default_factory=list)  # Note ids, in expansion order

    def add(self, issue: NoteRefError) -> None:
        self.issues.append(issue)
        if issue.code in UNRESOLVED_CODES:
            log.warning("%s", issue.message)
        else:
            log.debug("%s", issue.message)

    @property
    def unresolved(self) -> list[NoteRefError]:
        return [issue for issue in self.issues if issue.code in UNRESOLVED_CODES]


@dataclass(frozen=True)
class ExpansionContext:
    """Per-pass expansion state, copied on every recursive step."""

    destination: Destination
    vault: str | None = None
    visited: tuple[str, ...] = ()
    depth: int = 0
    report: CompileReport = field(default_factory=CompileReport, compare=False)

    def descend(self, note: Note) -> ExpansionContext:
        """Context for expanding ``note``'s body one level deeper."""
        if note.id in self.visited:
            raise ValueError(f"note '{note.id}' is already on the expansion path")
        return replace(
            self,
            vault=note.vault,
            visited=self.visited + (note.id,),
            depth=self.depth + 1,
        )


@dataclass
class CompileResult:
    output: str
    destination: Destination
    fragments: list[Fragment]
    report: CompileReport
    note: Note | None = None
    broken_links: set[str] = field(default_factory=set)


class Compiler:
    """Expands note references in documents drawn from a read-only index.

    A Compiler holds no per-compilation state, so one instance may run any
    number of compilations, including concurrently.
    """

    def __init__(self, index: DocumentIndex, config: NoteRefConfig | None = None) -> None:
        self.index = index
        self.config = config or NoteRefConfig()

    # ── expansion ───────────────────────────────────────────────────────────

    def process(self, text: str, ctx: ExpansionContext) -> list[Fragment]:
        """Scan text and expand every reference in it."""
        fragments: list[Fragment] = []
        for item in scan(text, self.config.legacy_reference_syntax):
            if isinstance(item, TextRun):
                fragments.append(text_fragment(item.text))
            else:
                fragments.append(self.expand(item, ctx))
        return fragments

    def expand(self, ref: NoteRef, ctx: ExpansionContext) -> Fragment:
        """Expand one reference into a destination fragment."""
        if ctx.destination is Destination.SOURCE:
            return raw_token(ref)

        resolution = resolve(ref, self.index, ctx.vault)

        if resolution.status == "not_found":
            error = ReferenceNotFound(
                f"no note found for '{ref.qualified_target}'",
                {"ref": ref.raw, "target": ref.qualified_target},
            )
            ctx.report.add(error)
            return placeholder(ref, error)

        notes = resolution.notes
        if resolution.status == "ambiguous":
            candidates = [f"{note.vault}/{note.fname}" for note in notes]
            if self.config.ambiguous_policy == "first":
                log.info("Reference %s is ambiguous, using %s", ref.raw, candidates[0])
                notes = notes[:1]
            else:
                error = AmbiguousReference(
                    f"'{ref.target}' matches notes in several vaults: {', '.join(candidates)}",
                    candidates,
                    {"ref": ref.raw},
                )
                ctx.report.add(error)
                return placeholder(ref, error)

        embeds = [self._embed(ref, note, ctx) for note in notes]
        if len(embeds) == 1:
            return embeds[0]
        return join_embeds(ctx.destination, ref, embeds)

    def _embed(self, ref: NoteRef, note: Note, ctx: ExpansionContext) -> Fragment:
        if note.id in ctx.visited:
            # Back-reference to a note on the current path stays as written
            ctx.report.add(
                CycleDetected(
                    f"'{note.id}' is already being expanded; leaving {ref.raw} unexpanded",
                    {"ref": ref.raw, "path": list(ctx.visited)},
                )
            )
            return text_fragment(ref.raw)

        insert_title = self.config.insert_title_on_embed and ctx.destination in PORTAL_DESTINATIONS
        try:
            span = extract(note, ref.anchor_start, ref.anchor_end, insert_title=insert_title)
        except AnchorNotFound as e:
            e.details["ref"] = ref.raw
            ctx.report.add(e)
            return placeholder(ref, e, note=note)

        if ctx.depth > self.config.max_expansion_depth:
            ctx.report.add(
                DepthExceeded(
                    f"maximum expansion depth {self.config.max_expansion_depth} exceeded at '{note.id}'",
                    {"ref": ref.raw, "depth": ctx.depth},
                )
            )
            children = [text_fragment(span.text)]
        else:
            children = self.process(span.text, ctx.descend(note))

        ctx.report.embedded.append(note.id)
        return wrap_embed(ctx.destination, ref, note, children)

    # ── compilation entry points ────────────────────────────────────────────

    def compile_text(
        self,
        text: str,
        destination: Destination,
        vault: str | None = None,
        note: Note | None = None,
    ) -> CompileResult:
        """Compile a markdown document for ``destination``.

        Args:
            text: Markdown to compile.
            destination: Output format.
            vault: Vault used to resolve unqualified references.
            note: The note ``text`` belongs to, if any. It starts the
                visitation path so self-references are caught.

        Returns:
            The rendered output with its fragment tree and issue report.
        """
        ctx = ExpansionContext(
            destination=destination,
            vault=vault if vault is not None else (note.vault if note else None),
            visited=(note.id,) if note else (),
        )
        fragments = self.process(text, ctx)
        broken_links: set[str] = set()
        output = render(fragments, destination, self.config, self.index, ctx.vault, broken_links)
        return CompileResult(
            output=output,
            destination=destination,
            fragments=fragments,
            report=ctx.report,
            note=note,
            broken_links=broken_links,
        )

    def compile_note(self, note: Note, destination: Destination) -> CompileResult:
        return self.compile_text(note.body, destination, note=note)

    async def compile_notes(
        self,
        notes: Iterable[Note],
        destination: Destination,
        max_workers: int = PUBLISH_MAX_WORKERS,
    ) -> list[CompileResult]:
        """Compile many notes as independent tasks.

        Each note gets its own context; nothing is shared between tasks but
        the read-only index. Results keep the order of ``notes``.
        """
        semaphore = asyncio.Semaphore(max_workers)

        async def run(note: Note) -> CompileResult:
            async with semaphore:
                return await asyncio.to_thread(self.compile_note, note, destination)

        return list(await asyncio.gather(*(run(note) for note in notes)))
