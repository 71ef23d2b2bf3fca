"""Pydantic models for notes, references and expansion settings."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_LEGACY_REFERENCE_SYNTAX, DEFAULT_MAX_EXPANSION_DEPTH


class Destination(str, Enum):
    """Output format a compilation targets."""

    SOURCE = "source"  # Reference tokens kept byte-identical
    STANDALONE = "standalone"  # Literal substitution, headings renumbered
    HYPERTEXT = "html"  # Portal-wrapped HTML
    LIVE_PREVIEW = "preview"  # Portal-wrapped markdown for the live preview


class Vault(BaseModel):
    """A named partition of the note store."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str | None = None  # Directory holding the vault's notes


class Note(BaseModel):
    """A note as seen by the expansion engine. Never mutated during a pass."""

    model_config = ConfigDict(frozen=True)

    id: str
    fname: str  # File name without extension, e.g. "journal.2020.01.01"
    vault: str
    title: str
    body: str  # Markdown body without front-matter
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    path: str | None = None  # Source file, when loaded from disk


class Anchor(BaseModel):
    """A marker delimiting a sub-range of a note."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["heading", "block", "wildcard", "line"]
    value: str | None = None  # Heading text or block id
    line: int | None = None  # 1-based body line for kind="line"

    def __str__(self) -> str:
        if self.kind == "wildcard":
            return "*"
        if self.kind == "block":
            return f"^{self.value}"
        if self.kind == "line":
            return f"L{self.line}"
        return self.value or ""


class NoteRef(BaseModel):
    """A scanned note reference. Immutable once produced by the scanner."""

    model_config = ConfigDict(frozen=True)

    raw: str  # Exact source bytes of the token
    target: str  # Note name (or glob pattern) without vault qualifier
    vault: str | None = None
    anchor_start: Anchor | None = None
    anchor_end: Anchor | None = None
    is_wildcard: bool = False
    syntax: Literal["legacy", "embed", "link"] = "legacy"
    # Position facts filled in by scan()
    start: int | None = None
    end: int | None = None
    heading_level: int = 0  # Level of the heading the token sits under (0 = none)
    line_prefix: str = ""  # Container prefix ("> ", list indent) for continuation lines
    inline_only: bool = False  # Inside a table cell or heading, where blocks cannot go

    @property
    def qualified_target(self) -> str:
        return f"{self.vault}/{self.target}" if self.vault else self.target


class NoteRefConfig(BaseModel):
    """Options recognized by a compilation."""

    legacy_reference_syntax: bool = DEFAULT_LEGACY_REFERENCE_SYNTAX
    insert_title_on_embed: bool = False
    max_expansion_depth: int = Field(default=DEFAULT_MAX_EXPANSION_DEPTH, ge=0)
    ambiguous_policy: Literal["placeholder", "first"] = "placeholder"
    base_url: str = ""  # Prefix for note links in html output


class Resolution(BaseModel):
    """Outcome of resolving one reference against the store."""

    status: Literal["ok", "not_found", "ambiguous"]
    notes: list[Note] = Field(default_factory=list)  # Matches (candidates when ambiguous)

    @property
    def note(self) -> Note | None:
        return self.notes[0] if self.status == "ok" and self.notes else None


class TextSpan(BaseModel):
    """A contiguous range of a note's body, by 0-based line numbers."""

    model_config = ConfigDict(frozen=True)

    note_id: str
    start_line: int
    end_line: int  # Exclusive
    text: str
