"""Static site generator for a noteref workspace.

Compiles every note to the html destination, with embedded notes rendered
as portals, and writes one page per note plus an index.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ..engine import Compiler
from ..models import Destination, Note, NoteRefConfig
from ..store import NoteStore

log = logging.getLogger(__name__)


@dataclass
class PublishConfig:
    """Configuration for site generation."""

    output_dir: Path = field(default_factory=lambda: Path("_site"))
    clean: bool = True  # Remove output dir before build


@dataclass
class PageData:
    """Compiled note for rendering."""

    note: Note
    html_content: str
    embedded: list[str] = field(default_factory=list)


@dataclass
class PublishResult:
    """Result of site generation."""

    pages_published: int
    broken_links: list[dict]  # [{source, target}]
    unresolved_refs: list[dict]  # [{source, code, message}]
    output_dir: str


class SiteGenerator:
    """Generates a static HTML site from a note store.

    Pipeline:
    1. Compile all notes (independent parallel tasks)
    2. Render note pages via Jinja2 templates
    3. Render the index page
    4. Write the portal stylesheet
    """

    def __init__(self, config: PublishConfig, store: NoteStore, options: NoteRefConfig | None = None):
        self.config = config
        self.store = store
        self.options = options or NoteRefConfig()
        self.pages: dict[str, PageData] = {}
        self.broken_links: list[dict] = []
        self.unresolved_refs: list[dict] = []

    async def generate(self) -> PublishResult:
        """Generate the complete static site."""
        if self.config.clean and self.config.output_dir.exists():
            shutil.rmtree(self.config.output_dir)
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        await self._compile_notes()
        self._render_all_pages()
        self._write_assets()

        log.info("Published %d notes to %s", len(self.pages), self.config.output_dir)
        return PublishResult(
            pages_published=len(self.pages),
            broken_links=self.broken_links,
            unresolved_refs=self.unresolved_refs,
            output_dir=str(self.config.output_dir),
        )

    async def _compile_notes(self) -> None:
        compiler = Compiler(self.store, self.options)
        notes = list(self.store.iter_notes())
        results = await compiler.compile_notes(notes, Destination.HYPERTEXT)

        for result in results:
            note = result.note
            assert note is not None
            for target in sorted(result.broken_links):
                self.broken_links.append({"source": note.id, "target": target})
            for issue in result.report.unresolved:
                self.unresolved_refs.append(
                    {"source": note.id, "code": issue.code.value, "message": issue.message}
                )
            self.pages[note.id] = PageData(
                note=note,
                html_content=result.output,
                embedded=list(dict.fromkeys(result.report.embedded)),
            )

    def _render_all_pages(self) -> None:
        from .templates import render_index_page, render_note_page

        base_url = self.options.base_url.rstrip("/")

        for note_id, page in self.pages.items():
            html_path = self.config.output_dir / f"{note_id}.html"
            html_path.parent.mkdir(parents=True, exist_ok=True)
            html_path.write_text(render_note_page(page, base_url), encoding="utf-8")

        index_html = render_index_page(list(self.pages.values()), self.store.vault_names, base_url)
        (self.config.output_dir / "index.html").write_text(index_html, encoding="utf-8")

    def _write_assets(self) -> None:
        from .templates import STYLE_CSS

        assets_dir = self.config.output_dir / "assets"
        assets_dir.mkdir(exist_ok=True)
        (assets_dir / "style.css").write_text(STYLE_CSS, encoding="utf-8")
