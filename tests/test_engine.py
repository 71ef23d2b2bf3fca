"""Tests for recursive expansion and destination rendering.

Coverage:
- src/noteref/engine.py - Compiler, ExpansionContext, CompileReport
- src/noteref/renderer.py - the four destinations, portals, placeholders

Philosophy: every compilation must terminate, and failures degrade to
placeholders instead of aborting the document.
"""

from __future__ import annotations

import pytest
from conftest import HEADER1_SECTION, OUTLINE_BODY, make_note, make_store

from noteref.engine import Compiler, ExpansionContext
from noteref.errors import ErrorCode
from noteref.models import Destination, NoteRefConfig

ALL_DESTINATIONS = list(Destination)


def compile_text(store, text, destination=Destination.STANDALONE, **options):
    return Compiler(store, NoteRefConfig(**options)).compile_text(text, destination)


def codes(result) -> list[ErrorCode]:
    return [issue.code for issue in result.report.issues]


@pytest.fixture
def store():
    return make_store(
        [
            make_note("foo", "foo body"),
            make_note("doc", OUTLINE_BODY),
            make_note("foobar", "embedded body", title="Foo Bar"),
            make_note("journal.2020.01.02", "Day two"),
            make_note("journal.2020.01.01", "Day one"),
            make_note("shared", "main shared"),
            make_note("shared", "work shared", vault="work"),
            make_note("child", "see [[bar]]", vault="work"),
            make_note("bar", "main bar"),
            make_note("bar", "work bar", vault="work"),
        ]
    )


# ─────────────────────────────────────────────────────────────────────────────
# Basic properties
# ─────────────────────────────────────────────────────────────────────────────


class TestNoReferences:
    """A document without references passes through unchanged."""

    TEXT = "# Title\n\nJust text with `code` and [[link]].\n"

    @pytest.mark.parametrize(
        "destination",
        [Destination.SOURCE, Destination.STANDALONE, Destination.LIVE_PREVIEW],
    )
    def test_markdown_destinations_are_identity(self, store, destination):
        result = compile_text(store, self.TEXT, destination)

        assert result.output == self.TEXT
        assert result.report.issues == []

    def test_html_has_no_portal(self, store):
        result = compile_text(store, self.TEXT, Destination.HYPERTEXT)

        assert "<h1>Title</h1>" in result.output
        assert "portal" not in result.output


class TestEndToEnd:
    """((ref:[[foo]])) where foo has body "foo body"."""

    TEXT = "((ref:[[foo]]))"

    def test_standalone(self, store):
        assert compile_text(store, self.TEXT).output == "foo body"

    def test_preview_has_portal(self, store):
        output = compile_text(store, self.TEXT, Destination.LIVE_PREVIEW).output

        assert 'class="portal-container"' in output
        assert 'data-note-id="main.foo"' in output
        assert '<span class="portal-text-title">Foo</span>' in output
        assert "\n\nfoo body\n\n" in output

    def test_html_has_portal(self, store):
        output = compile_text(store, self.TEXT, Destination.HYPERTEXT).output

        assert 'class="portal-container"' in output
        assert "<p>foo body</p>" in output
        assert 'href="/main.foo.html"' in output
        assert "noteref-stash" not in output

    def test_source_keeps_token(self, store):
        assert compile_text(store, self.TEXT, Destination.SOURCE).output == self.TEXT

    def test_source_round_trip_is_byte_identical(self, store):
        """Source output reproduces every token, even unresolvable ones."""
        text = "x ((ref: [[foo]]#Header1:#Header2)) y ![[missing#^b]]\n\n`((ref: [[a]]))`\n"

        result = compile_text(store, text, Destination.SOURCE)

        assert result.output == text
        assert result.report.issues == []

    def test_base_url_prefixes_portal_links(self, store):
        output = compile_text(store, self.TEXT, Destination.HYPERTEXT, base_url="/kb/").output

        assert 'href="/kb/main.foo.html"' in output


class TestAnchoredEmbeds:
    """Sub-range embeds."""

    def test_heading_range(self, store):
        result = compile_text(store, "((ref: [[doc]]#Header1:#Header2))")

        assert result.output == HEADER1_SECTION.rstrip("\n")

    def test_embed_syntax_block_anchor(self, store):
        result = compile_text(store, "Quote: ![[doc#^first-para]]\n")

        assert result.output == "Quote: First section. ^first-para\n"

    def test_headings_renumbered_under_host_section(self, store):
        store.add(make_note("child2", "# Child\n\ntext"))
        text = "# Host\n\n## Section\n\n((ref: [[child2]]))\n"

        result = compile_text(store, text)

        assert result.output == "# Host\n\n## Section\n\n### Child\n\ntext\n"

    def test_preview_does_not_renumber(self, store):
        store.add(make_note("child2", "# Child\n\ntext"))
        text = "## Section\n\n((ref: [[child2]]))\n"

        output = compile_text(store, text, Destination.LIVE_PREVIEW).output

        assert "\n# Child\n" in output


class TestWildcard:
    """Wildcard references embed every match in name order."""

    def test_standalone_concatenates_in_name_order(self, store):
        result = compile_text(store, "((ref:[[journal.*]]))")

        assert result.output == "Day one\n\n---\n\nDay two"
        assert result.report.embedded == ["main.journal.2020.01.01", "main.journal.2020.01.02"]

    def test_preview_has_one_portal_per_match(self, store):
        output = compile_text(store, "((ref:[[journal.*]]))", Destination.LIVE_PREVIEW).output

        assert output.count('class="portal-container"') == 2
        assert output.index("Day one") < output.index("Day two")

    def test_html_has_one_portal_per_match(self, store):
        output = compile_text(store, "((ref:[[journal.*]]))", Destination.HYPERTEXT).output

        assert output.count('class="portal-container"') == 2
        assert output.index("<p>Day one</p>") < output.index("<p>Day two</p>")


class TestTitleInjection:
    """insert_title_on_embed only affects portal destinations."""

    TEXT = "((ref: [[foobar]]))"

    def test_preview_injects_title(self, store):
        output = compile_text(
            store, self.TEXT, Destination.LIVE_PREVIEW, insert_title_on_embed=True
        ).output

        assert "# Foo Bar\n\nembedded body" in output

    def test_html_injects_title(self, store):
        output = compile_text(
            store, self.TEXT, Destination.HYPERTEXT, insert_title_on_embed=True
        ).output

        assert "<h1>Foo Bar</h1>\n<p>embedded body</p>" in output

    def test_standalone_never_injects(self, store):
        output = compile_text(store, self.TEXT, insert_title_on_embed=True).output

        assert output == "embedded body"

    def test_off_by_default(self, store):
        output = compile_text(store, self.TEXT, Destination.LIVE_PREVIEW).output

        assert "# Foo Bar" not in output

    @pytest.mark.parametrize(
        "destination,expected",
        [
            (Destination.LIVE_PREVIEW, "# foo\n\n# Tasks\n## Header1\ntask1\n## Header2\ntask2"),
            (Destination.HYPERTEXT, "<h1>foo</h1>\n<h1>Tasks</h1>\n<h2>Header1</h2>\n<p>task1</p>"),
        ],
    )
    def test_title_is_an_anchor_for_ranges(self, destination, expected):
        """#<title>:#* embeds from the injected title to the end of the note."""
        tasks = make_note("foo", "# Tasks\n## Header1\ntask1\n## Header2\ntask2", title="foo")

        result = compile_text(
            make_store([tasks]),
            "# Foo Bar\n((ref:[[foo]]#foo:#*))",
            destination,
            insert_title_on_embed=True,
        )

        assert expected in result.output
        assert result.report.issues == []

    def test_anchored_range_without_title(self, store):
        """The title is only embedded when the range covers it."""
        output = compile_text(
            store, "((ref: [[doc]]#Header2))", Destination.LIVE_PREVIEW, insert_title_on_embed=True
        ).output

        assert "## Header2\n\nSecond section." in output
        assert "# Doc" not in output


# ─────────────────────────────────────────────────────────────────────────────
# Termination
# ─────────────────────────────────────────────────────────────────────────────


class TestCycles:
    """Self and mutual references terminate."""

    def test_self_reference_stays_literal(self):
        note = make_note("a", "A text ((ref: [[a]]))")
        compiler = Compiler(make_store([note]))

        result = compiler.compile_note(note, Destination.STANDALONE)

        assert result.output == "A text ((ref: [[a]]))\n"
        assert codes(result) == [ErrorCode.CYCLE_DETECTED]
        assert result.report.unresolved == []

    def test_mutual_reference_expands_once(self):
        a = make_note("a", "A start\n\n((ref: [[b]]))")
        b = make_note("b", "B start\n\n((ref: [[a]]))")
        compiler = Compiler(make_store([a, b]))

        result = compiler.compile_note(a, Destination.STANDALONE)

        assert result.output == "A start\n\nB start\n\n((ref: [[a]]))\n"
        assert codes(result) == [ErrorCode.CYCLE_DETECTED]

    def test_cycle_in_html_marks_unexpanded_token(self):
        note = make_note("a", "A text ((ref: [[a]]))")
        compiler = Compiler(make_store([note]))

        result = compiler.compile_note(note, Destination.HYPERTEXT)

        assert '<span class="noteref-unexpanded">((ref: [[a]]))</span>' in result.output

    def test_siblings_are_not_cycles(self, store):
        """The same note embedded twice side by side expands both times."""
        result = compile_text(store, "((ref: [[foo]]))\n\n((ref: [[foo]]))\n")

        assert result.output == "foo body\n\nfoo body\n"
        assert result.report.issues == []

    def test_diamond_expands_shared_leaf_twice(self):
        notes = [
            make_note("top", "((ref: [[left]]))\n\n((ref: [[right]]))"),
            make_note("left", "L ((ref: [[leaf]]))"),
            make_note("right", "R ((ref: [[leaf]]))"),
            make_note("leaf", "leaf"),
        ]
        compiler = Compiler(make_store(notes))

        result = compiler.compile_note(notes[0], Destination.STANDALONE)

        assert result.output == "L leaf\n\nR leaf\n"
        assert result.report.issues == []


class TestDepthLimit:
    """max_expansion_depth bounds the nesting."""

    @pytest.fixture
    def chain(self):
        return [
            make_note("a", "A\n\n((ref: [[b]]))"),
            make_note("b", "B\n\n((ref: [[c]]))"),
            make_note("c", "C\n\n((ref: [[d]]))"),
            make_note("d", "D\n\n((ref: [[e]]))"),
            make_note("e", "E"),
        ]

    def test_default_depth_expands_everything(self, chain):
        result = Compiler(make_store(chain)).compile_note(chain[0], Destination.STANDALONE)

        assert result.output == "A\n\nB\n\nC\n\nD\n\nE\n"

    def test_limit_embeds_note_past_the_limit_unexpanded(self, chain):
        """With a limit of 1, c (depth 1) is still expanded; d (depth 2) is not."""
        compiler = Compiler(make_store(chain), NoteRefConfig(max_expansion_depth=1))

        result = compiler.compile_note(chain[0], Destination.STANDALONE)

        assert result.output == "A\n\nB\n\nC\n\nD\n\n((ref: [[e]]))\n"
        assert result.report.issues[0].details["depth"] == 2
        assert codes(result) == [ErrorCode.DEPTH_EXCEEDED]
        assert result.report.unresolved == []

    def test_zero_depth_expands_top_level_only(self, chain):
        compiler = Compiler(make_store(chain), NoteRefConfig(max_expansion_depth=0))

        result = compiler.compile_note(chain[0], Destination.STANDALONE)

        assert result.output == "A\n\nB\n\nC\n\n((ref: [[d]]))\n"


class TestExpansionContext:
    """Copy-on-recurse visitation path."""

    def test_descend_returns_new_context(self):
        note = make_note("a", "x")
        ctx = ExpansionContext(destination=Destination.STANDALONE)

        child = ctx.descend(note)

        assert child.visited == ("main.a",)
        assert child.depth == 1
        assert child.vault == "main"
        assert ctx.visited == ()
        assert ctx.depth == 0
        assert child.report is ctx.report

    def test_descend_refuses_visited_note(self):
        note = make_note("a", "x")
        ctx = ExpansionContext(destination=Destination.STANDALONE, visited=("main.a",))

        with pytest.raises(ValueError):
            ctx.descend(note)

    def test_context_is_frozen(self):
        ctx = ExpansionContext(destination=Destination.STANDALONE)

        with pytest.raises(AttributeError):
            ctx.depth = 3


# ─────────────────────────────────────────────────────────────────────────────
# Failures degrade to placeholders
# ─────────────────────────────────────────────────────────────────────────────


class TestPlaceholders:
    """Unresolvable references become placeholders and report entries."""

    def test_missing_note(self, store):
        result = compile_text(store, "before ((ref: [[missing]])) after")

        assert result.output == "before > **noteref error:** no note found for 'missing' after"
        assert codes(result) == [ErrorCode.REFERENCE_NOT_FOUND]
        assert result.report.unresolved[0].details["ref"] == "((ref: [[missing]]))"

    def test_missing_note_html(self, store):
        output = compile_text(store, "((ref: [[missing]]))", Destination.HYPERTEXT).output

        assert '<div class="portal-error" data-code="REFERENCE_NOT_FOUND">' in output
        assert "<code>((ref: [[missing]]))</code>" in output

    def test_missing_anchor_names_resolved_note(self, store):
        result = compile_text(store, "((ref: [[doc]]#Nope))")

        (issue,) = result.report.unresolved
        assert issue.code == ErrorCode.ANCHOR_NOT_FOUND
        assert issue.message == "anchor 'Nope' not found in note 'main.doc'"
        assert "anchor 'Nope' not found" in result.output

    def test_ambiguous_placeholder(self, store):
        result = compile_text(store, "((ref: [[shared]]))")

        (issue,) = result.report.unresolved
        assert issue.code == ErrorCode.AMBIGUOUS_REFERENCE
        assert issue.candidates == ["main/shared", "work/shared"]
        assert "noteref error" in result.output

    def test_ambiguous_first_policy(self, store):
        result = compile_text(store, "((ref: [[shared]]))", ambiguous_policy="first")

        assert result.output == "main shared"
        assert result.report.issues == []

    def test_qualified_reference_disambiguates(self, store):
        assert compile_text(store, "((ref: [[work/shared]]))").output == "work shared"

    def test_failure_does_not_abort_document(self, store):
        result = compile_text(store, "((ref: [[missing]]))\n\n((ref: [[foo]]))\n")

        assert result.output.endswith("\n\nfoo body\n")
        assert len(result.report.unresolved) == 1


# ─────────────────────────────────────────────────────────────────────────────
# HTML specifics
# ─────────────────────────────────────────────────────────────────────────────


class TestContainers:
    """Embeds stay inside the blockquote, list item or table cell holding the reference."""

    @pytest.fixture
    def two(self):
        return make_store([make_note("two", "line one\n\nline two"), make_note("foo", "foo body")])

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("> ((ref:[[two]]))\n", "> line one\n>\n> line two\n"),
            ("- ((ref:[[two]]))\n- next\n", "- line one\n\n  line two\n- next\n"),
            ("1. see ((ref:[[two]]))\n", "1. see line one\n\n   line two\n"),
            ("> - ((ref:[[two]]))\n", "> - line one\n>\n>   line two\n"),
        ],
    )
    def test_standalone_repeats_container_prefix(self, two, text, expected):
        assert compile_text(two, text).output == expected

    def test_html_portal_stays_in_blockquote(self, two):
        output = compile_text(two, "> ((ref:[[two]]))\n", Destination.HYPERTEXT).output

        assert output.startswith("<blockquote>\n")
        assert output.index('class="portal-container"') < output.rindex("</blockquote>")
        assert "<p>line two</p>" in output

    def test_html_portal_in_table_cell(self, two):
        text = "| a | b |\n|---|---|\n| ((ref:[[foo]])) | y |\n"

        output = compile_text(two, text, Destination.HYPERTEXT).output

        assert '<td><div class="portal-container" data-note-id="main.foo">' in output
        assert "<p>foo body</p>" in output
        assert "<td>y</td>" in output
        assert "<p>| y |</p>" not in output
        assert output.count("<table>") == 1


class TestHtml:
    """Wikilinks inside portals resolve against the embedded note's vault."""

    def test_wikilink_in_portal_uses_embedded_vault(self, store):
        result = Compiler(store).compile_text(
            "((ref: [[work/child]]))", Destination.HYPERTEXT, vault="main"
        )

        assert 'href="/work.bar.html"' in result.output
        assert 'href="/main.bar.html"' not in result.output

    def test_broken_wikilinks_are_collected(self, store):
        result = compile_text(store, "see [[nowhere|Nowhere]]\n", Destination.HYPERTEXT)

        assert '<span class="wikilink wikilink-broken" data-target="nowhere">Nowhere</span>' in result.output
        assert result.broken_links == {"nowhere"}

    def test_markdown_destinations_leave_wikilinks(self, store):
        result = compile_text(store, "see [[nowhere]]\n", Destination.LIVE_PREVIEW)

        assert result.output == "see [[nowhere]]\n"
        assert result.broken_links == set()


# ─────────────────────────────────────────────────────────────────────────────
# Parallel compilation
# ─────────────────────────────────────────────────────────────────────────────


class TestCompileNotes:
    """Independent compilations run as parallel tasks."""

    @pytest.mark.asyncio
    async def test_results_keep_order_and_separate_reports(self):
        notes = [
            make_note("a", "((ref: [[b]]))"),
            make_note("b", "B ((ref: [[missing]]))"),
            make_note("c", "plain"),
        ]
        compiler = Compiler(make_store(notes))

        results = await compiler.compile_notes(notes, Destination.STANDALONE, max_workers=2)

        assert [r.note.id for r in results] == ["main.a", "main.b", "main.c"]
        assert [len(r.report.unresolved) for r in results] == [1, 1, 0]
        assert results[2].output == "plain\n"
        assert all(r.report is not results[0].report for r in results[1:])
