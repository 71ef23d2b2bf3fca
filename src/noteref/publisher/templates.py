"""HTML templates for static site generation.

Uses Jinja2 for templating with inline template definitions.
Templates include: base layout, note page and index page.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from jinja2 import BaseLoader, Environment, select_autoescape
from markupsafe import Markup

if TYPE_CHECKING:
    from .generator import PageData


# Portal styling: embedded notes are set apart from the host note
STYLE_CSS = """\
body { font-family: system-ui, sans-serif; max-width: 48rem; margin: 2rem auto; padding: 0 1rem; line-height: 1.6; }
.nav { display: flex; gap: 1rem; margin-bottom: 2rem; }
.portal-container { border-left: 3px solid #4dabf7; margin: 1rem 0; padding: 0 1rem; background: #f8f9fa; }
.portal-head { display: flex; justify-content: space-between; font-size: 0.85rem; color: #868e96; }
.portal-arrow { text-decoration: none; }
.portal-error { border-left: 3px solid #fa5252; background: #fff5f5; padding: 0.5rem 1rem; margin: 1rem 0; }
.noteref-unexpanded { font-family: monospace; color: #868e96; }
.wikilink-broken { color: #fa5252; text-decoration: underline dotted; }
"""


def _base_wrapper(title: str, base_url: str, content: str) -> str:
    """Wrap content in the base HTML template.

    This is a simple string formatting approach that avoids Jinja
    parsing issues with note content that might contain {{ }} syntax.
    """
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{_escape_html(title)}</title>
    <link rel="stylesheet" href="{base_url}/assets/style.css">
</head>
<body>
    <nav class="nav">
        <a href="{base_url}/" class="nav-brand">Notes</a>
    </nav>
    <main class="main">
        {content}
    </main>
</body>
</html>
"""


def _escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


# Note page template - the compiled note with the notes it embeds
NOTE_TEMPLATE = """
<article class="note">
    <header class="note-header">
        <h1>{{ page.note.title }}</h1>
        <div class="note-meta">
            <span class="note-vault">{{ page.note.vault }}</span>
        </div>
    </header>
    <div class="note-content">
        {{ html_content }}
    </div>
    {% if page.embedded %}
    <footer class="note-embeds">
        <h2>Embedded notes</h2>
        <ul>
            {% for note_id in page.embedded %}
            <li><a href="{{ base_url }}/{{ note_id }}.html">{{ note_id }}</a></li>
            {% endfor %}
        </ul>
    </footer>
    {% endif %}
</article>
"""

# Index page template - every published note grouped by vault
INDEX_TEMPLATE = """
<div class="index">
    <h1>Notes</h1>
    {% for vault, pages in vaults %}
    <section class="vault">
        <h2>{{ vault }}</h2>
        <ul class="note-list">
            {% for page in pages %}
            <li><a href="{{ base_url }}/{{ page.note.id }}.html">{{ page.note.title }}</a>
                <span class="note-fname">{{ page.note.fname }}</span></li>
            {% endfor %}
        </ul>
    </section>
    {% endfor %}
</div>
"""


def _get_env() -> Environment:
    """Create Jinja2 environment with autoescape enabled."""
    return Environment(
        loader=BaseLoader(),
        autoescape=select_autoescape(default=True, default_for_string=True),
    )


def render_note_page(page: "PageData", base_url: str) -> str:
    """Render a single note page.

    Args:
        page: Compiled note data
        base_url: Base URL for links

    Returns:
        Complete HTML page string
    """
    env = _get_env()
    tmpl = env.from_string(NOTE_TEMPLATE)
    content = tmpl.render(
        page=page,
        base_url=base_url,
        # html_content is already rendered HTML, mark as safe to prevent escaping
        html_content=Markup(page.html_content),
    )
    return _base_wrapper(page.note.title, base_url, content)


def render_index_page(pages: list["PageData"], vault_order: list[str], base_url: str) -> str:
    """Render the main index page, vaults in declared order."""
    env = _get_env()

    by_vault: dict[str, list[PageData]] = {}
    for page in sorted(pages, key=lambda p: p.note.fname.lower()):
        by_vault.setdefault(page.note.vault, []).append(page)
    vaults = [(name, by_vault[name]) for name in vault_order if name in by_vault]

    tmpl = env.from_string(INDEX_TEMPLATE)
    content = tmpl.render(base_url=base_url, vaults=vaults)
    return _base_wrapper("Notes", base_url, content)
