"""Resolve note references against a document index."""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase

from .models import Note, NoteRef, Resolution
from .store import DocumentIndex

log = logging.getLogger(__name__)


def _rank(index: DocumentIndex, vault: str) -> int:
    names = index.vault_names
    return names.index(vault) if vault in names else len(names)


def _glob_match(name: str, pattern: str) -> bool:
    # "*" covers one path segment: it may span dots but never a "/"
    return "/" not in name and fnmatchcase(name.lower(), pattern.lower())


def resolve_wildcard(ref: NoteRef, index: DocumentIndex) -> Resolution:
    """Match every note whose name fits the glob, ordered by name then vault."""
    matches = [
        note
        for note in index.iter_notes()
        if (ref.vault is None or note.vault == ref.vault) and _glob_match(note.fname, ref.target)
    ]
    if not matches:
        return Resolution(status="not_found")
    matches.sort(key=lambda n: (n.fname.lower(), _rank(index, n.vault)))
    return Resolution(status="ok", notes=matches)


def resolve(ref: NoteRef, index: DocumentIndex, current_vault: str | None = None) -> Resolution:
    """Find the note(s) a reference points at.

    Resolution order for a plain name:
    1. Vault-qualified references only look in the named vault.
    2. Exact name in ``current_vault``.
    3. Exact name across all vaults (ambiguous if several vaults match).
    4. Note id.

    Args:
        ref: The scanned reference.
        index: Document index to search.
        current_vault: Vault of the note containing the reference.

    Returns:
        A Resolution with status ``ok``, ``not_found`` or ``ambiguous``.
        Wildcards may resolve to several notes with status ``ok``.
    """
    if ref.vault is not None and ref.vault not in index.vault_names:
        log.warning("Vault '%s' is not defined (reference %s)", ref.vault, ref.raw)
        return Resolution(status="not_found")

    if ref.is_wildcard:
        return resolve_wildcard(ref, index)

    if ref.vault is not None:
        notes = index.lookup_by_name(ref.target, vault=ref.vault)
        return Resolution(status="ok", notes=notes[:1]) if notes else Resolution(status="not_found")

    if current_vault is not None:
        local = index.lookup_by_name(ref.target, vault=current_vault)
        if local:
            return Resolution(status="ok", notes=local[:1])

    candidates: list[Note] = sorted(
        index.lookup_by_name(ref.target), key=lambda n: _rank(index, n.vault)
    )
    if len(candidates) == 1:
        return Resolution(status="ok", notes=candidates)
    if len(candidates) > 1:
        return Resolution(status="ambiguous", notes=candidates)

    by_id = index.lookup_by_id(ref.target)
    if by_id is not None:
        return Resolution(status="ok", notes=[by_id])

    return Resolution(status="not_found")
