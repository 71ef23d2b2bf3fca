"""In-memory note index over one or more vaults.

The expansion engine only reads from the index; a store is built once
(from notes in memory or from vault directories on disk) and then shared
read-only by any number of compilations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, Protocol, Sequence

from .config import NOTE_SUFFIX
from .models import Note, Vault
from .parser.markdown import ParseError, parse_note

log = logging.getLogger(__name__)


class DocumentIndex(Protocol):
    """Read-only lookups the resolver needs."""

    @property
    def vault_names(self) -> list[str]: ...

    def lookup_by_name(self, name: str, vault: str | None = None) -> list[Note]: ...

    def lookup_by_id(self, note_id: str) -> Note | None: ...

    def iter_notes(self) -> Iterator[Note]: ...


class NoteStore:
    """Case-insensitive note index keyed by name and id.

    Names are unique per vault (the first note loaded wins). Lookups that can
    return several notes order them by declared vault order.
    """

    def __init__(self, notes: Iterable[Note] = (), vaults: Sequence[str] | None = None) -> None:
        self._vaults: list[str] = list(vaults or [])
        self._by_name: dict[str, list[Note]] = {}
        self._by_id: dict[str, Note] = {}
        for note in notes:
            self.add(note)

    @property
    def vault_names(self) -> list[str]:
        return list(self._vaults)

    def __len__(self) -> int:
        return len(self._by_id)

    def vault_rank(self, vault: str) -> int:
        try:
            return self._vaults.index(vault)
        except ValueError:
            return len(self._vaults)

    def add(self, note: Note) -> None:
        if note.vault not in self._vaults:
            self._vaults.append(note.vault)

        key = note.fname.lower()
        existing = self._by_name.setdefault(key, [])
        if any(other.vault == note.vault for other in existing):
            log.warning("Duplicate note name '%s' in vault '%s', keeping the first", note.fname, note.vault)
            return
        if note.id in self._by_id:
            log.warning("Duplicate note id '%s' (%s), keeping the first", note.id, note.fname)
            return

        existing.append(note)
        existing.sort(key=lambda n: self.vault_rank(n.vault))
        self._by_id[note.id] = note

    def lookup_by_name(self, name: str, vault: str | None = None) -> list[Note]:
        notes = self._by_name.get(name.strip().lower(), [])
        if vault is not None:
            return [note for note in notes if note.vault == vault]
        return list(notes)

    def lookup_by_id(self, note_id: str) -> Note | None:
        return self._by_id.get(note_id)

    def iter_notes(self) -> Iterator[Note]:
        """All notes, ordered by name then vault order."""
        notes = [note for group in self._by_name.values() for note in group]
        notes.sort(key=lambda n: (n.fname.lower(), self.vault_rank(n.vault)))
        return iter(notes)

    @classmethod
    def from_vaults(cls, vaults: Sequence[Vault], root: Path | None = None) -> "NoteStore":
        """Load every note file from the given vault directories.

        Args:
            vaults: Vaults in declared order. Relative paths are resolved
                against ``root``.
            root: Workspace root directory.

        Returns:
            A populated store. Unparseable files are skipped and logged.
        """
        store = cls(vaults=[vault.name for vault in vaults])

        for vault in vaults:
            vault_dir = Path(vault.path or vault.name)
            if root is not None and not vault_dir.is_absolute():
                vault_dir = root / vault_dir

            if not vault_dir.exists() or not vault_dir.is_dir():
                log.warning("Vault '%s' directory does not exist: %s", vault.name, vault_dir)
                continue

            for md_file in sorted(vault_dir.rglob(f"*{NOTE_SUFFIX}")):
                # Skip hidden and special files
                rel_parts = md_file.relative_to(vault_dir).parts
                if any(part.startswith(("_", ".")) for part in rel_parts):
                    continue

                try:
                    note = parse_note(md_file, vault.name)
                except ParseError as e:
                    log.debug("Skipping %s during store load: %s", md_file, e)
                    continue

                store.add(note)

        log.debug("Loaded %d notes from %d vaults", len(store), len(vaults))
        return store
