"""Workspace configuration discovery and loading for noteref.

A .kbconfig file at the workspace root declares the vaults (in tie-break
order) and the expansion options.

Example .kbconfig file:
    vaults:
      - name: main
        path: notes
      - name: work
        path: ../work-notes
    noteref:
      legacy_reference_syntax: true
      insert_title_on_embed: false
      max_expansion_depth: 8
      ambiguous_policy: placeholder   # or "first"
    publish:
      base_url: /kb
      output_dir: _site
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import DEFAULT_PUBLISH_DIR, WORKSPACE_CONFIG_FILENAME
from .errors import ConfigurationError
from .models import NoteRefConfig, Vault
from .store import NoteStore

# Cache for workspace config loading (per-session)
_workspace_cache: dict[str, "WorkspaceConfig"] = {}


@dataclass
class WorkspaceConfig:
    """Workspace configuration from a .kbconfig file."""

    root: Path
    """Directory holding the .kbconfig file."""

    vaults: list[Vault] = field(default_factory=list)
    """Vaults in declared order. Ambiguous names prefer earlier vaults."""

    noteref: NoteRefConfig = field(default_factory=NoteRefConfig)
    """Expansion options."""

    publish_dir: str = DEFAULT_PUBLISH_DIR
    """Default output directory for `noteref publish`, relative to root."""

    source_file: Path | None = None
    """Path to the .kbconfig file that was loaded."""

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path, source_file: Path | None = None) -> "WorkspaceConfig":
        """Create WorkspaceConfig from parsed YAML dict.

        Raises:
            ConfigurationError: If a section has the wrong shape or values.
        """
        raw_vaults = data.get("vaults") or []
        if not isinstance(raw_vaults, list):
            raise ConfigurationError("'vaults' must be a list of {name, path} entries")

        publish = data.get("publish") or {}
        options = dict(data.get("noteref") or {})
        if not isinstance(publish, dict):
            raise ConfigurationError("'publish' must be a mapping")
        if "base_url" in publish:
            options.setdefault("base_url", publish["base_url"])

        try:
            vaults = [Vault.model_validate(v) for v in raw_vaults]
            noteref = NoteRefConfig.model_validate(options)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                errors.append(f"  - {loc}: {error['msg']}")
            raise ConfigurationError("Invalid .kbconfig:\n" + "\n".join(errors)) from e

        names = [v.name for v in vaults]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate vault names in .kbconfig: {', '.join(duplicates)}")

        if not vaults:
            # A workspace without declared vaults is a single vault
            vaults = [Vault(name=root.name or "root", path=".")]

        return cls(
            root=root,
            vaults=vaults,
            noteref=noteref,
            publish_dir=str(publish.get("output_dir", DEFAULT_PUBLISH_DIR)),
            source_file=source_file,
        )

    def vault_names(self) -> list[str]:
        return [vault.name for vault in self.vaults]


def load_workspace_config(root: Path) -> WorkspaceConfig:
    """Load .kbconfig from a workspace directory.

    Args:
        root: Workspace root directory.

    Returns:
        The loaded configuration, or defaults when no .kbconfig exists.

    Raises:
        ConfigurationError: If the file exists but cannot be read or parsed.
    """
    config_file = root / WORKSPACE_CONFIG_FILENAME

    if not config_file.exists():
        return WorkspaceConfig.from_dict({}, root)

    try:
        content = config_file.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read {config_file}: {e}") from e

    # Handle empty file or all-comments file
    if data is None:
        return WorkspaceConfig.from_dict({}, root, source_file=config_file)

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a YAML mapping")

    return WorkspaceConfig.from_dict(data, root, source_file=config_file)


def get_workspace_config(root: Path) -> WorkspaceConfig:
    """Get workspace config (cached)."""
    cache_key = str(root.resolve())

    if cache_key not in _workspace_cache:
        _workspace_cache[cache_key] = load_workspace_config(root)

    return _workspace_cache[cache_key]


def clear_workspace_cache() -> None:
    """Clear the workspace config cache. Useful for testing or after .kbconfig changes."""
    _workspace_cache.clear()


def load_store(workspace: WorkspaceConfig) -> NoteStore:
    """Load every vault declared by the workspace."""
    return NoteStore.from_vaults(workspace.vaults, root=workspace.root)
