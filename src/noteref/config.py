"""Configuration management for noteref.

This module contains the configurable constants for reference expansion and
workspace discovery. Magic numbers are documented here rather than scattered
throughout the codebase.
"""

import os
from pathlib import Path

from .errors import ConfigurationError

# =============================================================================
# Workspace discovery
# =============================================================================

# Workspace config filename (marks a directory as a workspace root)
WORKSPACE_CONFIG_FILENAME = ".kbconfig"

# Environment variable that pins the workspace root explicitly
WORKSPACE_ENV_VAR = "NOTEREF_WORKSPACE"

# How many parent directories to walk looking for a .kbconfig
MAX_CONTEXT_SEARCH_DEPTH = 50

# Note file extension inside vault directories
NOTE_SUFFIX = ".md"

# =============================================================================
# Expansion
# =============================================================================

# Maximum nesting of embedded references. A reference met at a depth greater
# than this is embedded with its body left unexpanded. Top-level references of
# a document sit at depth 0, the references inside their bodies at depth 1.
DEFAULT_MAX_EXPANSION_DEPTH = 8

# Default for the older ((ref: [[...]])) token form
DEFAULT_LEGACY_REFERENCE_SYNTAX = True

# Heading levels are capped by markdown itself
MAX_HEADING_LEVEL = 6

# Size of the per-body outline cache used by the anchor extractor
OUTLINE_CACHE_SIZE = 512

# =============================================================================
# Publishing
# =============================================================================

DEFAULT_PUBLISH_DIR = "_site"

# Worker threads used when compiling notes as parallel tasks
PUBLISH_MAX_WORKERS = 8


def find_workspace_root(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` looking for a directory containing .kbconfig.

    Args:
        start: Directory to begin the search from (default: cwd).

    Returns:
        The workspace root, or None if no .kbconfig was found.
    """
    current = (start or Path.cwd()).resolve()

    for _ in range(MAX_CONTEXT_SEARCH_DEPTH):
        if (current / WORKSPACE_CONFIG_FILENAME).is_file():
            return current
        if current.parent == current:
            break
        current = current.parent

    return None


def get_workspace_root(start: Path | None = None) -> Path:
    """Get the workspace root directory.

    Discovery order:
    1. NOTEREF_WORKSPACE environment variable (explicit override)
    2. Walk up from cwd looking for .kbconfig
    3. Error with helpful message

    Raises:
        ConfigurationError: If no workspace can be found.
    """
    root = os.environ.get(WORKSPACE_ENV_VAR)
    if root:
        path = Path(root)
        if not path.is_dir():
            raise ConfigurationError(f"{WORKSPACE_ENV_VAR} points to a missing directory: {root}")
        return path

    discovered = find_workspace_root(start)
    if discovered:
        return discovered

    raise ConfigurationError(
        "No workspace found. Options:\n"
        f"  1. Create a {WORKSPACE_CONFIG_FILENAME} file at the workspace root\n"
        f"  2. Set {WORKSPACE_ENV_VAR} to an existing workspace directory\n"
        "  3. Pass --workspace to the command"
    )
