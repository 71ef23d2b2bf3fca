"""noteref: note-reference expansion for markdown knowledge bases."""

__version__ = "0.3.0"
