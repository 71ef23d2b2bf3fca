"""Parsing of notes, reference tokens and anchor ranges."""

from .anchors import extract, outline, renumber_headings, slugify
from .markdown import ParseError, parse_note, parse_note_text, split_lines
from .refs import TextRun, create_parser, extract_refs, parse_note_ref, scan

__all__ = [
    "ParseError",
    "TextRun",
    "create_parser",
    "extract",
    "extract_refs",
    "outline",
    "parse_note",
    "parse_note_ref",
    "parse_note_text",
    "renumber_headings",
    "scan",
    "slugify",
    "split_lines",
]
