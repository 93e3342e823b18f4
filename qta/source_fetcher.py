#!/usr/bin/env python3
"""
source_fetcher.py

Fetch the literal source line an addr2line location points at.
"""

from __future__ import annotations

from itertools import islice
from pathlib import Path

from qta.resolver import NOT_FOUND, parse_location

SOURCE_INDENT = "    "


def fetch_source_line(raw_location: str) -> str:
    """
    Return the source line named by raw_location ("path:line\\n"), indented
    by four spaces and newline terminated.

    Any failure (unparsable location, unreadable file, file too short)
    yields NOT_FOUND instead.
    """
    loc = parse_location(raw_location)
    if loc is None or loc.line is None:
        return NOT_FOUND

    try:
        with Path(loc.file).open("r", encoding="utf-8", errors="replace") as f:
            for text in islice(f, loc.line - 1, loc.line):
                return SOURCE_INDENT + text.rstrip("\r\n") + "\n"
    except OSError:
        return NOT_FOUND

    return NOT_FOUND


__all__ = [
    "SOURCE_INDENT",
    "fetch_source_line",
]
