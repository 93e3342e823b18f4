#!/usr/bin/env python3
"""
resolver.py

Resolve a trace record to the "file:line" text reported by addr2line.

The raw text is what the annotator groups on, so it is returned untouched
apart from keeping only the first output line. parse_location() turns it
into a SourceLocation for the places that need the parts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from qta.parser import address_operand
from qta.tool_runner import ToolRunner, run_addr2line, run_tool

LOG = logging.getLogger("resolver")

# Placeholder rendered wherever a location or source line cannot be found.
NOT_FOUND = "    Not found\n"


@dataclass(frozen=True)
class SourceLocation:
    """
    Parsed addr2line location.

    line is None when the part after the colon is not a positive number
    (e.g. "??:?" or "foo.c:12 (discriminator 3)").
    """
    file: str
    line: Optional[int]


def parse_location(raw: str) -> Optional[SourceLocation]:
    """
    Split "path:line_number" on the first colon.

    Returns None for the sentinel and for text without a colon.
    """
    filename, sep, number = raw.partition(":")
    if not sep:
        return None

    try:
        line: Optional[int] = int(number.rstrip())
    except ValueError:
        line = None
    if line is not None and line <= 0:
        line = None

    return SourceLocation(file=filename, line=line)


class SymbolResolver:
    """
    Map trace records to addr2line output for a single ELF.
    """

    def __init__(
        self,
        elf_path: Union[str, Path],
        addr2line_bin: str,
        runner: ToolRunner = run_tool,
    ) -> None:
        self.elf_path = Path(elf_path)
        self.addr2line_bin = addr2line_bin
        self.runner = runner

    def resolve(self, line: str) -> str:
        """
        Return "file:line\\n" for the address of line, or NOT_FOUND.

        ToolError from the runner is not caught here.
        """
        addr = address_operand(line)
        if addr is None:
            return NOT_FOUND

        out = run_addr2line(addr, self.elf_path, self.addr2line_bin, self.runner)
        first = out.splitlines()[0] if out else ""
        if not first:
            LOG.debug("addr2line printed nothing for %s", addr)
            return NOT_FOUND
        return first + "\n"

    __call__ = resolve


__all__ = [
    "NOT_FOUND",
    "SourceLocation",
    "parse_location",
    "SymbolResolver",
]
