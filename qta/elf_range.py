#!/usr/bin/env python3
"""
elf_range.py

Find the address range of the primary load segment of an ELF.

The range is used to drop log lines whose address lies outside the code the
ELF describes (heap, stack, ROM, ...), so that addr2line is only invoked for
addresses it can actually resolve.

Rules:
  - The entry point selects the segment: the first PT_LOAD whose base,
    masked with SEGMENT_MASK, equals the masked entry point wins.
  - Later LOAD segments are ignored once one has matched.
  - If there is no entry point, or no segment matches, the range is
    AddressRange(UNSET_START, 0), which lets no address through.

Two backends produce the same result:
  - "readelf": parse the text of "readelf -l <elf>" (default).
  - "pyelf":   read the program headers in-process with pyelftools.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from qta.tool_runner import (
    ToolError,
    ToolRunner,
    run_readelf_program_headers,
    run_tool,
)

LOG = logging.getLogger("elf_range")

UNSET_START = 0xFFFFFFFF
SEGMENT_MASK = 0xFFFF0000

BACKENDS = ("readelf", "pyelf")


# ---------------------------------------------------------------------------
# Regexes (readelf -l output)
# ---------------------------------------------------------------------------

# "Entry point 0x80000000"
ENTRY_POINT_RE = re.compile(r"Entry point\s+0x(?P<entry>[0-9a-fA-F]+)")

# "  LOAD  0x001000 0x80000000 0x80000000 0x01a2c 0x01a2c R E 0x1000"
#          Offset   VirtAddr   PhysAddr   FileSiz MemSiz
LOAD_SEGMENT_RE = re.compile(
    r"LOAD\s+"
    r"0x[0-9a-fA-F]+\s+"               # Offset
    r"0x(?P<vaddr>[0-9a-fA-F]+)\s+"    # VirtAddr
    r"0x[0-9a-fA-F]+\s+"               # PhysAddr
    r"0x[0-9a-fA-F]+\s+"               # FileSiz
    r"0x(?P<memsz>[0-9a-fA-F]+)"       # MemSiz
)

_LOAD_START_RE = re.compile(r"^\s*LOAD\b")
_CONTINUATION_RE = re.compile(r"^\s+0x[0-9a-fA-F]+")


@dataclass(frozen=True)
class AddressRange:
    """
    Address window of the primary load segment.

    contains() is strict on both ends: an address equal to start or to
    start + size is outside the range.
    """
    start: int = UNSET_START
    size: int = 0

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def is_empty(self) -> bool:
        return self.start == UNSET_START or self.size == 0

    def contains(self, addr: int) -> bool:
        return self.start < addr < self.start + self.size

    def __str__(self) -> str:
        if self.start == UNSET_START:
            return "<unset>"
        return f"[0x{self.start:08x}, 0x{self.end:08x})"


# ---------------------------------------------------------------------------
# Segment selection (shared by both backends)
# ---------------------------------------------------------------------------

def select_load_segment(
    entry: Optional[int],
    segments: Iterable[Tuple[int, int]],
) -> AddressRange:
    """
    Pick the (base, size) segment that contains the entry point.

    segments is consumed lazily and iteration stops at the first match.
    """
    if entry is None:
        return AddressRange()

    wanted = entry & SEGMENT_MASK
    for base, size in segments:
        if base & SEGMENT_MASK == wanted:
            return AddressRange(start=base, size=size)
    return AddressRange()


# ---------------------------------------------------------------------------
# readelf backend
# ---------------------------------------------------------------------------

def _iter_joined_lines(text: str) -> Iterator[str]:
    """
    Yield the lines of text, gluing the continuation line that 64-bit
    readelf prints after each LOAD line back onto it.
    """
    pending: Optional[str] = None
    for line in text.splitlines():
        if pending is not None:
            if _CONTINUATION_RE.match(line):
                yield pending + " " + line.strip()
                pending = None
                continue
            yield pending
            pending = None

        if _LOAD_START_RE.match(line) and not LOAD_SEGMENT_RE.search(line):
            pending = line
            continue
        yield line

    if pending is not None:
        yield pending


def extract_address_range(header_text: str) -> AddressRange:
    """
    Parse "readelf -l" text into the primary load segment range.

    The entry point line always precedes the program header table in
    readelf output; LOAD lines seen before it cannot match.
    """
    entry: Optional[int] = None

    for line in _iter_joined_lines(header_text):
        m = ENTRY_POINT_RE.search(line)
        if m:
            entry = int(m.group("entry"), 16)
            continue

        m = LOAD_SEGMENT_RE.search(line)
        if m is None or entry is None:
            continue

        base = int(m.group("vaddr"), 16)
        if base & SEGMENT_MASK == entry & SEGMENT_MASK:
            return AddressRange(start=base, size=int(m.group("memsz"), 16))

    return AddressRange()


# ---------------------------------------------------------------------------
# pyelftools backend
# ---------------------------------------------------------------------------

def address_range_from_elf(elf_path: Union[str, Path]) -> AddressRange:
    """
    Read e_entry and the PT_LOAD program headers with pyelftools.
    """
    try:
        with open(elf_path, "rb") as f:
            elf = ELFFile(f)
            entry = int(elf.header["e_entry"])
            segments: List[Tuple[int, int]] = [
                (int(seg.header.p_vaddr), int(seg.header.p_memsz))
                for seg in elf.iter_segments()
                if seg.header.p_type == "PT_LOAD"
            ]
    except ELFError as e:
        raise ToolError(f"pyelftools failed to parse {elf_path}: {e}") from e

    LOG.debug("Entry point 0x%x, %d LOAD segments", entry, len(segments))
    return select_load_segment(entry, segments)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_address_range(
    elf_path: Union[str, Path],
    backend: str = "readelf",
    readelf_bin: str = "readelf",
    runner: ToolRunner = run_tool,
) -> AddressRange:
    """
    Compute the primary load segment range of elf_path with the given backend.
    """
    if backend == "pyelf":
        rng = address_range_from_elf(elf_path)
    elif backend == "readelf":
        text = run_readelf_program_headers(elf_path, readelf_bin, runner)
        rng = extract_address_range(text)
    else:
        raise ValueError(f"Unknown header backend: {backend}")

    if rng.is_empty:
        LOG.warning("No LOAD segment matches the entry point of %s; no log line will pass", elf_path)
    else:
        LOG.info("Primary load segment of %s: %s", elf_path, rng)
    return rng


__all__ = [
    "AddressRange",
    "UNSET_START",
    "SEGMENT_MASK",
    "BACKENDS",
    "select_load_segment",
    "extract_address_range",
    "address_range_from_elf",
    "load_address_range",
]
