#!/usr/bin/env python3
"""
parser.py

Trace log parser for QTA.

Responsibilities:
  - Recognize trace records: five whitespace-separated fields where the
    third one is the instruction address in hex, e.g.

        0000001a 00000002 80000104 00a00513 li

  - Filter a log down to the records whose address lies inside the primary
    load segment of the ELF (see elf_range.py).
  - Extract the address operand passed to addr2line.

Notes:
  - The record shape lives in LogFormat so that a different simulator trace
    format can be plugged in without touching the annotator.
  - Lines that are not records are dropped silently. They never reach
    addr2line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from qta.elf_range import AddressRange


# ---------------------------------------------------------------------------
# Line formats
# ---------------------------------------------------------------------------

MAX_ADDRESS = 0xFFFFFFFF


@dataclass(frozen=True)
class LogFormat:
    """
    Shape of a trace record.

    Fields:
        record_re:     Regex searched anywhere in the line.
        address_group: Capture group of record_re holding the hex address.
    """
    record_re: re.Pattern
    address_group: int = 1


# <cycle> <hart/flags> <pc> <instr> <mnemonic>
DEFAULT_LOG_FORMAT = LogFormat(
    record_re=re.compile(
        r"[0-9a-fA-F]+\s+[0-9a-fA-F]+\s+([0-9a-fA-F]+)\s+[0-9a-fA-F]+\s+\w+"
    ),
    address_group=1,
)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_log_address(line: str, fmt: LogFormat = DEFAULT_LOG_FORMAT) -> Optional[int]:
    """
    Return the address of a trace record, or None if line is not a record.

    Addresses wider than 32 bits are treated as malformed.
    """
    m = fmt.record_re.search(line)
    if not m:
        return None

    addr = int(m.group(fmt.address_group), 16)
    if addr > MAX_ADDRESS:
        return None
    return addr


def address_operand(line: str) -> Optional[str]:
    """
    Return the third whitespace-delimited token of line, or None.

    This is the text handed to addr2line as-is.
    """
    tokens = line.split()
    if len(tokens) < 3:
        return None
    return tokens[2]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def iter_log_file(path: Union[str, Path]) -> Iterator[str]:
    """
    Yield the lines of a log file, without trailing newlines.

    Opening errors propagate: the log is a required input.
    """
    with Path(path).open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            yield line.rstrip("\r\n")


def filter_log_lines(
    lines: Iterable[str],
    rng: AddressRange,
    fmt: LogFormat = DEFAULT_LOG_FORMAT,
) -> Iterator[str]:
    """
    Yield the records of lines whose address is strictly inside rng.

    Order is preserved and the input is consumed lazily.
    """
    for line in lines:
        line = line.rstrip("\r\n")
        addr = parse_log_address(line, fmt)
        if addr is None:
            continue
        if rng.contains(addr):
            yield line


__all__ = [
    "LogFormat",
    "DEFAULT_LOG_FORMAT",
    "MAX_ADDRESS",
    "parse_log_address",
    "address_operand",
    "iter_log_file",
    "filter_log_lines",
]
