#!/usr/bin/env python3
"""
tool_runner.py

Helper module to run the toolchain binaries QTA depends on.

This module provides:

  - ToolRunner: the callable interface used to invoke an external tool.
    Anything that takes an argv list and returns decoded stdout fits, so
    tests can pass a fake instead of spawning real processes.
  - run_tool(): default ToolRunner backed by subprocess.
  - run_addr2line(): "<addr2line> -e <elf> <addr>" for a single address.
  - run_readelf_program_headers(): "<readelf> -l <elf>".

Failures to launch a tool or to decode its output raise ToolError. Those
tools are a precondition for the run, so callers are expected to abort
rather than degrade.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Sequence, Union

LOG = logging.getLogger("tool_runner")

ToolRunner = Callable[[Sequence[str]], str]


class ToolError(RuntimeError):
    """An external tool could not be run or produced unreadable output."""


def run_tool(cmd: Sequence[str]) -> str:
    """
    Run cmd and return its stdout decoded as UTF-8.

    A non-zero exit status is logged together with stderr but the output is
    still returned: addr2line and readelf report most problems in-band.
    """
    try:
        proc = subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except FileNotFoundError as e:
        raise ToolError(f"{cmd[0]} not found when running: {' '.join(cmd)}") from e
    except OSError as e:
        raise ToolError(f"Failed to execute {cmd[0]}: {e}") from e

    if proc.returncode != 0:
        LOG.warning(
            "%s exited with code %d: %s",
            cmd[0],
            proc.returncode,
            proc.stderr.decode("utf-8", errors="replace").strip(),
        )

    try:
        return proc.stdout.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ToolError(f"{cmd[0]} produced non UTF-8 output: {e}") from e


def run_addr2line(
    addr: str,
    elf_file: Union[str, Path],
    addr2line_bin: str,
    runner: ToolRunner = run_tool,
) -> str:
    """
    Resolve a single address with addr2line.

    The address is passed through exactly as it appeared in the log;
    addr2line reads it as hex with or without a "0x" prefix.
    """
    cmd: List[str] = [addr2line_bin, "-e", str(elf_file), addr]
    LOG.debug("Running: %s", " ".join(cmd))
    return runner(cmd)


def run_readelf_program_headers(
    elf_file: Union[str, Path],
    readelf_bin: str,
    runner: ToolRunner = run_tool,
) -> str:
    """
    Dump the program headers of elf_file ("readelf -l").
    """
    cmd: List[str] = [readelf_bin, "-l", str(elf_file)]
    LOG.debug("Running: %s", " ".join(cmd))
    return runner(cmd)


__all__ = [
    "ToolError",
    "ToolRunner",
    "run_tool",
    "run_addr2line",
    "run_readelf_program_headers",
]
