#!/usr/bin/env python3
"""
cli.py

Main entry point for the Quick Trace Annotator (QTA).

Responsibilities:
  - Find the primary load segment of the ELF via elf_range.py
  - Load the trace log and keep the records inside that segment (parser.py)
  - Resolve each record with addr2line (resolver.py) and fetch the source
    line it points at (source_fetcher.py)
  - Group the records by source line (annotator.py) and write the result
  - Provide CLI interface

Usage:
    qta <path/to/elf> <path/to/log> [path/to/output]

The output defaults to "parsed_<log name>" next to the log.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from qta.annotator import LogAnnotator, Progress
from qta.elf_range import BACKENDS, load_address_range
from qta.parser import filter_log_lines, iter_log_file
from qta.resolver import SymbolResolver
from qta.source_fetcher import fetch_source_line
from qta.tool_runner import ToolError, ToolRunner, run_tool


LOG = logging.getLogger("qta")

# Toolchain the simulated target is built with.
DEFAULT_ADDR2LINE = "/tools/riscv/bin/riscv32-unknown-elf-addr2line"

PROGRESS_STEP = 10


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="qta",
        description="Quick Trace Annotator (QTA) - annotate a simulator trace log with source lines.",
    )
    p.add_argument(
        "elf",
        metavar="ELF_PATH",
        help="ELF (with debug info) the traced program was built from.",
    )
    p.add_argument(
        "log",
        metavar="LOG_PATH",
        help="Raw trace log to annotate.",
    )
    p.add_argument(
        "output",
        metavar="OUTPUT_PATH",
        nargs="?",
        help="Annotated output file (default: parsed_<log name> next to the log).",
    )
    p.add_argument(
        "--addr2line",
        help=(
            "addr2line of the toolchain that built the ELF. "
            f"If not set: [cross-prefix]addr2line, or {DEFAULT_ADDR2LINE}"
        ),
    )
    p.add_argument(
        "--readelf",
        help=(
            "readelf used to dump program headers. "
            "If not set: the addr2line path with 'addr2line' replaced by 'readelf'."
        ),
    )
    p.add_argument(
        "--cross-prefix",
        help="GNU cross toolchain prefix, e.g. 'riscv32-unknown-elf-'.",
    )
    p.add_argument(
        "--header-backend",
        choices=BACKENDS,
        default="readelf",
        help="How to read the ELF program headers (default: readelf).",
    )
    p.add_argument(
        "--no-filter",
        action="store_true",
        help="Annotate every log line instead of only those inside the primary load segment.",
    )
    p.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker threads for addr2line (default: 1).",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    return p


def default_output_path(log_path: Path) -> Path:
    return log_path.with_name("parsed_" + log_path.name)


def resolve_tool_paths(
    addr2line: Optional[str],
    readelf: Optional[str],
    cross_prefix: Optional[str],
) -> Tuple[str, str]:
    """
    Decide which addr2line / readelf binaries to run.

    An explicit path wins, then the cross prefix, then the default
    toolchain. readelf is derived from addr2line when not given.
    """
    if addr2line:
        addr2line_bin = addr2line
    elif cross_prefix:
        addr2line_bin = cross_prefix + "addr2line"
    else:
        addr2line_bin = DEFAULT_ADDR2LINE

    if readelf:
        readelf_bin = readelf
    elif cross_prefix and not addr2line:
        readelf_bin = cross_prefix + "readelf"
    else:
        readelf_bin = addr2line_bin.replace("addr2line", "readelf")

    return addr2line_bin, readelf_bin


def _log_progress() -> Progress:
    last = -PROGRESS_STEP

    def report(done: int, total: int) -> None:
        nonlocal last
        pct = done * 100 // total
        if pct - last >= PROGRESS_STEP or done == total:
            last = pct
            LOG.info("Progress: %d%%", pct)

    return report


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_annotation(
    elf_path: Path,
    log_path: Path,
    output_path: Path,
    addr2line_bin: str,
    readelf_bin: str,
    header_backend: str = "readelf",
    use_filter: bool = True,
    workers: int = 1,
    runner: ToolRunner = run_tool,
) -> int:
    """
    Annotate log_path and write the result to output_path.

    Returns the number of annotated records. ToolError and OSError are
    propagated; nothing is written unless the whole log was processed.
    """
    lines: Iterable[str] = iter_log_file(log_path)
    if use_filter:
        rng = load_address_range(elf_path, header_backend, readelf_bin, runner)
        lines = filter_log_lines(lines, rng)
    else:
        LOG.info("Address filtering disabled; annotating every log line")

    records: List[str] = list(lines)
    LOG.info("File %s imported successfully (%d records)", log_path, len(records))

    resolver = SymbolResolver(elf_path, addr2line_bin, runner)
    annotator = LogAnnotator(
        resolve=resolver.resolve,
        fetch=fetch_source_line,
        workers=workers,
        progress=_log_progress(),
    )
    output = annotator.annotate(records)

    output_path.write_text(output, encoding="utf-8")
    LOG.info("Output %s generated successfully", output_path)
    return len(records)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_argparser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    elf_path = Path(args.elf)
    if not elf_path.is_file():
        LOG.error("ELF file does not exist: %s", elf_path)
        raise SystemExit(1)

    log_path = Path(args.log)
    if not log_path.is_file():
        LOG.error("Log file does not exist: %s", log_path)
        raise SystemExit(1)

    output_path = Path(args.output) if args.output else default_output_path(log_path)

    if args.workers < 1:
        LOG.warning("--workers must be at least 1; using 1")
        args.workers = 1

    addr2line_bin, readelf_bin = resolve_tool_paths(args.addr2line, args.readelf, args.cross_prefix)
    LOG.debug("addr2line=%s readelf=%s", addr2line_bin, readelf_bin)

    try:
        run_annotation(
            elf_path=elf_path,
            log_path=log_path,
            output_path=output_path,
            addr2line_bin=addr2line_bin,
            readelf_bin=readelf_bin,
            header_backend=args.header_backend,
            use_filter=not args.no_filter,
            workers=args.workers,
        )
    except ToolError as e:
        LOG.error("%s", e)
        raise SystemExit(1)
    except OSError as e:
        LOG.error("I/O error: %s", e)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
