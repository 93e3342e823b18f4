#!/usr/bin/env python3
"""
annotator.py

Group trace records under the source line they come from.

Output layout, for each run of consecutive records resolving to the same
addr2line text:

    <blank line>
    src/foo.c:10
        int x = 1;
    <record>
    <record>
    ...

The grouping is a fold over the records carrying one piece of state, the
raw addr2line text of the previous record. annotate_step() is that fold
step; LogAnnotator drives it and owns the output buffer.

Resolution of each record is independent, so LogAnnotator can run addr2line
on a thread pool. Results are still consumed in the original record order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

LOG = logging.getLogger("annotator")

Resolve = Callable[[str], str]
Fetch = Callable[[str], str]
Progress = Callable[[int, int], None]


@dataclass(frozen=True)
class AnnotationState:
    """
    State carried between records: the raw location of the previous one.
    """
    last_location: str = ""


def header_block(raw_location: str, source_text: str) -> str:
    return "\n" + raw_location + source_text


def annotate_step(
    state: AnnotationState,
    line: str,
    raw_location: str,
    fetch: Fetch,
) -> Tuple[AnnotationState, str]:
    """
    Emit the text for one record.

    fetch is only called when the location differs from the previous
    record's, so unchanged runs never touch the source file again.
    """
    if raw_location != state.last_location:
        block = header_block(raw_location, fetch(raw_location)) + line + "\n"
    else:
        block = line + "\n"
    return AnnotationState(last_location=raw_location), block


class LogAnnotator:
    """
    Build the annotated log for a sequence of trace records.

    Args:
        resolve:
            Record -> raw addr2line text (see SymbolResolver.resolve).
        fetch:
            Raw addr2line text -> indented source line (see fetch_source_line).
        workers:
            Number of threads resolving records. 1 resolves inline.
        progress:
            Optional callback receiving (done, total) after each record.
    """

    def __init__(
        self,
        resolve: Resolve,
        fetch: Fetch,
        workers: int = 1,
        progress: Optional[Progress] = None,
    ) -> None:
        self.resolve = resolve
        self.fetch = fetch
        self.workers = max(1, workers)
        self.progress = progress

    def _resolved(self, lines: Sequence[str]) -> Iterator[str]:
        if self.workers == 1:
            for line in lines:
                yield self.resolve(line)
            return

        LOG.debug("Resolving %d records with %d workers", len(lines), self.workers)
        with ThreadPoolExecutor(max_workers=self.workers) as ex:
            # map() yields in submission order.
            yield from ex.map(self.resolve, lines)

    def annotate(self, lines: Iterable[str]) -> str:
        records: List[str] = list(lines)
        total = len(records)
        LOG.info("Annotating %d records", total)

        state = AnnotationState()
        out: List[str] = []
        for count, (line, raw_location) in enumerate(zip(records, self._resolved(records)), 1):
            state, block = annotate_step(state, line, raw_location, self.fetch)
            out.append(block)
            if self.progress is not None:
                self.progress(count, total)

        return "".join(out)


__all__ = [
    "AnnotationState",
    "LogAnnotator",
    "annotate_step",
    "header_block",
]
