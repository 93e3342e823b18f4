"""End-to-end tests for the qta command line."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import pytest

from qta.cli import (
    DEFAULT_ADDR2LINE,
    default_output_path,
    main,
    resolve_tool_paths,
    run_annotation,
)
from qta.resolver import NOT_FOUND


READELF = """\
Elf file type is EXEC (Executable file)
Entry point 0x8000
There are 1 program headers, starting at offset 52

Program Headers:
  Type           Offset   VirtAddr   PhysAddr   FileSiz MemSiz  Flg Align
  LOAD           0x001000 0x00008000 0x00008000 0x00100 0x00100 R E 0x1000
"""


class FakeToolchain:
    """Stand-in for readelf and addr2line."""

    def __init__(self, src: Path) -> None:
        self.src = src
        self.calls: List[List[str]] = []

    def __call__(self, cmd: Sequence[str]) -> str:
        self.calls.append(list(cmd))
        if cmd[1] == "-l":
            return READELF
        addr = int(cmd[-1], 16)
        if addr < 0x8020:
            return f"{self.src}:2\n"
        if addr < 0x8040:
            return f"{self.src}:3\n"
        return "??:0\n"


@pytest.fixture
def workspace(tmp_path: Path):
    src = tmp_path / "main.c"
    src.write_text("int main(void) {\n    int x = 1;\n    return x;\n}\n", encoding="utf-8")

    log = tmp_path / "trace.log"
    log.write_text(
        "Loading firmware...\n"
        "00000001 00000000 00008000 00000297 auipc\n"
        "00000002 00000000 00008004 00a00513 li\n"
        "00000003 00000000 00008008 00b00593 li\n"
        "00000004 00000000 00008024 00008067 ret\n"
        "00000005 00000000 00008050 00000013 nop\n"
        "00000006 00000000 20000000 00000013 nop\n"
        "00000007 00000000 00008054 00000013 nop\n",
        encoding="utf-8",
    )
    elf = tmp_path / "fw.elf"
    elf.write_bytes(b"\x7fELF")
    return tmp_path, src, log, elf


def test_default_output_path() -> None:
    assert default_output_path(Path("logs/trace.log")) == Path("logs/parsed_trace.log")


@pytest.mark.parametrize(
    "addr2line, readelf, prefix, expected",
    [
        (None, None, None, (DEFAULT_ADDR2LINE, "/tools/riscv/bin/riscv32-unknown-elf-readelf")),
        (None, None, "riscv64-linux-gnu-", ("riscv64-linux-gnu-addr2line", "riscv64-linux-gnu-readelf")),
        ("/opt/x/bin/addr2line", None, "ignored-", ("/opt/x/bin/addr2line", "/opt/x/bin/readelf")),
        ("/opt/x/bin/addr2line", "/usr/bin/readelf", None, ("/opt/x/bin/addr2line", "/usr/bin/readelf")),
    ],
)
def test_resolve_tool_paths(addr2line, readelf, prefix, expected) -> None:
    assert resolve_tool_paths(addr2line, readelf, prefix) == expected


def test_run_annotation_filters_and_groups(workspace) -> None:
    tmp_path, src, log, elf = workspace
    out = tmp_path / "out.txt"
    tools = FakeToolchain(src)

    count = run_annotation(elf, log, out, "addr2line", "readelf", runner=tools)

    assert count == 5
    assert out.read_text(encoding="utf-8") == (
        f"\n{src}:2\n"
        "        int x = 1;\n"
        "00000002 00000000 00008004 00a00513 li\n"
        "00000003 00000000 00008008 00b00593 li\n"
        f"\n{src}:3\n"
        "        return x;\n"
        "00000004 00000000 00008024 00008067 ret\n"
        "\n??:0\n"
        + NOT_FOUND
        + "00000005 00000000 00008050 00000013 nop\n"
        "00000007 00000000 00008054 00000013 nop\n"
    )
    assert tools.calls[0] == ["readelf", "-l", str(elf)]
    assert len(tools.calls) == 1 + count


def test_run_annotation_without_filter_annotates_every_line(workspace) -> None:
    tmp_path, src, log, elf = workspace
    out = tmp_path / "out.txt"
    tools = FakeToolchain(src)

    count = run_annotation(elf, log, out, "addr2line", "readelf", use_filter=False, runner=tools)

    assert count == 8
    text = out.read_text(encoding="utf-8")
    assert text.startswith("\n" + NOT_FOUND + NOT_FOUND + "Loading firmware...\n")
    assert "00000006 00000000 20000000 00000013 nop\n" in text
    assert all(call[1] == "-e" for call in tools.calls)


def test_run_annotation_parallel_matches_serial(workspace) -> None:
    tmp_path, src, log, elf = workspace
    serial = tmp_path / "serial.txt"
    parallel = tmp_path / "parallel.txt"

    run_annotation(elf, log, serial, "addr2line", "readelf", runner=FakeToolchain(src))
    run_annotation(elf, log, parallel, "addr2line", "readelf", workers=4, runner=FakeToolchain(src))
    assert parallel.read_text(encoding="utf-8") == serial.read_text(encoding="utf-8")


def test_main_requires_elf_and_log(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["fw.elf"])
    assert exc.value.code != 0
    assert "usage" in capsys.readouterr().err


def test_main_missing_elf_exits(tmp_path: Path) -> None:
    log = tmp_path / "trace.log"
    log.write_text("", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "missing.elf"), str(log)])
    assert exc.value.code == 1


def test_main_missing_toolchain_is_fatal_and_writes_nothing(workspace) -> None:
    tmp_path, _, log, elf = workspace
    with pytest.raises(SystemExit) as exc:
        main([str(elf), str(log), "--addr2line", str(tmp_path / "bin" / "addr2line")])
    assert exc.value.code == 1
    assert not default_output_path(log).exists()
