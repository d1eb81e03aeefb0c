from __future__ import annotations

import pytest

from grblstream.services.source import Command, CommandSource, normalize_line


@pytest.mark.parametrize("raw,expected", [
    ("G1 X10\n", "G1 X10"),
    ("G1 X10 ; move right\n", "G1 X10"),
    ("; comment only\n", None),
    ("   \r\n", None),
    ("", None),
    ("G0 Z5\t\t\r\n", "G0 Z5"),
    ("  G0 Z5", "  G0 Z5"),   # leading whitespace is kept
    ("M3 S1000;spindle;on", "M3 S1000"),
])
def test_normalize_line(raw, expected):
    assert normalize_line(raw) == expected


def test_normalize_is_idempotent():
    for raw in ["G1 X10 ; c\n", "  G0 Z5 \t\r\n", "M5"]:
        once = normalize_line(raw)
        assert normalize_line(once) == once


def test_wire_length_counts_terminator():
    cmd = Command("G1 X10")
    assert cmd.wire_length == 7
    assert cmd.to_bytes() == b"G1 X10\n"


def test_source_skips_blank_and_comment_lines():
    src = CommandSource(["G1 X10\n", "; comment only\n", "  \n", "G1 Y10\n"])
    assert [c.text for c in src] == ["G1 X10", "G1 Y10"]
    assert src.read_count == 4
    assert src.skipped_count == 2
    assert src.next_command() is None


def test_push_back_returns_same_command_next():
    src = CommandSource(["A\n", "B\n"])
    a = src.next_command()
    src.push_back(a)
    assert src.next_command() == a
    assert src.next_command() == Command("B")


def test_push_back_holds_only_one():
    src = CommandSource(["A\n"])
    a = src.next_command()
    src.push_back(a)
    with pytest.raises(RuntimeError):
        src.push_back(a)


def test_from_path_reads_file(tmp_path):
    p = tmp_path / "job.gcode"
    p.write_text("G21\n; units\nG90 ; absolute\n\n", encoding="utf-8")
    with CommandSource.from_path(p) as src:
        assert [c.text for c in src] == ["G21", "G90"]


def test_non_ascii_command_is_sent_as_utf8():
    cmd = Command("G1 X10 (10°)")
    assert cmd.to_bytes() == "G1 X10 (10°)\n".encode("utf-8")
    assert b"?" not in cmd.to_bytes()
    # the degree sign is two bytes on the wire
    assert cmd.wire_length == len("G1 X10 (10°)") + 2
