"""Tests for the text utilities and the colored text buffer."""

from __future__ import annotations

from termcolor import colored

from sqlbang.colors import ColorBuffer, Segment
from sqlbang.text import (
    center,
    dequote,
    is_comment,
    is_help_request,
    pad,
    split,
    wrap,
    xml_encode,
)


def test_dequote_strips_matching_quotes_repeatedly() -> None:
    assert dequote("'\"x\"'") == "x"
    assert dequote("'x\"") == "'x\""
    assert dequote('"') == '"'
    assert dequote(None) is None


def test_split_drops_empty_tokens_and_dequotes() -> None:
    assert split("  go   '1' ") == ["go", "1"]
    assert split("a,,b", ",") == ["a", "b"]


def test_pad_and_center() -> None:
    assert pad("ab", 4) == "ab  "
    assert pad("abcdef", 4) == "abcdef"
    assert pad(None, 3) == "   "
    assert center("ab", 5) == " ab  "
    assert center("abcdef", 3) == "abcdef"


def test_wrap_indents_continuation_lines() -> None:
    assert wrap("one two three", 8, 2) == "one two\n  three"
    assert wrap("", 8, 2) == ""


def test_xml_encode() -> None:
    assert xml_encode('a<b & "c"') == "a&lt;b &amp; &quot;c&quot;"


def test_comments_and_help_requests() -> None:
    assert is_comment("  -- hello")
    assert is_comment("# hello")
    assert not is_comment("select 1 -- trailing")
    assert is_help_request(" ? ")
    assert is_help_request("HELP")
    assert not is_help_request("help me")


def test_buffer_without_color_is_plain_text() -> None:
    buf = ColorBuffer(False).green("| ").append("x").bold(" |")

    assert buf.get_color() == "| x |"
    assert buf.get_mono() == "| x |"
    assert buf.visible_length == 5


def test_buffer_with_color_uses_termcolor() -> None:
    buf = ColorBuffer(True).red("x").append("y")

    assert buf.get_color() == (
        colored("x", "red", attrs=["bold"], force_color=True) + "y"
    )
    assert buf.get_mono() == "xy"
    assert buf.visible_length == 2


def test_truncate_cuts_across_segments() -> None:
    buf = ColorBuffer(True).cyan("abc").append("defg")
    cut = buf.truncate(5)

    assert cut.get_mono() == "abcde"
    assert cut.segments == (Segment("abc", "cyan", ("bold",)), Segment("de"))
    assert buf.truncate(0) is buf


def test_pad_counts_visible_characters_of_a_buffer() -> None:
    inner = ColorBuffer(True).bold("ab")
    buf = ColorBuffer(True).pad(inner, 5).append("|")

    assert buf.get_mono() == "ab   |"
    assert buf.visible_length == 6


def test_buffers_compare_by_visible_text() -> None:
    assert ColorBuffer(True).red("a") == ColorBuffer(False, "a")
    assert ColorBuffer(False, "a") < ColorBuffer(False, "b")


def test_split_keeps_quoted_blanks() -> None:
    assert split('connect "sqlite:///my db.db" scott') == [
        "connect",
        "sqlite:///my db.db",
        "scott",
    ]
    assert split("set nullvalue ''") == ["set", "nullvalue", ""]


def test_split_leaves_backslashes_and_hashes_alone() -> None:
    assert split("run C:\\scripts\\setup.sql") == [
        "run",
        "C:\\scripts\\setup.sql",
    ]
    assert split("# 2") == ["#", "2"]


def test_split_with_an_unbalanced_quote() -> None:
    assert split("describe o'brien") == ["describe", "o'brien"]
