"""Tests for compound-identifier splitting and metadata arguments."""

from __future__ import annotations

import pytest

from sqlbang.quoting import (
    DEFAULT_QUOTING,
    Quoting,
    build_metadata_args,
    like_pattern,
    split_compound,
)

LOWER = Quoting(start='"', end='"', upper=False)
BACKTICKS = Quoting(start="`", end="`", upper=False)


def test_quoted_compound_identifier_keeps_case_and_blanks() -> None:
    words = split_compound('!tables "My Schema"."My Table"')

    assert words == [["!TABLES"], ["My Schema", "My Table"]]


def test_unquoted_words_fold_only_when_the_database_does() -> None:
    assert split_compound("tables scott.emp") == [["TABLES"], ["SCOTT", "EMP"]]
    assert split_compound("tables scott.emp", LOWER) == [
        ["tables"],
        ["scott", "emp"],
    ]


def test_blanks_around_the_dot_are_allowed() -> None:
    assert split_compound("x scott . emp", LOWER) == [["x"], ["scott", "emp"]]


def test_doubled_quote_is_one_quote_character() -> None:
    assert split_compound('x "a""b"') == [["X"], ['a"b']]


def test_null_word_becomes_none() -> None:
    assert split_compound("x NULL.emp") == [["X"], [None, "EMP"]]


def test_unterminated_identifier_is_completed() -> None:
    assert split_compound('x "abc') == [["X"], ["abc"]]


def test_database_specific_quotes() -> None:
    assert split_compound("x `my table`", BACKTICKS) == [["x"], ["my table"]]


def test_trailing_semicolon_is_ignored() -> None:
    assert split_compound("x emp;  ") == [["X"], ["EMP"]]


def test_metadata_args_fill_missing_leading_parts() -> None:
    assert build_metadata_args(
        "primarykeys emp", "table", [None, None], LOWER
    ) == [None, "emp"]
    assert build_metadata_args(
        "primarykeys s.emp", "table", [None, None], LOWER
    ) == ["s", "emp"]


def test_metadata_args_use_defaults_when_argument_is_optional() -> None:
    assert build_metadata_args("tables", "table name", [None, "%"]) == [
        None,
        "%",
    ]


def test_metadata_args_extra_parts_are_dropped() -> None:
    assert build_metadata_args("x a.b.c", "table", [None, None], LOWER) == [
        "a",
        "b",
    ]


def test_metadata_args_missing_required_argument() -> None:
    with pytest.raises(ValueError, match="Usage: PRIMARYKEYS <table name>"):
        build_metadata_args(
            "primarykeys", "table name", [None, None], DEFAULT_QUOTING
        )


def test_like_pattern() -> None:
    assert like_pattern("e%").match("EMP")
    assert not like_pattern("e%").match("dept")
    assert like_pattern("d_pt").match("dept")
    assert not like_pattern("d_pt").match("depot")
    assert like_pattern("a.b").match("a.b")
    assert not like_pattern("a.b").match("axb")
    assert like_pattern(None).match("anything at all")
