"""Shared fixtures: quiet options, in-memory output streams and a small
SQLite database."""

from __future__ import annotations

import io
import sqlite3
from pathlib import Path
from typing import Callable, Iterable

import pytest

from sqlbang.colors import ColorBuffer
from sqlbang.console import ScriptReader
from sqlbang.dispatch import CommandTable
from sqlbang.options import ShellOptions
from sqlbang.shell import Shell

SCHEMA = """
CREATE TABLE dept (
    id INTEGER PRIMARY KEY,
    name VARCHAR(20) NOT NULL
);
CREATE TABLE emp (
    id INTEGER PRIMARY KEY,
    name VARCHAR(20),
    dept_id INTEGER REFERENCES dept(id)
);
CREATE INDEX emp_name ON emp(name);
INSERT INTO dept VALUES (1, 'Sales'), (2, 'Research');
INSERT INTO emp VALUES (1, 'Alice', 1), (2, 'Bob', 2), (3, 'Carol', NULL);
"""


class RecordingSink:
    """Collects what an output format writes."""

    def __init__(self, options: ShellOptions) -> None:
        self.options = options
        self.lines: list[str] = []

    def output(self, msg: str | ColorBuffer) -> None:
        if isinstance(msg, ColorBuffer):
            msg = msg.get_color()
        self.lines.append(msg)

    def color_buffer(self, text: str = "") -> ColorBuffer:
        return ColorBuffer(self.options.color, text)


def create_database(path: Path, script: str = SCHEMA) -> str:
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()
    return f"sqlite:///{path}"


def count_rows(url: str, sql: str) -> int:
    conn = sqlite3.connect(url.removeprefix("sqlite:///"))
    try:
        return conn.execute(sql).fetchone()[0]
    finally:
        conn.close()


@pytest.fixture
def options(tmp_path: Path) -> ShellOptions:
    return ShellOptions(
        options_file=tmp_path / "options.toml", show_elapsed_time=False
    )


@pytest.fixture
def sink(options: ShellOptions) -> RecordingSink:
    return RecordingSink(options)


@pytest.fixture
def make_shell(
    options: ShellOptions,
) -> Callable[..., Shell]:
    def factory(
        lines: Iterable[str] = (), commands: CommandTable | None = None
    ) -> Shell:
        return Shell(
            options=options,
            reader=ScriptReader(lines),
            out=io.StringIO(),
            err=io.StringIO(),
            commands=commands,
        )

    return factory


@pytest.fixture
def shell(make_shell: Callable[..., Shell]) -> Shell:
    return make_shell()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return create_database(tmp_path / "test.db")


@pytest.fixture
def connected(make_shell: Callable[..., Shell], db_url: str) -> Shell:
    """A shell connected to the test database, with empty output streams."""
    sh = make_shell()
    callback = sh.dispatch(f"!connect {db_url}")
    assert callback.is_success(), sh.err.getvalue()
    sh.out, sh.err = io.StringIO(), io.StringIO()
    return sh


@pytest.fixture
def new_database(tmp_path: Path) -> Callable[[str], str]:
    """Creates another copy of the test database, by file name."""

    def factory(name: str) -> str:
        return create_database(tmp_path / name)

    return factory


@pytest.fixture
def query_count() -> Callable[[str, str], int]:
    """Runs a COUNT query with a separate SQLite connection."""
    return count_rows
