"""End-to-end tests for the "!" commands, against a SQLite database."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from sqlbang.commands import _isolation_level, script_statements
from sqlbang.config import load_configuration
from sqlbang.console import ScriptReader
from sqlbang.shell import Shell


def _lines(stream) -> list[str]:
    return stream.getvalue().splitlines()


def _clear(sh: Shell) -> None:
    for stream in (sh.out, sh.err):
        stream.seek(0)
        stream.truncate()


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


def test_connect_usage(shell: Shell) -> None:
    assert shell.dispatch("!connect").is_failure()
    assert _lines(shell.err) == [
        "Usage: connect <url> [user] [password] [driver]"
    ]


def test_connect_reports_the_database(shell: Shell, db_url: str) -> None:
    assert shell.dispatch(f"!open {db_url}").is_success()

    err = _lines(shell.err)
    assert err[0].startswith("Connected to: sqlite (version ")
    assert err[1] == "Driver: pysqlite"
    assert err[2] == "Autocommit status: true"
    assert shell.connections.index == 0


def test_connecting_twice_reuses_the_record(
    connected: Shell, db_url: str
) -> None:
    assert connected.dispatch(f"!connect {db_url}").is_success()
    assert len(connected.connections) == 1


def test_connect_with_a_configuration_section(
    shell: Shell, db_url: str, tmp_path: Path
) -> None:
    path = tmp_path / "config.cfg"
    path.write_text(f'[testdb]\nurl = "{db_url}"\n')
    shell.configuration = load_configuration(path)

    assert shell.dispatch("!connect test").is_success()
    conn = shell.connections.current()
    assert conn is not None
    assert conn.name == "testdb"
    assert conn.spec == db_url


def test_connect_failure(shell: Shell, tmp_path: Path) -> None:
    callback = shell.dispatch("!connect nosuchdialect://localhost/db")

    assert callback.is_failure()
    assert shell.connections.current() is None


def test_properties(shell: Shell, db_url: str, tmp_path: Path) -> None:
    path = tmp_path / "test.properties"
    path.write_text(f'url = "{db_url}"\n')

    assert shell.dispatch(f"!properties {path}").is_success()
    assert shell.connections.current() is not None

    assert shell.dispatch(f"!properties {tmp_path / 'none'}").is_failure()
    assert shell.dispatch("!properties").is_failure()


def test_list_go_and_close(
    connected: Shell, new_database: Callable[[str], str]
) -> None:
    other = new_database("other.db")
    assert connected.dispatch(f"!connect {other}").is_success()
    assert connected.connections.index == 1
    _clear(connected)

    assert connected.dispatch("!list").is_success()
    assert _lines(connected.err) == ["2 active connections:"]
    out = _lines(connected.out)
    assert out[0].startswith(" #0  open     sqlite:///")
    assert out[1].endswith("other.db")

    assert connected.dispatch("!go 0").is_success()
    assert connected.connections.index == 0
    assert connected.prompt().startswith("0: ")

    _clear(connected)
    assert connected.dispatch("!go 7").is_failure()
    assert _lines(connected.err)[0] == "Invalid connection: 7"
    assert connected.dispatch("!go x").is_failure()

    assert connected.dispatch("!close").is_success()
    current = connected.connections.current()
    assert current is not None
    assert str(current).endswith("other.db")

    assert connected.dispatch("!closeall").is_success()
    assert connected.connections.current() is None
    assert connected.dispatch("!close").is_failure()


def test_all(connected: Shell, new_database: Callable[[str], str]) -> None:
    connected.dispatch(f"!connect {new_database('other.db')}")
    _clear(connected)

    assert connected.dispatch("!all select count(*) from dept").is_success()
    executing = [
        line
        for line in _lines(connected.out)
        if line.startswith("Executing SQL against: ")
    ]
    assert len(executing) == 2
    assert connected.connections.index == 1

    assert connected.dispatch("!all select * from nosuch").is_failure()
    assert connected.connections.index == 1
    assert connected.dispatch("!all").is_failure()


def test_reconnect_and_rehash(connected: Shell) -> None:
    assert connected.dispatch("!reconnect").is_success()
    conn = connected.connections.current()
    assert conn is not None
    assert not conn.is_closed
    assert connected.dispatch("!rehash").is_success()


def test_commands_need_a_connection(shell: Shell) -> None:
    commands = (
        "!tables",
        "!columns emp",
        "!reconnect",
        "!commit",
        "!close",
        "!nativesql select 1",
    )
    for command in commands:
        assert shell.dispatch(command).is_failure()

    assert _lines(shell.err) == ["No current connection"] * len(commands)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def test_tables(connected: Shell) -> None:
    assert connected.dispatch("!tables").is_success()

    out = connected.out.getvalue()
    assert "TABLE_NAME" in out
    assert "| main" in out
    assert "dept" in out
    assert "emp" in out


def test_tables_with_a_pattern(connected: Shell) -> None:
    assert connected.dispatch("!tables e%").is_success()

    out = connected.out.getvalue()
    assert "emp" in out
    assert "dept" not in out


def test_columns_and_describe(connected: Shell) -> None:
    assert connected.dispatch("!columns emp").is_success()
    columns = connected.out.getvalue()
    assert "dept_id" in columns
    assert "VARCHAR(20)" in columns

    _clear(connected)
    assert connected.dispatch("!describe emp").is_success()
    assert connected.out.getvalue() == columns

    _clear(connected)
    assert connected.dispatch("!describe tables").is_success()
    assert "TABLE_TYPE" in connected.out.getvalue()

    assert connected.dispatch("!describe").is_failure()


def test_indexes_and_keys(connected: Shell) -> None:
    assert connected.dispatch("!indexes emp").is_success()
    assert "emp_name" in connected.out.getvalue()

    _clear(connected)
    assert connected.dispatch("!primarykeys emp").is_success()
    assert "KEY_SEQ" in connected.out.getvalue()
    assert any(
        line.startswith("| emp ") and "| id " in line
        for line in _lines(connected.out)
    )

    _clear(connected)
    assert connected.dispatch("!importedkeys emp").is_success()
    out = connected.out.getvalue()
    assert "dept_id" in out
    assert "| dept " in out

    _clear(connected)
    assert connected.dispatch("!exportedkeys dept").is_success()
    assert "dept_id" in connected.out.getvalue()


def test_metadata_commands_need_a_table(connected: Shell) -> None:
    assert connected.dispatch("!primarykeys").is_failure()
    assert _lines(connected.err) == ["Usage: primarykeys <table name>"]


def test_procedures_typeinfo_and_dbinfo(connected: Shell) -> None:
    assert connected.dispatch("!procedures").is_success()
    assert "PROCEDURE_NAME" in connected.out.getvalue()

    _clear(connected)
    assert connected.dispatch("!typeinfo").is_success()
    assert "INTEGER" in connected.out.getvalue()

    _clear(connected)
    assert connected.dispatch("!dbinfo").is_success()
    dialect = [
        line for line in _lines(connected.out) if line.startswith("Dialect ")
    ]
    assert dialect == ["Dialect".ljust(50) + "sqlite"]


def test_metadata(connected: Shell) -> None:
    assert connected.dispatch("!metadata GET_TABLE_NAMES").is_success()
    out = connected.out.getvalue()
    assert "get_table_names" in out
    assert "| dept" in out

    assert connected.dispatch("!metadata get_pk_constraint emp").is_success()
    assert connected.dispatch("!metadata has_table emp").is_success()
    assert _lines(connected.out)[-1] == "True"


def test_metadata_unknown_method(connected: Shell) -> None:
    assert connected.dispatch("!metadata nosuch").is_failure()

    err = _lines(connected.err)
    assert err[:2] == ['No such method "nosuch"', "Possible methods:"]
    assert "   get_table_names" in err
    assert connected.dispatch("!metadata").is_failure()


def test_dropall(
    connected: Shell, db_url: str, query_count: Callable[[str, str], int]
) -> None:
    connected.reader = ScriptReader(["n", "y"])
    assert connected.dispatch("!dropall").is_failure()
    assert "Drop all tables aborted." in _lines(connected.err)

    assert connected.dispatch("!dropall").is_success()
    sql = "select count(*) from sqlite_master where type = 'table'"
    assert query_count(db_url, sql) == 0


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def test_set(shell: Shell) -> None:
    assert shell.dispatch("!set").is_success()
    out = _lines(shell.out)
    assert "maxwidth            80" in out
    assert "outputformat        table" in out

    assert shell.dispatch("!set MaxWidth 120").is_success()
    assert shell.options.max_width == 120

    _clear(shell)
    assert shell.dispatch("!set maxwidth").is_success()
    assert _lines(shell.out) == ["maxwidth            120"]


def test_set_errors(shell: Shell) -> None:
    assert shell.dispatch("!set a b c").is_failure()
    assert shell.dispatch("!set nosuch 1").is_failure()
    assert shell.dispatch("!set maxwidth wide").is_failure()

    assert _lines(shell.err)[:2] == [
        "Usage: set <key> <value>",
        'Unknown option "nosuch".',
    ]


def test_save_and_load(shell: Shell) -> None:
    shell.dispatch("!set maxwidth 111")
    assert shell.dispatch("!save").is_success()
    assert shell.options.options_file.exists()

    shell.dispatch("!set maxwidth 80")
    assert shell.dispatch("!load").is_success()
    assert shell.options.max_width == 111


def test_autosave(shell: Shell) -> None:
    shell.dispatch("!set autosave true")
    shell.dispatch("!set maxwidth 70")

    assert "maxwidth = 70" in shell.options.options_file.read_text()


def test_outputformat(shell: Shell) -> None:
    assert shell.dispatch("!outputformat CSV").is_success()
    assert shell.options.output_format == "csv"

    assert shell.dispatch("!outputformat bogus").is_failure()
    assert shell.options.output_format == "csv"
    assert _lines(shell.err)[0].startswith('Unknown output format "bogus"')


def test_nullemptystring_verbose_and_brief(shell: Shell) -> None:
    assert shell.dispatch("!nullemptystring true").is_success()
    assert shell.options.null_empty_string

    assert shell.dispatch("!verbose").is_success()
    assert shell.options.verbose
    assert shell.dispatch("!brief").is_success()
    assert not shell.options.verbose
    assert _lines(shell.err) == ["verbose: on", "verbose: off"]


# ---------------------------------------------------------------------------
# Scripts and recording
# ---------------------------------------------------------------------------


def test_script_statements(shell: Shell) -> None:
    lines = [
        "select 1",
        "  -- a comment",
        "from x;",
        "",
        "# another comment",
        "!set maxwidth 1",
        "select 2",
    ]

    assert script_statements(shell, lines) == [
        "select 1\nfrom x;",
        "!set maxwidth 1",
        "select 2;",
    ]


def test_run(connected: Shell, tmp_path: Path) -> None:
    script = tmp_path / "script.sql"
    script.write_text(
        "-- setup\n"
        "insert into dept\n"
        "  values (5, 'Five');\n"
        "\n"
        "!outputformat csv\n"
        "select name from dept where id = 5\n"
    )

    assert connected.dispatch(f"!run {script}").is_success()
    assert '"Five"' in _lines(connected.out)
    assert _lines(connected.err)[0].startswith("1/3")


def test_run_stops_at_a_failure(connected: Shell, tmp_path: Path) -> None:
    script = tmp_path / "script.sql"
    script.write_text("select * from nosuch;\n!set maxwidth 10\n")

    assert connected.dispatch(f"!run {script}").is_failure()
    assert connected.options.max_width == 80
    assert connected.dispatch("!run").is_failure()


def test_record(shell: Shell, tmp_path: Path) -> None:
    path = tmp_path / "output.txt"
    assert shell.dispatch(f"!record {path}").is_success()
    shell.dispatch("!set maxwidth")
    assert shell.dispatch("!record").is_success()
    shell.dispatch("!set maxheight")

    recorded = path.read_text().splitlines()
    assert "maxwidth            80" in recorded
    assert not any(line.startswith("maxheight") for line in recorded)
    assert shell.record_file is None


def test_sql_command(connected: Shell) -> None:
    assert connected.dispatch("!sql select count(*) from emp").is_success()
    assert "1 row selected" in _lines(connected.err)


def test_nativesql(connected: Shell) -> None:
    callback = connected.dispatch("!nativesql select * from emp where id = :id")

    assert callback.is_success()
    assert _lines(connected.out) == ["select * from emp where id = ?"]


def test_nativesql_usage(connected: Shell) -> None:
    assert connected.dispatch("!nativesql").is_failure()
    assert _lines(connected.err) == ["Usage: nativesql <sql statement>"]


def test_call(connected: Shell) -> None:
    assert connected.dispatch("!call").is_failure()
    assert _lines(connected.err) == ["Usage: call <procedure call>"]

    # SQLite has no stored procedures.
    assert connected.dispatch("!call refresh_totals();").is_failure()
    assert _lines(connected.err)[-1].startswith('Error: near "CALL"')


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def test_batch(
    connected: Shell, db_url: str, query_count: Callable[[str, str], int]
) -> None:
    assert connected.dispatch("!batch").is_success()
    assert connected.dispatch(
        "insert into dept values (7, 'Seven');"
    ).is_success()
    assert connected.dispatch(
        "update emp set name = 'X' where id < 3;"
    ).is_success()
    assert query_count(db_url, "select count(*) from dept") == 2

    assert connected.dispatch("!batch").is_success()
    assert _lines(connected.out) == [
        "COUNT   STATEMENT",
        "1       insert into dept values (7, 'Seven')",
        "2       update emp set name = 'X' where id < 3",
    ]
    assert query_count(db_url, "select count(*) from dept") == 3
    assert connected.batch is None


def test_commit_and_rollback(
    connected: Shell, db_url: str, query_count: Callable[[str, str], int]
) -> None:
    count = "select count(*) from dept where id = 9"
    assert connected.dispatch("!commit").is_failure()
    assert _lines(connected.err) == [
        "Operation requires that autocommit be turned off."
    ]

    assert connected.dispatch("!autocommit off").is_success()
    assert not connected.options.auto_commit

    connected.dispatch("insert into dept values (9, 'Nine');")
    assert connected.dispatch("!rollback").is_success()
    assert query_count(db_url, count) == 0

    connected.dispatch("insert into dept values (9, 'Nine');")
    assert connected.dispatch("!commit").is_success()
    assert query_count(db_url, count) == 1

    err = _lines(connected.err)
    assert "Rollback complete" in err
    assert "Commit complete" in err


def test_autocommit_on_commits_pending_work(
    connected: Shell, db_url: str, query_count: Callable[[str, str], int]
) -> None:
    connected.dispatch("!autocommit off")
    connected.dispatch("delete from emp;")
    assert connected.dispatch("!autocommit on").is_success()

    assert query_count(db_url, "select count(*) from emp") == 0
    assert _lines(connected.err)[-1] == "Autocommit status: true"


def test_isolation(connected: Shell) -> None:
    assert connected.dispatch("!isolation serializable").is_success()
    assert connected.options.isolation == "SERIALIZABLE"

    assert connected.dispatch("!isolation read_committed").is_failure()
    assert connected.dispatch("!isolation").is_failure()
    assert _lines(connected.err)[0].startswith("Usage: isolation <")


def test_isolation_level_names() -> None:
    assert _isolation_level("TRANSACTION_READ_COMMITTED") == "READ COMMITTED"
    assert _isolation_level("repeatable_read") == "REPEATABLE READ"
    assert _isolation_level("autocommit") == "AUTOCOMMIT"


# ---------------------------------------------------------------------------
# Miscellany
# ---------------------------------------------------------------------------


def test_sh(shell: Shell) -> None:
    assert shell.dispatch("!sh echo hello").is_success()
    assert _lines(shell.out) == ["hello"]

    assert shell.dispatch("!sh exit 3").is_failure()
    assert _lines(shell.out)[-1] == "Command failed with exit code = 3"
    assert shell.dispatch("!sh").is_failure()


def test_history(shell: Shell) -> None:
    assert shell.dispatch("!history").is_success()
