"""
The "!" commands, and the path that runs SQL statements. Every command is a
plain function taking the shell, the command line (without the "!") and the
dispatch callback, and reports its outcome through the callback. The
commands are bound to their names in build_command_table().
"""

import subprocess
import time
import warnings
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

import sqlalchemy
from sqlalchemy.engine import Inspector

from sqlbang.config import SqlBangError, load_connection_properties
from sqlbang.connections import (
    CursorResultAdapter,
    DatabaseConnection,
    QueryTimer,
)
from sqlbang.console import history_items
from sqlbang.dispatch import CommandHandler, CommandTable, DispatchCallback
from sqlbang.formats import FORMAT_NAMES, make_format
from sqlbang.options import to_bool
from sqlbang.quoting import build_metadata_args, like_pattern
from sqlbang.rows import ListCursor
from sqlbang.text import is_comment, is_help_request, pad, split, wrap

if TYPE_CHECKING:
    from sqlbang.shell import Shell

NO_CURRENT_CONNECTION = "No current connection"
COMMAND_CANCELED = "Command canceled."
CONNECTION_USAGE = "Usage: connect <url> [user] [password] [driver]"
ISOLATION_USAGE = (
    "Usage: isolation <READ_COMMITTED | READ_UNCOMMITTED | "
    "REPEATABLE_READ | SERIALIZABLE | AUTOCOMMIT>"
)
DBINFO_PAD = 50
HELP_NAME_WIDTH = 20
HELP_TEXT_WIDTH = 60
# The routine catalog, where the database has one.
PROCEDURES_QUERY = (
    "SELECT routine_schema, routine_name, routine_type "
    "FROM information_schema.routines"
)


def _plural(n: int, noun: str) -> str:
    return f"{n} {noun}" if n == 1 else f"{n} {noun}s"


def _rest(line: str) -> str:
    """
    Everything after the command word.
    """
    parts = line.strip().split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


def _report(shell: "Shell", action: str, elapsed: float) -> None:
    if shell.options.show_elapsed_time:
        shell.info(f"{action} ({elapsed:.3f} seconds)")
    else:
        shell.info(action)


def _current(
    shell: "Shell", callback: DispatchCallback
) -> DatabaseConnection | None:
    """
    Return the current connection, if it's open. Otherwise, report the
    problem, mark the dispatch failed and return None.
    """
    if not shell.assert_connection():
        callback.set_to_failure()
        return None
    return shell.connections.current()


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


def execute_sql(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Run a SQL statement against the current connection. If multi-line
    commands are allowed and the statement doesn't end with ";", more lines
    are read (and joined with a blank) until one does. Comment lines read
    this way are dropped.
    """
    if not line.strip():
        callback.set_to_failure()
        return

    try:
        while (
            not line.strip().endswith(";")
            and shell.options.allow_multi_line_command
        ):
            extra = shell.reader.read_line(shell.continuation_prompt())
            if extra is None:
                # End of input. Run what we have.
                break
            if not is_comment(extra):
                line = f"{line} {extra}"
                if shell.script_file is not None and extra.strip():
                    shell.script_file.add_line(extra.strip())
    except KeyboardInterrupt:
        callback.set_to_cancel()
        shell.output(COMMAND_CANCELED)
        return

    sql = line.strip()
    if sql.endswith(";"):
        sql = sql[:-1]

    if (conn := _current(shell, callback)) is None:
        return

    if shell.batch is not None:
        shell.batch.append(sql)
        callback.set_to_success()
        return

    try:
        _run_statement(shell, conn, sql, callback)
    # pylint: disable=broad-except
    except Exception as e:
        if shell.options.auto_commit and not conn.is_closed:
            with suppress(sqlalchemy.exc.SQLAlchemyError):
                conn.rollback()

        if callback.is_canceled():
            shell.output(COMMAND_CANCELED)
        else:
            callback.set_to_failure()
            shell.handle_exception(e)


def _run_statement(
    shell: "Shell",
    conn: DatabaseConnection,
    sql: str,
    callback: DispatchCallback,
) -> None:
    opts = shell.options
    handle = conn.query_handle()
    callback.track_query(handle)
    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            with QueryTimer(handle, opts.timeout) as timer:
                try:
                    _execute_and_print(shell, conn, sql, callback)
                except sqlalchemy.exc.DBAPIError as e:
                    if timer.expired:
                        raise SqlBangError(
                            f"Statement timed out after {opts.timeout} "
                            "seconds."
                        ) from e
                    raise

            if opts.auto_commit and conn.in_transaction():
                conn.commit()

        shell.show_warnings(caught)
    finally:
        callback.track_query(None)

    if callback.is_canceled():
        shell.output(COMMAND_CANCELED)
    else:
        callback.set_to_success()


def _execute_and_print(
    shell: "Shell",
    conn: DatabaseConnection,
    sql: str,
    callback: DispatchCallback,
) -> None:
    """
    Execute a statement, and print every result set it returns, or the
    number of rows it changed.
    """
    table = conn.source_table(sql)
    start = time.monotonic()
    result = conn.execute(sql)
    if not result.returns_rows:
        count = result.rowcount
        result.close()
        if count > 0:
            action = f"{_plural(count, 'row')} affected"
        else:
            action = "No rows affected"
        _report(shell, action, time.monotonic() - start)
        return

    adapter = CursorResultAdapter(result, table)
    try:
        while True:
            count = shell.print_rows(adapter, callback, conn.is_primary_key)
            _report(
                shell,
                f"{_plural(count, 'row')} selected",
                time.monotonic() - start,
            )
            if callback.is_canceled() or not adapter.next_result():
                break
    finally:
        adapter.close()


def sql_command(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    execute_sql(shell, _rest(line), callback)


def call(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Run a stored procedure call, e.g. "!call update_totals(2024)".
    """
    if not (procedure := _rest(line)):
        callback.set_to_failure()
        shell.error("Usage: call <procedure call>")
        return

    execute_sql(shell, f"CALL {procedure}", callback)


def nativesql(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Show a statement the way the current connection's driver receives it,
    with ":name" parameters in the driver's own style.
    """
    if (conn := _current(shell, callback)) is None:
        return

    sql = _rest(line)
    if not sql:
        callback.set_to_failure()
        shell.error("Usage: nativesql <sql statement>")
        return

    compiled = sqlalchemy.text(sql).compile(dialect=conn.require().dialect)
    shell.output(str(compiled))
    callback.set_to_success()


def all_connections(
    shell: "Shell", line: str, callback: DispatchCallback
) -> None:
    """
    Run one statement against every connection in turn. The current
    connection is restored afterwards, whatever happens.
    """
    statement = _rest(line)
    if not statement:
        callback.set_to_failure()
        shell.error("Usage: all <sql statement>")
        return

    if not statement.endswith(";"):
        statement += ";"

    connections = shell.connections
    index = connections.index
    success = True
    try:
        for i in range(len(connections)):
            connections.set_index(i)
            shell.output(f"Executing SQL against: {connections[i]}")
            execute_sql(shell, statement, callback)
            success = callback.is_success() and success
    finally:
        if index != -1:
            connections.set_index(index)

    if success:
        callback.set_to_success()
    else:
        callback.set_to_failure()


def batch(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    The first "!batch" starts collecting statements; the second runs them.
    """
    if _current(shell, callback) is None:
        return

    if shell.batch is None:
        shell.batch = []
        shell.info('Batching SQL statements. Run "batch" to execute.')
        callback.set_to_success()
        return

    shell.info("Running batched SQL statements...")
    statements, shell.batch = shell.batch, None
    if shell.run_batch(statements):
        callback.set_to_success()
    else:
        callback.set_to_failure()


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


# pylint: disable=too-many-arguments,too-many-positional-arguments
def open_connection(
    shell: "Shell",
    spec: str,
    user: str | None,
    password: str | None,
    driver: str | None,
    callback: DispatchCallback,
) -> None:
    """
    Connect to a database and make the connection current. `spec` is either
    a SQLAlchemy URL or (a prefix of) the name of a section in the
    configuration file. If a connection with the same URL, driver and user
    is already registered, it's reopened rather than duplicated.

    :raises TooManyMatchesError: if `spec` matches several sections
    """
    name: str | None = None
    if shell.configuration is not None:
        if (cfg := shell.configuration.find(spec)) is not None:
            name = cfg.name
            spec = cfg.url
            user = user or cfg.user
            password = password or cfg.password
            driver = driver or cfg.driver

    conn = shell.connections.find(spec, driver, user)
    if conn is None:
        conn = DatabaseConnection(spec, user, password, driver, name)
    elif password is not None:
        conn.set_password(password)

    shell.debug(f"Connecting to {conn}")
    conn.connect(shell.options.fast_connect)
    shell.connections.set_connection(conn)

    if shell.options.isolation.lower() != "default":
        conn.set_isolation(_isolation_level(shell.options.isolation))

    dialect = conn.require().dialect
    version = ".".join(str(v) for v in dialect.server_version_info or ())
    shell.info(f"Connected to: {dialect.name} (version {version or '?'})")
    shell.info(f"Driver: {dialect.driver}")
    shell.info(f"Autocommit status: {str(shell.options.auto_commit).lower()}")
    callback.set_to_success()


def connect(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    parts = split(line)
    if len(parts) < 2:
        callback.set_to_failure()
        shell.error(CONNECTION_USAGE)
        return

    args: list[str | None] = [*parts[1:5]]
    args += [None] * (4 - len(args))
    url, user, password, driver = args
    assert url is not None
    open_connection(shell, url, user, password, driver, callback)


def properties(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Connect using one or more connection properties files.
    """
    parts = split(line)
    if len(parts) < 2:
        callback.set_to_failure()
        shell.error("Usage: properties <properties file>")
        return

    successes = 0
    for path in parts[1:]:
        try:
            cfg = load_connection_properties(Path(path))
            open_connection(
                shell, cfg.url, cfg.user, cfg.password, cfg.driver, callback
            )
        # pylint: disable=broad-except
        except Exception as e:
            callback.set_to_failure()
            shell.handle_exception(e)

        if callback.is_success():
            successes += 1

    if successes == len(parts) - 1:
        callback.set_to_success()
    else:
        callback.set_to_failure()


def close(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Close the current connection and remove it from the registry.
    """
    connections = shell.connections
    if (conn := connections.current()) is None:
        shell.error(NO_CURRENT_CONNECTION)
        callback.set_to_failure()
        return

    if conn.is_closed:
        shell.info("Connection is already closed.")
    else:
        shell.info(f"Closing: {connections.index}: {conn}")
        conn.close()

    connections.remove()
    callback.set_to_success()


def closeall(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    while shell.connections.current() is not None:
        close(shell, line, callback)
        if not callback.is_success():
            return

    callback.set_to_success()


def reconnect(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := shell.connections.current()) is None:
        shell.error(NO_CURRENT_CONNECTION)
        callback.set_to_failure()
        return

    shell.info(f"Reconnecting to {conn}...")
    conn.reconnect(shell.options.fast_connect)
    callback.set_to_success()


def list_connections(
    shell: "Shell", line: str, callback: DispatchCallback
) -> None:
    connections = shell.connections
    shell.info(f"{_plural(len(connections), 'active connection')}:")
    for i, conn in enumerate(connections):
        state = "closed" if conn.is_closed else "open"
        shell.output(
            shell.color_buffer().pad(f" #{i}", 5).pad(state, 9).append(
                str(conn)
            )
        )
    callback.set_to_success()


def go(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    match split(line):
        case [_, n] if n.isdigit():
            index = int(n)
        case _:
            callback.set_to_failure()
            shell.error("Usage: go <connection index>")
            return

    if not shell.connections.set_index(index):
        shell.error(f"Invalid connection: {index}")
        list_connections(shell, "", callback)
        callback.set_to_failure()
        return

    callback.set_to_success()


def rehash(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Discard and reload the cached table names of the current connection.
    """
    if (conn := _current(shell, callback)) is None:
        return

    conn.rehash()
    names = conn.schema.table_names()
    shell.debug(f"Read {_plural(len(names), 'table name')}.")
    callback.set_to_success()


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _print_metadata(
    shell: "Shell",
    labels: list[str],
    data: Iterable[dict[str, Any]],
    callback: DispatchCallback,
) -> None:
    shell.print_rows(ListCursor.from_dicts(labels, data), callback)
    callback.set_to_success()


def _table_name(conn: DatabaseConnection, schema: str | None, name: str) -> str:
    """
    The name of a table, spelled the way the inspector wants it.
    """
    if schema is None:
        return conn.schema.find_table(name) or name
    return name


def _type_name(conn: DatabaseConnection, column_type: Any) -> str:
    try:
        return str(column_type.compile(dialect=conn.require().dialect))
    except sqlalchemy.exc.CompileError:
        return type(column_type).__name__


def _matching_tables(
    conn: DatabaseConnection, schema: str | None, pattern: str | None
) -> list[tuple[str, str]]:
    """
    The (name, type) pairs of the tables and views whose names match a
    LIKE pattern.
    """
    regex = like_pattern(pattern)
    insp = conn.schema.inspector
    found = [(t, "TABLE") for t in insp.get_table_names(schema=schema)]
    found += [(v, "VIEW") for v in insp.get_view_names(schema=schema)]
    return sorted(
        ((n, kind) for n, kind in found if regex.match(n)),
        key=lambda pair: pair[0].lower(),
    )


def tables(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return

    schema, pattern = build_metadata_args(
        line, "table name", [None, "%"], conn.quoting
    )
    schema_name = schema or conn.schema.inspector.default_schema_name
    _print_metadata(
        shell,
        ["TABLE_SCHEM", "TABLE_NAME", "TABLE_TYPE"],
        (
            {"TABLE_SCHEM": schema_name, "TABLE_NAME": n, "TABLE_TYPE": k}
            for n, k in _matching_tables(conn, schema, pattern)
        ),
        callback,
    )


def columns(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return

    schema, pattern = build_metadata_args(
        line, "table name", [None, "%"], conn.quoting
    )
    insp = conn.schema.inspector
    data = []
    for table, _ in _matching_tables(conn, schema, pattern):
        for i, col in enumerate(insp.get_columns(table, schema=schema), 1):
            data.append(
                {
                    "TABLE_NAME": table,
                    "COLUMN_NAME": col["name"],
                    "TYPE_NAME": _type_name(conn, col["type"]),
                    "IS_NULLABLE": "YES" if col.get("nullable") else "NO",
                    "COLUMN_DEF": col.get("default"),
                    "ORDINAL_POSITION": i,
                }
            )

    _print_metadata(
        shell,
        [
            "TABLE_NAME",
            "COLUMN_NAME",
            "TYPE_NAME",
            "IS_NULLABLE",
            "COLUMN_DEF",
            "ORDINAL_POSITION",
        ],
        data,
        callback,
    )


def describe(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    "!describe tables" lists the tables; "!describe <table>" its columns.
    """
    match split(line):
        case [_, what] if what.lower() == "tables":
            tables(shell, "tables", callback)
        case [_, _]:
            columns(shell, line, callback)
        case _:
            callback.set_to_failure()
            shell.error("Usage: describe <table name>")


def indexes(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return

    schema, name = build_metadata_args(
        line, "table name", [None, None], conn.quoting
    )
    assert name is not None
    table = _table_name(conn, schema, name)
    data = []
    for index in conn.schema.inspector.get_indexes(table, schema=schema):
        for i, col in enumerate(index["column_names"], 1):
            data.append(
                {
                    "TABLE_NAME": table,
                    "INDEX_NAME": index["name"],
                    "NON_UNIQUE": not index["unique"],
                    "ORDINAL_POSITION": i,
                    "COLUMN_NAME": col,
                }
            )

    _print_metadata(
        shell,
        [
            "TABLE_NAME",
            "INDEX_NAME",
            "NON_UNIQUE",
            "ORDINAL_POSITION",
            "COLUMN_NAME",
        ],
        data,
        callback,
    )


def primarykeys(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return

    schema, name = build_metadata_args(
        line, "table name", [None, None], conn.quoting
    )
    assert name is not None
    table = _table_name(conn, schema, name)
    pk = conn.schema.inspector.get_pk_constraint(table, schema=schema)
    _print_metadata(
        shell,
        ["TABLE_NAME", "COLUMN_NAME", "KEY_SEQ", "PK_NAME"],
        (
            {
                "TABLE_NAME": table,
                "COLUMN_NAME": col,
                "KEY_SEQ": i,
                "PK_NAME": pk.get("name"),
            }
            for i, col in enumerate(pk.get("constrained_columns") or [], 1)
        ),
        callback,
    )


FOREIGN_KEY_COLUMNS = [
    "PKTABLE_NAME",
    "PKCOLUMN_NAME",
    "FKTABLE_NAME",
    "FKCOLUMN_NAME",
    "KEY_SEQ",
    "FK_NAME",
]


def _foreign_key_rows(
    table: str, foreign_keys: list[Any]
) -> list[dict[str, Any]]:
    rows = []
    for fk in foreign_keys:
        pairs = zip(fk["referred_columns"], fk["constrained_columns"])
        for i, (pk_col, fk_col) in enumerate(pairs, 1):
            rows.append(
                {
                    "PKTABLE_NAME": fk["referred_table"],
                    "PKCOLUMN_NAME": pk_col,
                    "FKTABLE_NAME": table,
                    "FKCOLUMN_NAME": fk_col,
                    "KEY_SEQ": i,
                    "FK_NAME": fk.get("name"),
                }
            )
    return rows


def importedkeys(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    The foreign keys of a table: the primary keys it refers to.
    """
    if (conn := _current(shell, callback)) is None:
        return

    schema, name = build_metadata_args(
        line, "table name", [None, None], conn.quoting
    )
    assert name is not None
    table = _table_name(conn, schema, name)
    fks = conn.schema.inspector.get_foreign_keys(table, schema=schema)
    _print_metadata(
        shell, FOREIGN_KEY_COLUMNS, _foreign_key_rows(table, fks), callback
    )


def exportedkeys(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    The foreign keys in other tables that refer to a table.
    """
    if (conn := _current(shell, callback)) is None:
        return

    schema, name = build_metadata_args(
        line, "table name", [None, None], conn.quoting
    )
    assert name is not None
    table = _table_name(conn, schema, name)
    insp = conn.schema.inspector
    data = []
    for other in insp.get_table_names(schema=schema):
        fks = [
            fk
            for fk in insp.get_foreign_keys(other, schema=schema)
            if fk["referred_table"].lower() == table.lower()
        ]
        data += _foreign_key_rows(other, fks)

    _print_metadata(shell, FOREIGN_KEY_COLUMNS, data, callback)


def procedures(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    List stored procedures and functions, from the information_schema
    routine catalog. SQLite has neither, so nothing is listed there.
    """
    if (conn := _current(shell, callback)) is None:
        return

    _, pattern = build_metadata_args(
        line, "procedure name", [None, "%"], conn.quoting
    )
    regex = like_pattern(pattern)
    data = []
    if conn.dialect_name != "sqlite":
        with conn.execute(PROCEDURES_QUERY) as result:
            for schema, name, kind in result:
                if regex.match(name or ""):
                    data.append(
                        {
                            "PROCEDURE_SCHEM": schema,
                            "PROCEDURE_NAME": name,
                            "PROCEDURE_TYPE": kind,
                        }
                    )

    _print_metadata(
        shell,
        ["PROCEDURE_SCHEM", "PROCEDURE_NAME", "PROCEDURE_TYPE"],
        data,
        callback,
    )


def typeinfo(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    List the type names the dialect knows, and the SQLAlchemy type each one
    maps to.
    """
    if (conn := _current(shell, callback)) is None:
        return

    dialect = conn.require().dialect
    names: dict[str, Any] = getattr(dialect, "ischema_names", None) or {}
    _print_metadata(
        shell,
        ["TYPE_NAME", "SQLALCHEMY_TYPE"],
        (
            {"TYPE_NAME": name, "SQLALCHEMY_TYPE": names[name].__name__}
            for name in sorted(names, key=str.lower)
        ),
        callback,
    )


def dbinfo(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Show what the dialect and the connection report about the database.
    """
    if (conn := _current(shell, callback)) is None:
        return

    live = conn.require()
    dialect = live.dialect
    preparer = dialect.identifier_preparer
    facts = (
        ("URL", lambda: conn.display_url),
        ("Dialect", lambda: dialect.name),
        ("Driver", lambda: dialect.driver),
        ("Server version", lambda: dialect.server_version_info),
        ("Default schema", lambda: dialect.default_schema_name),
        ("Identifier quote", lambda: preparer.initial_quote),
        ("Max identifier length", lambda: dialect.max_identifier_length),
        ("Supports sequences", lambda: dialect.supports_sequences),
        ("Supports native boolean", lambda: dialect.supports_native_boolean),
        ("Supports ALTER", lambda: dialect.supports_alter),
        ("Isolation level", live.get_isolation_level),
        ("Supported isolation levels", conn.isolation_levels),
        ("In transaction", live.in_transaction),
        ("Tables", lambda: len(conn.schema.table_names())),
    )
    for name, get in facts:
        try:
            shell.output(shell.color_buffer().pad(name, DBINFO_PAD).append(
                str(get())
            ))
        # pylint: disable=broad-except
        except Exception as e:
            shell.handle_exception(e)

    callback.set_to_success()


def _inspector_methods() -> list[str]:
    return sorted(
        name
        for name in dir(Inspector)
        if name.startswith(("get_", "has_"))
        and callable(getattr(Inspector, name))
    )


def metadata(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Call any SQLAlchemy Inspector method by (case-blind) name, with string
    arguments. The word NULL passes None.
    """
    if (conn := _current(shell, callback)) is None:
        return

    parts = split(line)
    methods = _inspector_methods()
    if len(parts) < 2:
        callback.set_to_failure()
        shell.error("Usage: metadata <method name> <params...>")
        return

    wanted = parts[1].lower()
    if (method := next((m for m in methods if m == wanted), None)) is None:
        shell.error(f'No such method "{parts[1]}"')
        shell.error("Possible methods:")
        for name in methods:
            shell.error(f"   {name}")
        callback.set_to_failure()
        return

    args = [None if a.upper() == "NULL" else a for a in parts[2:]]
    shell.debug(f"{method}({', '.join(repr(a) for a in args)})")
    res = getattr(conn.schema.inspector, method)(*args)

    match res:
        case [dict(), *_]:
            keys: list[str] = []
            for d in res:
                keys += [k for k in d if k not in keys]
            _print_metadata(shell, keys, res, callback)
            return
        case list() | tuple() | set() | frozenset():
            shell.print_rows(ListCursor([method], [[v] for v in res]), callback)
        case dict():
            _print_metadata(shell, list(res), [res], callback)
            return
        case None:
            pass
        case _:
            shell.output(str(res))

    callback.set_to_success()


def dropall(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Drop every table, after asking.
    """
    if (conn := _current(shell, callback)) is None:
        return

    answer = shell.reader.read_line(
        "Really drop every table in the database? (y/n) "
    )
    if (answer or "").strip().lower() != "y":
        shell.error("Drop all tables aborted.")
        callback.set_to_failure()
        return

    preparer = conn.require().dialect.identifier_preparer
    cmds = [
        f"DROP TABLE {preparer.quote(t)};"
        for t in conn.schema.inspector.get_table_names()
    ]
    count = shell.run_commands(cmds, callback)
    conn.rehash()
    if count == len(cmds):
        callback.set_to_success()
    else:
        callback.set_to_failure()


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _show_option(shell: "Shell", key: str, value: str) -> None:
    shell.output(shell.color_buffer().green(pad(key, 20)).append(value))


def set_option(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    "!set" shows every option, "!set key" shows one and "!set key value"
    changes one (saving the options, if "autosave" is on).
    """
    opts = shell.options
    match split(line):
        case [_]:
            for key, value in opts.to_map().items():
                _show_option(shell, key, value)

        case [_, key]:
            value = opts.get(key)
            if isinstance(value, bool):
                value = str(value).lower()
            shown = "" if value is None else str(value)
            _show_option(shell, key.lower(), shown)

        case [_, key, value]:
            opts.set(key, value)
            if opts.auto_save:
                opts.save()

        case _:
            callback.set_to_failure()
            shell.error("Usage: set <key> <value>")
            return

    callback.set_to_success()


def save(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    path = shell.options.save()
    shell.info(f'Saved options to "{path}"')
    callback.set_to_success()


def load(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    path = shell.options.load()
    shell.info(f'Loaded options from "{path}"')
    callback.set_to_success()


def outputformat(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    match split(line):
        case [_, name] if make_format(name, shell) is not None:
            set_option(shell, f"set outputformat {name.lower()}", callback)
        case [_, name]:
            callback.set_to_failure()
            shell.error(
                f'Unknown output format "{name}". Possible values: '
                f"{', '.join(FORMAT_NAMES)}"
            )
        case _:
            callback.set_to_failure()
            shell.error("Usage: outputformat <format>")


def nullemptystring(
    shell: "Shell", line: str, callback: DispatchCallback
) -> None:
    match split(line):
        case [_, value]:
            set_option(shell, f"set nullemptystring {value}", callback)
        case _:
            callback.set_to_failure()
            shell.error("Usage: nullemptystring <true|false>")


def verbose(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    shell.info("verbose: on")
    set_option(shell, "set verbose true", callback)


def brief(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    shell.info("verbose: off")
    set_option(shell, "set verbose false", callback)


# ---------------------------------------------------------------------------
# Scripts and recording
# ---------------------------------------------------------------------------


def _needs_continuation(shell: "Shell", line: str) -> bool:
    s = line.strip()
    if not shell.options.allow_multi_line_command:
        return False
    if s == "" or is_comment(s) or is_help_request(s) or s.startswith("!"):
        return False
    return not s.endswith(";")


def script_statements(shell: "Shell", lines: Iterable[str]) -> list[str]:
    """
    Group the lines of a script into statements. A SQL line that doesn't
    end with ";" continues until a line that does; the lines of a statement
    are joined with newlines, and comment lines inside it are dropped. An
    unterminated final statement is terminated. Blank and comment lines
    between statements are skipped.
    """
    statements: list[str] = []
    pending: list[str] | None = None
    for raw in lines:
        line = raw.strip() if shell.options.trim_scripts else raw.rstrip("\n")
        if pending is not None:
            if line.strip() and not is_comment(line):
                pending.append(line)
            if line.strip().endswith(";"):
                statements.append("\n".join(pending))
                pending = None
        elif _needs_continuation(shell, line):
            pending = [line]
        elif line.strip() and not is_comment(line):
            statements.append(line)

    if pending is not None:
        statements.append("\n".join(pending) + ";")

    return statements


def run(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Run the statements and commands in a file.
    """
    match split(line):
        case [_, path]:
            pass
        case _:
            callback.set_to_failure()
            shell.error("Usage: run <scriptfile>")
            return

    text = Path(path).expanduser().read_text(encoding="utf-8")
    cmds = script_statements(shell, text.splitlines())
    if shell.run_commands(cmds, callback) == len(cmds):
        callback.set_to_success()
    else:
        callback.set_to_failure()


def script(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Start or stop saving the dispatched lines to a file.
    """
    if (current := shell.script_file) is not None:
        shell.script_file = None
        current.close()
        shell.output(f'Script closed. Enter "run {current}" to replay it.')
        callback.set_to_success()
        return

    match split(line):
        case [_, path]:
            shell.script_file = shell.open_output_file(Path(path))
            shell.output(
                f'Saving command script to "{shell.script_file}". Enter '
                '"script" with no arguments to stop it.'
            )
            callback.set_to_success()
        case _:
            callback.set_to_failure()
            shell.error("Usage: script <filename>")


def record(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Start or stop copying all output to a file.
    """
    if (current := shell.record_file) is not None:
        shell.record_file = None
        current.close()
        shell.output(f'Recording stopped. Output saved in "{current}".')
        callback.set_to_success()
        return

    match split(line):
        case [_, path]:
            shell.record_file = shell.open_output_file(Path(path))
            shell.output(
                f'Saving all output to "{shell.record_file}". Enter "record" '
                "with no arguments to stop it."
            )
            callback.set_to_success()
        case _:
            callback.set_to_failure()
            shell.error("Usage: record <filename>")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def commit(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return
    if not shell.assert_auto_commit_off():
        callback.set_to_failure()
        return

    start = time.monotonic()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        conn.commit()
    shell.show_warnings(caught)
    _report(shell, "Commit complete", time.monotonic() - start)
    callback.set_to_success()


def rollback(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return
    if not shell.assert_auto_commit_off():
        callback.set_to_failure()
        return

    start = time.monotonic()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        conn.rollback()
    shell.show_warnings(caught)
    _report(shell, "Rollback complete", time.monotonic() - start)
    callback.set_to_success()


def autocommit(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    "!autocommit on" commits after every statement (committing any pending
    work right away); "!autocommit off" leaves that to "!commit".
    """
    if (conn := _current(shell, callback)) is None:
        return

    match split(line):
        case [_]:
            pass
        case [_, value]:
            enabled = to_bool(value)
            if enabled and conn.in_transaction():
                conn.commit()
            shell.options.auto_commit = enabled
        case _:
            callback.set_to_failure()
            shell.error("Usage: autocommit <on|off>")
            return

    shell.info(f"Autocommit status: {str(shell.options.auto_commit).lower()}")
    callback.set_to_success()


def _isolation_level(name: str) -> str:
    """
    Convert an isolation level as typed (e.g., "TRANSACTION_READ_COMMITTED"
    or "read_committed") to the SQLAlchemy spelling ("READ COMMITTED").
    """
    level = name.strip().upper()
    level = level.removeprefix("TRANSACTION_")
    return level.replace("_", " ")


def isolation(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    if (conn := _current(shell, callback)) is None:
        return

    match split(line):
        case [_, name]:
            level = _isolation_level(name)
        case _:
            callback.set_to_failure()
            shell.error(ISOLATION_USAGE)
            return

    supported = conn.isolation_levels()
    if supported and level not in supported:
        callback.set_to_failure()
        shell.error(ISOLATION_USAGE)
        shell.error(f"Supported by this database: {', '.join(supported)}")
        return

    if conn.in_transaction():
        if not shell.options.auto_commit:
            callback.set_to_failure()
            shell.error(
                "Cannot change the isolation level inside a transaction. "
                'Use "commit" or "rollback" first.'
            )
            return
        conn.commit()

    conn.set_isolation(level)
    shell.options.isolation = level.replace(" ", "_")
    shell.debug(f"Transaction isolation: {level}")
    callback.set_to_success()


# ---------------------------------------------------------------------------
# Miscellany
# ---------------------------------------------------------------------------


def quit_shell(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    shell.exit = True
    callback.set_to_success()


def sh(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Run an operating system command.
    """
    if not (cmd := _rest(line)):
        callback.set_to_failure()
        shell.error("Usage: sh <command>")
        return

    res = subprocess.run(
        cmd, shell=True, capture_output=True, text=True, check=False
    )
    for out_line in res.stdout.splitlines():
        shell.output(out_line)
    for err_line in res.stderr.splitlines():
        shell.error(err_line)

    if res.returncode != 0:
        shell.output(f"Command failed with exit code = {res.returncode}")
        callback.set_to_failure()
    else:
        callback.set_to_success()


def help_command(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    """
    Show the help for every command, or for one.
    """
    parts = split(line)
    topic = parts[1].removeprefix("!") if len(parts) > 1 else None
    handlers = [
        h
        for h in shell.commands.sorted_by_name()
        if topic is None or topic in h.names
    ]
    if not handlers:
        callback.set_to_failure()
        shell.error(f'No help for "{topic}".')
        return

    for h in handlers:
        shell.output(
            shell.color_buffer()
            .pad(f"!{h.name}", HELP_NAME_WIDTH)
            .append(wrap(h.help, HELP_TEXT_WIDTH, HELP_NAME_WIDTH))
        )

    if topic is None:
        shell.output("")
        shell.output(
            "Anything that isn't a command is run as SQL. Commands can be "
            "abbreviated to any unique prefix."
        )
    callback.set_to_success()


def history(shell: "Shell", line: str, callback: DispatchCallback) -> None:
    for i, item in history_items():
        shell.output(shell.color_buffer().pad(f"{i}.", 6).append(item))
    callback.set_to_success()


def build_command_table() -> CommandTable:
    """
    The commands every shell starts with.
    """
    h = CommandHandler
    return CommandTable(
        [
            h(("quit", "done", "exit"), "Exits the program", quit_shell),
            h(
                ("connect", "open"),
                "Open a new connection to the database. The URL is a "
                "SQLAlchemy URL, or the name of a section in the "
                "configuration file",
                connect,
            ),
            h(
                ("properties",),
                "Connect to the database specified in the properties file(s)",
                properties,
            ),
            h(("close",), "Close the current connection", close),
            h(("closeall",), "Close all current open connections", closeall),
            h(
                ("reconnect",),
                "Reconnect to the current database",
                reconnect,
            ),
            h(("list",), "List the current connections", list_connections),
            h(
                ("go", "#"),
                "Select the current connection",
                go,
            ),
            h(
                ("all",),
                "Execute the specified SQL against all the current "
                "connections",
                all_connections,
            ),
            h(
                ("describe",),
                "Describe a table",
                describe,
            ),
            h(("tables",), "List all the tables in the database", tables),
            h(
                ("columns",),
                "List all the columns for the specified table",
                columns,
            ),
            h(
                ("indexes",),
                "List all the indexes for the specified table",
                indexes,
            ),
            h(
                ("primarykeys",),
                "List all the primary keys for the specified table",
                primarykeys,
            ),
            h(
                ("importedkeys",),
                "List all the imported keys for the specified table",
                importedkeys,
            ),
            h(
                ("exportedkeys",),
                "List all the exported keys for the specified table",
                exportedkeys,
            ),
            h(
                ("procedures",),
                "List all the procedures",
                procedures,
            ),
            h(
                ("typeinfo",),
                "Display the type map for the current connection",
                typeinfo,
            ),
            h(
                ("dbinfo",),
                "Give metadata information about the database",
                dbinfo,
            ),
            h(
                ("metadata",),
                "Obtain metadata information by calling a SQLAlchemy "
                "Inspector method",
                metadata,
            ),
            h(
                ("set",),
                "Set a sqlbang variable, or show one or all of them",
                set_option,
            ),
            h(("save",), "Save the current variables", save),
            h(("load",), "Load the saved variables", load),
            h(
                ("outputformat",),
                f"Set the output format for displaying results "
                f"({', '.join(FORMAT_NAMES)})",
                outputformat,
            ),
            h(
                ("nullemptystring",),
                "Set to true to display NULL as an empty string",
                nullemptystring,
            ),
            h(("verbose",), "Set verbose mode on", verbose),
            h(("brief",), "Set verbose mode off", brief),
            h(("run",), "Run a script from the specified file", run),
            h(
                ("script",),
                "Start saving a script to a file",
                script,
            ),
            h(
                ("record",),
                "Record all output to the specified file",
                record,
            ),
            h(
                ("batch",),
                "Start or execute a batch of statements",
                batch,
            ),
            h(("commit",), "Commit the current transaction", commit),
            h(("rollback",), "Roll back the current transaction", rollback),
            h(
                ("autocommit",),
                "Set autocommit mode on or off",
                autocommit,
            ),
            h(
                ("isolation",),
                "Set the transaction isolation for this connection",
                isolation,
            ),
            h(("sh",), "Execute a shell command", sh),
            h(("help", "?"), "Print a summary of command usage", help_command),
            h(("history",), "Display the command history", history),
            h(
                ("rehash",),
                "Fetch table and column names for command completion",
                rehash,
            ),
            h(("sql",), "Execute a SQL command", sql_command),
            h(("call",), "Execute a stored procedure call", call),
            h(
                ("nativesql",),
                "Show the native SQL for the specified statement",
                nativesql,
            ),
            h(
                ("dropall",),
                "Drop all tables in the current database",
                dropall,
            ),
        ]
    )
