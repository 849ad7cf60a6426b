"""
Database connections. A DatabaseConnection is one connection record: the
URL and credentials it was opened with, the live SQLAlchemy connection, the
identifier quoting of the database and a lazily-built schema cache. The
DatabaseConnections registry holds every open record and tracks which one is
current.
"""

import re
import threading
from contextlib import suppress
from typing import Any, Iterator, Self
from typing import Sequence as Seq

import sqlalchemy
from sqlalchemy.engine import URL, Connection, CursorResult, Dialect, Engine
from sqlalchemy.engine import make_url

from sqlbang.quoting import DEFAULT_QUOTING, Quoting
from sqlbang.rows import ColumnInfo

# This is an engine cache, indexed by SQLAlchemy URL. It's used to avoid
# creating an engine for the same URL multiple times, which can happen if
# the !connect command is used multiple times with the same URL.
engine_cache: dict[str, Engine] = {}

NO_QUOTING = Quoting(start="", end="", upper=False)
# A query against a single table, e.g. "select a, b from emp where ...".
SINGLE_TABLE_SELECT = re.compile(
    r"^\s*select\s.+?\sfrom\s+([\w$#]+(?:\.[\w$#]+)?)\s*"
    r"(?:(?:as\s+)?\w+\s*)?"
    r"(?:(?:where|order|group|limit)\s.*)?;?\s*$",
    re.I | re.S,
)
COMPOUND_WORDS = re.compile(r"\b(join|union|intersect|except)\b", re.I)


def build_url(
    spec: str,
    user: str | None = None,
    password: str | None = None,
    driver: str | None = None,
) -> URL:
    """
    Build a SQLAlchemy URL from a URL string plus optional credentials and
    DBAPI driver, which override whatever the URL string specifies.

    :param spec: a SQLAlchemy URL (e.g., "postgresql://localhost/db")
    :param user: the user name, or None
    :param password: the password, or None
    :param driver: a DBAPI driver name (e.g., "pg8000") or a full
        "backend+driver" name, or None

    :raises sqlalchemy.exc.ArgumentError: if the URL can't be parsed
    """
    url = make_url(spec)
    changes: dict[str, Any] = {}
    if user:
        changes["username"] = user
    if password:
        changes["password"] = password
    if driver:
        if "+" in driver:
            changes["drivername"] = driver
        else:
            changes["drivername"] = f"{url.get_backend_name()}+{driver}"

    return url.set(**changes) if changes else url


def detect_quoting(dialect: Dialect) -> Quoting:
    """
    Deduce the identifier quoting of a database from its SQLAlchemy dialect.
    Databases that store unquoted names in upper case (e.g., Oracle) fold
    unquoted identifiers to upper case.
    """
    preparer = dialect.identifier_preparer
    start = preparer.initial_quote
    end = preparer.final_quote or start
    upper = bool(getattr(dialect, "requires_name_normalize", False))

    if start.strip() == "":
        return NO_QUOTING

    if len(start) > 1 or len(end) > 1:
        raise ValueError(
            f"Identifier quote string is '{start}'; quote strings longer "
            "than 1 character are not supported"
        )

    return Quoting(start=start, end=end, upper=upper)


class Schema:
    """
    A cache of schema information for one connection: the table names, and
    the primary key columns of each table that has been asked about.
    """

    def __init__(self: Self, connection: Connection) -> None:
        self._connection = connection
        self._inspector: sqlalchemy.Inspector | None = None
        self._tables: list[str] | None = None
        self._primary_keys: dict[str, frozenset[str]] = {}

    @property
    def inspector(self: Self) -> sqlalchemy.Inspector:
        if self._inspector is None:
            self._inspector = sqlalchemy.inspect(self._connection)
        return self._inspector

    def table_names(self: Self) -> list[str]:
        """
        The names of the tables and views in the default schema, sorted
        case-blind.
        """
        if self._tables is None:
            names = self.inspector.get_table_names()
            names += self.inspector.get_view_names()
            self._tables = sorted(set(names), key=str.lower)
        return self._tables

    def find_table(self: Self, name: str) -> str | None:
        """
        Find a table by case-blind name. Returns the name as the database
        spells it, or None.
        """
        for table in self.table_names():
            if table.lower() == name.lower():
                return table
        return None

    def primary_keys(self: Self, table: str) -> frozenset[str]:
        """
        The lower-cased names of the primary key columns of a table.
        """
        key = table.lower()
        if key not in self._primary_keys:
            schema = None
            if "." in table:
                schema, table = table.split(".", 1)
            pk = self.inspector.get_pk_constraint(table, schema=schema)
            columns = pk.get("constrained_columns") or []
            self._primary_keys[key] = frozenset(c.lower() for c in columns)
        return self._primary_keys[key]


class QueryHandle:
    """
    A handle on a running statement, which an interrupt can use to ask the
    DBAPI driver to abort it. SQLite connections support interrupt(), and
    some other drivers (e.g., psycopg) support cancel().
    """

    def __init__(self: Self, connection: Connection) -> None:
        self._connection = connection

    def cancel(self: Self) -> None:
        dbapi_conn = self._connection.connection.driver_connection
        for name in ("interrupt", "cancel"):
            if callable(method := getattr(dbapi_conn, name, None)):
                method()
                return

        raise NotImplementedError(
            f"The {self._connection.dialect.driver} driver cannot cancel "
            "a running statement."
        )


class QueryTimer:
    """
    Cancels a statement that runs longer than a timeout, using a timer
    thread. A timeout <= 0 means no timeout.
    """

    def __init__(self: Self, handle: QueryHandle, timeout: int) -> None:
        self._timer: threading.Timer | None = None
        if timeout > 0:
            self._timer = threading.Timer(timeout, self._expire, [handle])
            self._timer.daemon = True
        self.expired = False

    def _expire(self: Self, handle: QueryHandle) -> None:
        self.expired = True
        with suppress(NotImplementedError):
            handle.cancel()

    def __enter__(self: Self) -> Self:
        if self._timer is not None:
            self._timer.start()
        return self

    def __exit__(self: Self, *args: Any) -> None:
        if self._timer is not None:
            self._timer.cancel()


class CursorResultAdapter:
    """
    Presents a SQLAlchemy CursorResult as a ResultCursor for the row sets.
    Column display sizes come from the DBAPI cursor description, when the
    driver provides them. If the statement selected from a single table,
    each column is attributed to that table, so primary keys can be
    highlighted.
    """

    def __init__(
        self: Self, result: CursorResult, source_table: str | None = None
    ) -> None:
        self.result = result
        description = result.cursor.description if result.cursor else None
        self._columns = self._make_columns(
            list(result.keys()), description, source_table
        )
        self._dbapi_rows = False

    @staticmethod
    def _make_columns(
        labels: list[str], description: Seq[Any] | None, table: str | None
    ) -> tuple[ColumnInfo, ...]:
        columns = []
        for i, label in enumerate(labels):
            size = 0
            if description is not None and i < len(description):
                size = description[i][2] or 0
            columns.append(
                ColumnInfo(
                    label=label,
                    display_size=size if isinstance(size, int) else 0,
                    table=table,
                    name=label if table else None,
                )
            )
        return tuple(columns)

    @property
    def columns(self: Self) -> Seq[ColumnInfo]:
        return self._columns

    def fetchone(self: Self) -> Seq[Any] | None:
        if self._dbapi_rows:
            return self.result.cursor.fetchone()
        return self.result.fetchone()

    def next_result(self: Self) -> bool:
        """
        Advance to the next result set of the statement, if the driver
        supports multiple result sets and there is one.
        """
        cursor = self.result.cursor
        nextset = getattr(cursor, "nextset", None)
        if cursor is None or nextset is None:
            return False

        try:
            if not nextset():
                return False
        # pylint: disable=broad-except
        except Exception:
            return False

        if cursor.description is None:
            return False

        labels = [d[0] for d in cursor.description]
        self._columns = self._make_columns(labels, cursor.description, None)
        self._dbapi_rows = True
        return True

    def close(self: Self) -> None:
        self.result.close()


class DatabaseConnection:
    """
    One connection record. The record owns its live SQLAlchemy connection,
    which exists between connect() and close().
    """

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def __init__(
        self: Self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        driver: str | None = None,
        name: str | None = None,
    ) -> None:
        """
        :param url: the URL string, as given by the user
        :param user: the user name, if not part of the URL
        :param password: the password, if not part of the URL
        :param driver: the DBAPI driver, if not part of the URL
        :param name: the configuration section the URL came from, if any
        """
        self.spec = url
        self.user = user
        self.password = password
        self.driver = driver
        self.name = name
        self.url = build_url(url, user, password, driver)
        self.quoting = DEFAULT_QUOTING
        self.engine: Engine | None = None
        self.connection: Connection | None = None
        self._schema: Schema | None = None

    def __repr__(self: Self) -> str:
        return f"DatabaseConnection({self.display_url!r})"

    def __str__(self: Self) -> str:
        return self.display_url

    @property
    def display_url(self: Self) -> str:
        return self.url.render_as_string(hide_password=True)

    @property
    def is_closed(self: Self) -> bool:
        return self.connection is None or self.connection.closed

    @property
    def dialect_name(self: Self) -> str:
        return self.url.get_backend_name()

    @property
    def schema(self: Self) -> Schema:
        """
        The schema cache, created the first time it's needed.
        """
        conn = self.require()
        if self._schema is None:
            self._schema = Schema(conn)
        return self._schema

    def require(self: Self) -> Connection:
        """
        Return the live connection.

        :raises sqlalchemy.exc.ResourceClosedError: if the record is closed
        """
        if self.connection is None or self.connection.closed:
            raise sqlalchemy.exc.ResourceClosedError(
                f"Connection to {self.display_url} is closed."
            )
        return self.connection

    def set_password(self: Self, password: str | None) -> None:
        """
        Replace the password. It's used the next time the record connects.
        """
        self.password = password
        self.url = build_url(self.spec, self.user, password, self.driver)

    def matches(
        self: Self, url: str, driver: str | None, user: str | None
    ) -> bool:
        """
        Whether this record was opened with the given URL, driver and user.
        """
        return (self.spec, self.driver, self.user) == (url, driver, user)

    def connect(self: Self, fast_connect: bool = True) -> None:
        """
        Open the live connection, closing any previous one. Also deduces the
        identifier quoting and resets the schema cache. Unless
        `fast_connect` is set, the table names are read right away.
        """
        self.close()
        key = self.url.render_as_string(hide_password=False)
        if (engine := engine_cache.get(key)) is None:
            engine = sqlalchemy.create_engine(self.url)

        self.connection = engine.connect()
        engine_cache[key] = engine
        self.engine = engine
        self._schema = None
        self.quoting = detect_quoting(engine.dialect)
        if not fast_connect:
            self.schema.table_names()

    def close(self: Self) -> bool:
        """
        Close the live connection, if there is one. Any uncommitted work is
        rolled back. Returns True if a connection was closed.
        """
        conn, self.connection = self.connection, None
        self._schema = None
        if conn is None or conn.closed:
            return False

        conn.close()
        return True

    def reconnect(self: Self, fast_connect: bool = True) -> None:
        """
        Close and reopen the connection, with the stored credentials.
        """
        self.close()
        self.connect(fast_connect)

    def rehash(self: Self) -> None:
        """
        Discard the schema cache, so it's rebuilt on next use.
        """
        self._schema = None

    def source_table(self: Self, sql: str) -> str | None:
        """
        If a statement is a simple query against one table, return the name
        of the table. Otherwise, return None.
        """
        if COMPOUND_WORDS.search(sql) is not None:
            return None
        if (m := SINGLE_TABLE_SELECT.match(sql)) is None:
            return None

        name = m.group(1)
        if "." in name:
            return name
        try:
            return self.schema.find_table(name)
        except sqlalchemy.exc.SQLAlchemyError:
            return None

    def is_primary_key(self: Self, column: ColumnInfo) -> bool:
        """
        Whether a result column is part of its table's primary key.
        """
        if not column.table or not column.name:
            return False
        return column.name.lower() in self.schema.primary_keys(column.table)

    def execute(self: Self, sql: str) -> CursorResult:
        """
        Execute a statement as-is, without any parameter processing.
        """
        return self.require().exec_driver_sql(sql)

    def query_handle(self: Self) -> QueryHandle:
        return QueryHandle(self.require())

    def commit(self: Self) -> None:
        self.require().commit()

    def rollback(self: Self) -> None:
        self.require().rollback()

    def in_transaction(self: Self) -> bool:
        return self.require().in_transaction()

    def set_isolation(self: Self, level: str) -> None:
        """
        Set the transaction isolation level (e.g., "READ COMMITTED") for
        subsequent transactions.
        """
        conn = self.require()
        conn.execution_options(isolation_level=level)

    def isolation_levels(self: Self) -> list[str]:
        """
        The isolation levels the dialect supports.
        """
        conn = self.require()
        dialect = conn.dialect
        try:
            raw = conn.connection.dbapi_connection
            return sorted(dialect.get_isolation_level_values(raw))
        except NotImplementedError:
            return []


class DatabaseConnections:
    """
    The registry of connection records. The current index is either -1 (no
    current connection) or a valid index into the list.
    """

    def __init__(self: Self) -> None:
        self._connections: list[DatabaseConnection] = []
        self._index = -1

    def __iter__(self: Self) -> Iterator[DatabaseConnection]:
        return iter(list(self._connections))

    def __len__(self: Self) -> int:
        return len(self._connections)

    def __getitem__(self: Self, index: int) -> DatabaseConnection:
        return self._connections[index]

    @property
    def index(self: Self) -> int:
        return self._index

    def current(self: Self) -> DatabaseConnection | None:
        if self._index == -1:
            return None
        return self._connections[self._index]

    def _position(self: Self, connection: DatabaseConnection) -> int:
        for i, c in enumerate(self._connections):
            if c is connection:
                return i
        return -1

    def set_connection(self: Self, connection: DatabaseConnection) -> None:
        """
        Make a record current, adding it to the registry if it isn't already
        there.
        """
        if (i := self._position(connection)) == -1:
            self._connections.append(connection)
            i = len(self._connections) - 1
        self._index = i

    def set_index(self: Self, index: int) -> bool:
        """
        Make the record at an index current. Returns False, and changes
        nothing, if the index is out of range.
        """
        if index < 0 or index >= len(self._connections):
            return False
        self._index = index
        return True

    def remove(self: Self) -> DatabaseConnection | None:
        """
        Remove the current record from the registry, and return it. The
        closest preceding record (or the new last one) becomes current.
        """
        removed = None
        if self._index != -1:
            removed = self._connections.pop(self._index)

        while self._index >= len(self._connections):
            self._index -= 1

        return removed

    def find(
        self: Self, url: str, driver: str | None, user: str | None
    ) -> DatabaseConnection | None:
        """
        Find a record opened with the same URL, driver and user.
        """
        for c in self._connections:
            if c.matches(url, driver, user):
                return c
        return None
