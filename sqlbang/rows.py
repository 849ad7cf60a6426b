"""
Row sets: the header-first sequence of rows that the output formats render.
There are two strategies. BufferedRows reads the whole result up front,
which allows widths to be computed from the actual data and the rows to be
walked again. IncrementalRows fetches one row at a time, which keeps memory
flat and allows a long-running fetch to be canceled, at the cost of fixing
column widths from the declared display sizes before any data is seen.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Protocol, Self
from typing import Sequence as Seq

from sqlbang.dispatch import DispatchCallback
from sqlbang.options import DEFAULT_NUMBER_FORMAT, ShellOptions

NULL_TEXT = "NULL"


@dataclass(frozen=True)
class ColumnInfo:
    """
    What's known about one result column. `display_size` is the width the
    database declared for the column (0 if unknown). `table` and `name` are
    the source table and column, if known; they're needed to decide whether
    the column is part of a primary key.
    """

    label: str
    display_size: int = 0
    table: str | None = None
    name: str | None = None


class ResultCursor(Protocol):
    """
    The minimal cursor interface a row set needs.
    """

    @property
    def columns(self) -> Seq[ColumnInfo]: ...

    def fetchone(self) -> Seq[Any] | None: ...


class ListCursor:
    """
    A ResultCursor over rows that are already in memory. Used to render
    metadata (which arrives as lists of dictionaries) with the same output
    formats as query results.
    """

    def __init__(
        self: Self,
        columns: Seq[ColumnInfo | str],
        rows: Iterable[Seq[Any]],
    ) -> None:
        self._columns = tuple(
            c if isinstance(c, ColumnInfo) else ColumnInfo(label=c)
            for c in columns
        )
        self._rows = iter(rows)
        self.fetch_count = 0

    @property
    def columns(self: Self) -> Seq[ColumnInfo]:
        return self._columns

    def fetchone(self: Self) -> Seq[Any] | None:
        row = next(self._rows, None)
        if row is not None:
            self.fetch_count += 1
        return row

    @classmethod
    def from_dicts(
        cls, columns: Seq[str], data: Iterable[dict[str, Any]]
    ) -> "ListCursor":
        """
        Build a cursor from dictionaries, taking the values for `columns`
        (in order) from each one.
        """
        return cls(columns, ([d.get(c) for c in columns] for d in data))


class Row:
    """
    One row of a row set. `values` are strings, or None for SQL NULL.
    `sizes` are the observed widths of the values. `widths` are the display
    widths; width normalization replaces them with a tuple shared by many
    rows.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self: Self,
        values: Seq[str | None],
        sizes: Seq[int],
        is_header: bool = False,
        deleted: bool = False,
        updated: bool = False,
        inserted: bool = False,
    ) -> None:
        self.values: tuple[str | None, ...] = tuple(values)
        self.sizes: tuple[int, ...] = tuple(sizes)
        self.widths: tuple[int, ...] = self.sizes
        self.is_header = is_header
        self.deleted = deleted
        self.updated = updated
        self.inserted = inserted

    def __repr__(self: Self) -> str:
        kind = "header" if self.is_header else "row"
        return f"Row({kind}, {list(self.values)!r}, widths={self.widths})"


PrimaryKeyLookup = Callable[[ColumnInfo], bool]


class Rows:
    """
    Base class for row sets. A row set is an iterator of Row objects; the
    first row is always the header row holding the column labels. Data rows
    stop after `row_limit` rows, if that option is positive.
    """

    def __init__(
        self: Self,
        cursor: ResultCursor,
        options: ShellOptions,
        primary_keys: PrimaryKeyLookup | None = None,
    ) -> None:
        self.cursor = cursor
        self.columns: tuple[ColumnInfo, ...] = tuple(cursor.columns)
        self.options = options
        self.widths: tuple[int, ...] = ()
        self._pk_lookup = primary_keys
        self._primary_keys: dict[int, bool] = {}
        if options.number_format == DEFAULT_NUMBER_FORMAT:
            self.number_format: str | None = None
        else:
            self.number_format = options.number_format

    @property
    def labels(self: Self) -> list[str]:
        return [c.label for c in self.columns]

    @property
    def null_text(self: Self) -> str:
        """How a NULL is displayed."""
        return "" if self.options.null_empty_string else NULL_TEXT

    def display(self: Self, value: str | None) -> str:
        """Return the text to display for a value."""
        return self.null_text if value is None else value

    def is_primary_key(self: Self, col: int) -> bool:
        """
        Whether the column at a (0-based) index is part of its table's
        primary key. This depends on knowing which table the column came
        from, so it's reliable only for simple queries. The answer is
        cached per column.
        """
        if col not in self._primary_keys:
            self._primary_keys[col] = self._deduce_primary_key(col)
        return self._primary_keys[col]

    def _deduce_primary_key(self: Self, col: int) -> bool:
        column = self.columns[col]
        if self._pk_lookup is None or not column.table or not column.name:
            return False

        try:
            return self._pk_lookup(column)
        # pylint: disable=broad-except
        except Exception:
            return False

    def _to_string(self: Self, value: Any) -> str | None:
        if value is None:
            return None

        if (
            self.number_format is not None
            and isinstance(value, (int, float, Decimal))
            and not isinstance(value, bool)
        ):
            return format(value, self.number_format)

        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).hex()

        return str(value)

    def _size(self: Self, value: str | None) -> int:
        if value is None:
            return max(len(self.null_text), 1)
        return len(value)

    def header_row(self: Self) -> Row:
        labels = self.labels
        return Row(
            values=labels,
            sizes=[self._size(label) for label in labels],
            is_header=True,
        )

    def data_row(self: Self, raw: Seq[Any]) -> Row:
        values = [self._to_string(v) for v in raw]
        return Row(values=values, sizes=[self._size(v) for v in values])

    def _limit_reached(self: Self, count: int) -> bool:
        limit = self.options.row_limit
        return limit > 0 and count >= limit

    def normalize_widths(self: Self) -> None:
        """
        Give every row the same column widths.
        """
        raise NotImplementedError()

    def has_next(self: Self) -> bool:
        raise NotImplementedError()

    def _take(self: Self) -> Row:
        raise NotImplementedError()

    def __iter__(self: Self) -> Self:
        return self

    def __next__(self: Self) -> Row:
        if not self.has_next():
            raise StopIteration()
        return self._take()


class BufferedRows(Rows):
    """
    A row set that reads the entire result when it's created.
    """

    def __init__(
        self: Self,
        cursor: ResultCursor,
        options: ShellOptions,
        primary_keys: PrimaryKeyLookup | None = None,
    ) -> None:
        super().__init__(cursor, options, primary_keys)
        self.rows: list[Row] = [self.header_row()]
        count = 0
        while not self._limit_reached(count):
            if (raw := cursor.fetchone()) is None:
                break
            self.rows.append(self.data_row(raw))
            count += 1

        self._position = 0

    def has_next(self: Self) -> bool:
        return self._position < len(self.rows)

    def _take(self: Self) -> Row:
        row = self.rows[self._position]
        self._position += 1
        return row

    def restart(self: Self) -> None:
        """
        Start walking the rows again from the header.
        """
        self._position = 0

    def normalize_widths(self: Self) -> None:
        """
        Set each column's width to one more than the widest value in the
        column (header included), and share the resulting widths among all
        rows. The widths depend only on the observed sizes, so calling this
        again yields the same widths.
        """
        widths = tuple(
            max(row.sizes[i] + 1 for row in self.rows)
            for i in range(len(self.columns))
        )
        for row in self.rows:
            row.widths = widths
        self.widths = widths


class IncrementalRows(Rows):
    """
    A row set that fetches one row from the cursor each time the next row
    is requested. Before each fetch it checks the dispatch callback, so a
    canceled dispatch ends the rows immediately.
    """

    def __init__(
        self: Self,
        cursor: ResultCursor,
        options: ShellOptions,
        callback: DispatchCallback | None = None,
        primary_keys: PrimaryKeyLookup | None = None,
    ) -> None:
        super().__init__(cursor, options, primary_keys)
        self.callback = callback
        self._label_row = self.header_row()
        # Widths are fixed up front, from the larger of the label and the
        # declared display size of each column.
        self._max_widths = tuple(
            max(size, col.display_size)
            for size, col in zip(self._label_row.sizes, self.columns)
        )
        self._next_row: Row | None = self._label_row
        self._end_of_result = False
        self._normalizing = False
        self._count = 0

    def _canceled(self: Self) -> bool:
        return self.callback is not None and self.callback.is_canceled()

    def has_next(self: Self) -> bool:
        if self._end_of_result or self._canceled():
            return False

        if self._next_row is None:
            if self._limit_reached(self._count):
                self._end_of_result = True
            elif (raw := self.cursor.fetchone()) is None:
                self._end_of_result = True
            else:
                row = self.data_row(raw)
                if self._normalizing:
                    row.widths = self._max_widths
                self._next_row = row
                self._count += 1

        return self._next_row is not None

    def _take(self: Self) -> Row:
        row = self._next_row
        assert row is not None
        self._next_row = None
        return row

    def normalize_widths(self: Self) -> None:
        """
        Give the header the precomputed widths, and arrange for every row
        fetched from now on to share them. The data is never consulted, so
        a value longer than its column's declared size is not accommodated.
        """
        self._label_row.widths = self._max_widths
        self.widths = self._max_widths
        self._normalizing = True
