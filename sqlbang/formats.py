"""
Output formats. Each format renders a row set to the shell's output, and
returns the number of data rows it rendered (the header row isn't counted).
"""

import csv
import io
from typing import Protocol, Self

from sqlbang.colors import ColorBuffer
from sqlbang.options import ShellOptions
from sqlbang.rows import Row, Rows
from sqlbang.text import center, pad, xml_encode

TABLE_FORMAT = "table"
# Room for the "| " and " |" borders.
TABLE_BORDER_WIDTH = 4


class OutputSink(Protocol):
    """
    What an output format needs from the shell.
    """

    @property
    def options(self) -> ShellOptions: ...

    def output(self, msg: "str | ColorBuffer") -> None: ...

    def color_buffer(self, text: str = "") -> ColorBuffer: ...


class OutputFormat:
    """
    Base class for the output formats.
    """

    def __init__(self: Self, sink: OutputSink) -> None:
        self.sink = sink

    @property
    def options(self: Self) -> ShellOptions:
        return self.sink.options

    def render(self: Self, rows: Rows) -> int:
        """
        Render the rows. Returns the number of data rows rendered.
        """
        raise NotImplementedError()


class TableOutputFormat(OutputFormat):
    """
    A bordered grid:

        +-----+-------+
        | ID  | NAME  |
        +-----+-------+
        | 1   | Alice |
        +-----+-------+

    The header is printed again before every `headerinterval` data rows.
    """

    def render(self: Self, rows: Rows) -> int:
        opts = self.options
        max_line = opts.max_width - TABLE_BORDER_WIDTH
        interval = opts.header_interval
        index = 0
        separator: ColorBuffer | None = None
        header_cols: ColorBuffer | None = None

        rows.normalize_widths()

        for row in rows:
            cbuf = self.format_row(rows, row)
            if opts.truncate_table:
                cbuf = cbuf.truncate(max_line)

            if index == 0:
                dashes = "-+-".join("-" * w for w in row.widths)
                header_cols = cbuf
                separator = self.sink.color_buffer().green(dashes)
                if opts.truncate_table:
                    separator = separator.truncate(header_cols.visible_length)

            assert separator is not None and header_cols is not None
            if opts.show_header:
                repeat = (
                    index > 1 and interval > 0 and (index - 1) % interval == 0
                )
                if index == 0 or repeat:
                    self._print_line(separator, border=True)
                    self._print_line(header_cols, border=False)
                    self._print_line(separator, border=True)
            elif index == 0:
                self._print_line(separator, border=True)

            if index != 0:
                self._print_line(cbuf, border=False)

            index += 1

        if separator is not None:
            self._print_line(separator, border=True)

        return max(index - 1, 0)

    def _print_line(self: Self, cbuf: ColorBuffer, border: bool) -> None:
        if border:
            line = self.sink.color_buffer().green("+-").append(cbuf).green("-+")
        else:
            line = self.sink.color_buffer().green("| ").append(cbuf).green(" |")
        self.sink.output(line)

    def format_row(self: Self, rows: Rows, row: Row) -> ColorBuffer:
        """
        Format the cells of one row, separated by " | ". Header cells are
        centered and bold; data cells are padded. Primary key cells are
        cyan. A deleted, updated or inserted row is shown entirely in red,
        blue or green (in that order of precedence), regardless of any
        primary key highlighting.
        """
        buf = self.sink.color_buffer()
        for i, value in enumerate(row.values):
            if i > 0:
                buf.green(" | ")

            if row.is_header:
                text = center(value or "", row.widths[i])
                if rows.is_primary_key(i):
                    buf.cyan(text)
                else:
                    buf.bold(text)
            else:
                text = pad(rows.display(value), row.widths[i])
                if rows.is_primary_key(i):
                    buf.cyan(text)
                else:
                    buf.append(text)

        if row.deleted:
            buf = self.sink.color_buffer().red(buf.get_mono())
        elif row.updated:
            buf = self.sink.color_buffer().blue(buf.get_mono())
        elif row.inserted:
            buf = self.sink.color_buffer().green(buf.get_mono())

        return buf


class VerticalOutputFormat(OutputFormat):
    """
    One "label value" line per column, with a blank line after each row.
    """

    def render(self: Self, rows: Rows) -> int:
        if (header := next(rows, None)) is None:
            return 0

        count = 0
        for row in rows:
            self._print_row(rows, header, row)
            count += 1
        return count

    def _print_row(self: Self, rows: Rows, header: Row, row: Row) -> None:
        labels = [v or "" for v in header.values]
        n = min(len(labels), len(row.values))
        label_width = max((len(label) for label in labels[:n]), default=0) + 2

        for label, value in zip(labels[:n], row.values[:n]):
            self.sink.output(
                self.sink.color_buffer()
                .bold(pad(label, label_width))
                .append(rows.display(value))
            )

        self.sink.output("")


class SeparatedValuesOutputFormat(OutputFormat):
    """
    Delimiter-separated values, with every field (the header's included)
    quoted, using the standard CSV rules: an embedded quote character is
    doubled.
    """

    def __init__(self: Self, sink: OutputSink, delimiter: str | None) -> None:
        """
        :param sink: where to write
        :param delimiter: the field separator, or None to use the
            "delimiterfordsv" option at render time
        """
        super().__init__(sink)
        self.delimiter = delimiter

    def render(self: Self, rows: Rows) -> int:
        delimiter = self.delimiter or self.options.delimiter_for_dsv or "|"
        quote = self.options.quote_char or '"'
        buf = io.StringIO()
        writer = csv.writer(
            buf,
            delimiter=delimiter[0],
            quotechar=quote[0],
            quoting=csv.QUOTE_ALL,
            doublequote=True,
            lineterminator="",
        )

        count = 0
        for row in rows:
            if len(row.values) > 0:
                writer.writerow([rows.display(v) for v in row.values])
            self.sink.output(buf.getvalue())
            buf.seek(0)
            buf.truncate()
            count += 1

        return max(count - 1, 0)


class _XmlOutputFormat(OutputFormat):
    def render(self: Self, rows: Rows) -> int:
        if (header := next(rows, None)) is None:
            return 0

        labels = [v or "" for v in header.values]
        self.sink.output("<resultset>")
        count = 0
        for row in rows:
            self.sink.output(self.format_row(rows, labels, row))
            count += 1
        self.sink.output("</resultset>")
        return count

    def format_row(self: Self, rows: Rows, labels: list[str], row: Row) -> str:
        raise NotImplementedError()


class XmlAttributeOutputFormat(_XmlOutputFormat):
    """
    One <result> element per row, with a column per attribute:

        <resultset>
          <result ID="1" NAME="Alice"/>
        </resultset>
    """

    def format_row(self: Self, rows: Rows, labels: list[str], row: Row) -> str:
        attrs = "".join(
            f' {label}="{xml_encode(rows.display(value))}"'
            for label, value in zip(labels, row.values)
        )
        return f"  <result{attrs}/>"


class XmlElementOutputFormat(_XmlOutputFormat):
    """
    One <result> element per row, with a child element per column:

        <resultset>
          <result><ID>1</ID><NAME>Alice</NAME></result>
        </resultset>
    """

    def format_row(self: Self, rows: Rows, labels: list[str], row: Row) -> str:
        elements = "".join(
            f"<{label}>{xml_encode(rows.display(value))}</{label}>"
            for label, value in zip(labels, row.values)
        )
        return f"  <result>{elements}</result>"


def make_format(name: str, sink: OutputSink) -> OutputFormat | None:
    """
    Create the output format with the given name (case-blind), or return
    None if there's no such format.
    """
    match name.lower():
        case "table":
            return TableOutputFormat(sink)
        case "vertical":
            return VerticalOutputFormat(sink)
        case "csv":
            return SeparatedValuesOutputFormat(sink, ",")
        case "tsv":
            return SeparatedValuesOutputFormat(sink, "\t")
        case "dsv":
            return SeparatedValuesOutputFormat(sink, None)
        case "xmlattr" | "xmlattrs":
            return XmlAttributeOutputFormat(sink)
        case "xmlelements":
            return XmlElementOutputFormat(sink)
        case _:
            return None


FORMAT_NAMES = (
    "csv",
    "dsv",
    "table",
    "tsv",
    "vertical",
    "xmlattr",
    "xmlelements",
)
