"""
The shell: reads lines, dispatches them to the "!" commands or the SQL path,
and owns everything a command can touch: the options, the connections, the
output, error and recording channels, and the pending batch.
"""

import signal
import sys
import threading
import traceback
import warnings
from contextlib import suppress
from enum import IntEnum
from pathlib import Path
from types import FrameType
from typing import IO, Iterable, Self, TextIO

import sqlalchemy

from sqlbang.colors import ColorBuffer
from sqlbang.commands import (
    COMMAND_CANCELED,
    NO_CURRENT_CONNECTION,
    build_command_table,
    execute_sql,
    open_connection,
)
from sqlbang.config import Configuration, SqlBangError
from sqlbang.connections import DatabaseConnections
from sqlbang.console import (
    DEFAULT_HISTORY_FILE,
    ConsoleReader,
    LineReader,
    ScriptReader,
    init_bindings_and_completion,
    init_history,
)
from sqlbang.dispatch import CommandTable, DispatchCallback
from sqlbang.formats import FORMAT_NAMES, TableOutputFormat, make_format
from sqlbang.options import OptionError, ShellOptions
from sqlbang.rows import BufferedRows, IncrementalRows, PrimaryKeyLookup
from sqlbang.rows import ResultCursor, Rows
from sqlbang.text import is_comment, is_help_request, pad, split

PROMPT_NAME = "sqlbang"
COMMAND_PREFIX = "!"
MAX_PROMPT_URL = 45


class Status(IntEnum):
    """
    Process exit codes.
    """

    OK = 0
    ARGS = 1
    OTHER = 2


class AbortError(SqlBangError):
    """
    Thrown to force an abort with a non-zero exit code.
    """


class OutputFile:
    """
    A file that output or dispatched lines are copied to, for "!record" and
    "!script".
    """

    def __init__(self: Self, path: Path) -> None:
        self.path = path.expanduser()
        self._file: IO[str] = open(self.path, mode="w", encoding="utf-8")

    def add_line(self: Self, line: str) -> None:
        self._file.write(f"{line}\n")
        self._file.flush()

    def close(self: Self) -> None:
        self._file.close()

    def __str__(self: Self) -> str:
        return str(self.path)


def _sql_state(exc: BaseException) -> str:
    for attr in ("sqlstate", "pgcode", "sqlite_errorname"):
        if (value := getattr(exc, attr, None)) is not None:
            return str(value).strip()
    return ""


def _error_code(exc: BaseException) -> int:
    if isinstance(code := getattr(exc, "sqlite_errorcode", None), int):
        return code
    if exc.args and isinstance(exc.args[0], int):
        # MySQL drivers put the server error number first.
        return exc.args[0]
    return 0


# pylint: disable=too-many-instance-attributes,too-many-public-methods
class Shell:
    """
    One shell session.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self: Self,
        options: ShellOptions | None = None,
        reader: LineReader | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
        configuration: Configuration | None = None,
        commands: CommandTable | None = None,
    ) -> None:
        """
        :param options: the session options, or None for the defaults
        :param reader: where lines come from, or None for the console
        :param out: the output stream (default: standard output)
        :param err: the error stream (default: standard error)
        :param configuration: the connection configuration, if any
        :param commands: the command table, or None for the standard one
        """
        self.options = options or ShellOptions()
        self.reader: LineReader = reader or ConsoleReader()
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.configuration = configuration
        self.commands = commands or build_command_table()
        self.connections = DatabaseConnections()
        self.record_file: OutputFile | None = None
        self.script_file: OutputFile | None = None
        self.batch: list[str] | None = None
        self.exit = False
        self._shown_warnings: list[Warning] = []
        self._callback: DispatchCallback | None = None

    # -----------------------------------------------------------------------
    # Output channels
    # -----------------------------------------------------------------------

    def color_buffer(self: Self, text: str = "") -> ColorBuffer:
        return ColorBuffer(self.options.color, text)

    def output(
        self: Self, msg: str | ColorBuffer, stream: TextIO | None = None
    ) -> None:
        """
        Print a line to the output stream (or `stream`), copying it, without
        colors, to the record file if one is open.
        """
        if isinstance(msg, ColorBuffer):
            text, mono = msg.get_color(), msg.get_mono()
        else:
            text = mono = msg

        print(text, file=stream or self.out)
        if self.record_file is not None:
            self.record_file.add_line(mono)

    def info(self: Self, msg: str | ColorBuffer) -> None:
        """An informational message, unless "silent" is set."""
        if not self.options.silent:
            self.output(msg, self.err)

    def error(self: Self, msg: str | ColorBuffer) -> None:
        if isinstance(msg, ColorBuffer):
            msg = msg.get_mono()
        self.output(self.color_buffer().red(msg), self.err)

    def debug(self: Self, msg: str) -> None:
        """A debug message, shown only in verbose mode."""
        if self.options.verbose:
            self.output(self.color_buffer().blue(msg), self.err)

    def open_output_file(self: Self, path: Path) -> OutputFile:
        return OutputFile(path)

    # -----------------------------------------------------------------------
    # Error reporting
    # -----------------------------------------------------------------------

    def handle_exception(self: Self, e: BaseException) -> None:
        """
        Report an exception. Database errors are reported with their state
        and code. Stack traces are shown only in verbose mode.
        """
        if isinstance(e, sqlalchemy.exc.DBAPIError):
            self.handle_sql_exception(e)
        elif self.options.verbose:
            self.err.write("".join(traceback.format_exception(e)))
        else:
            self.error(str(e) or type(e).__name__)

    def _sql_error_line(self: Self, e: BaseException, kind: str) -> str:
        orig = getattr(e, "orig", None) or e
        message = str(orig).strip()
        return (
            f"{kind}: {message} "
            f"(state={_sql_state(orig)},code={_error_code(orig)})"
        )

    def handle_sql_exception(self: Self, e: BaseException) -> None:
        """
        Report a database error as
        "Error: <message> (state=<sqlstate>,code=<code>)". If
        "shownestederrs" is on, each exception in the cause chain is
        reported in turn.
        """
        self.error(self._sql_error_line(e, "Error"))
        if self.options.verbose:
            self.err.write("".join(traceback.format_exception(e)))

        if not self.options.show_nested_errs:
            return

        seen: list[BaseException] = [e]
        if (orig := getattr(e, "orig", None)) is not None:
            seen.append(orig)

        nested = seen[-1].__cause__ or seen[-1].__context__
        while nested is not None and not any(nested is s for s in seen):
            seen.append(nested)
            self.error(self._sql_error_line(nested, "Error"))
            nested = nested.__cause__ or nested.__context__

    def show_warnings(
        self: Self, caught: Iterable[warnings.WarningMessage] | None
    ) -> None:
        """
        Show the warnings raised while running a statement. A warning that
        has been shown before (the same object) isn't shown again.
        """
        if caught is None or not self.options.show_warnings:
            return

        for w in caught:
            message = w.message
            if not isinstance(message, Warning):
                message = UserWarning(str(message))
            if any(message is shown for shown in self._shown_warnings):
                continue
            self._shown_warnings.append(message)
            self.error(self._sql_error_line(message, "Warning"))

    # -----------------------------------------------------------------------
    # Connection checks and prompts
    # -----------------------------------------------------------------------

    def assert_connection(self: Self) -> bool:
        """
        Whether there's an open current connection. If there isn't, says
        so.
        """
        conn = self.connections.current()
        if conn is None:
            self.error(NO_CURRENT_CONNECTION)
            return False

        if conn.is_closed:
            self.error(f"Connection is closed: {conn}")
            return False

        return True

    def assert_auto_commit_off(self: Self) -> bool:
        if self.options.auto_commit:
            self.error("Operation requires that autocommit be turned off.")
            return False
        return True

    def prompt(self: Self) -> str:
        """
        "sqlbang> " with no connection, otherwise the index and URL of the
        current connection.
        """
        conn = self.connections.current()
        if conn is None:
            return f"{PROMPT_NAME}> "

        url = conn.display_url
        for c in (";", "?"):
            if (i := url.find(c)) >= 0:
                url = url[:i]
        return f"{self.connections.index}: {url[:MAX_PROMPT_URL]}> "

    def continuation_prompt(self: Self) -> str:
        """
        The prompt for continuation lines: the normal prompt with every
        character but ">" (and the last) replaced by "." or " ", in turn.
        """
        prompt = self.prompt()
        chars = [
            c if c == ">" else ("." if i % 2 == 0 else " ")
            for i, c in enumerate(prompt[:-1])
        ]
        return "".join(chars) + prompt[-1:]

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    def dispatch(
        self: Self, line: str | None, callback: DispatchCallback | None = None
    ) -> DispatchCallback:
        """
        Dispatch one line: a "!" command, or SQL.

        :param line: the line, or None at end of input (which ends the
            session)
        :param callback: receives the outcome; a new one is created if
            None

        :returns: the callback
        """
        callback = callback or DispatchCallback()
        if line is None:
            self.exit = True
            callback.set_to_success()
            return callback

        line = line.strip()
        if line == "" or is_comment(line):
            callback.set_to_success()
            return callback

        if self.script_file is not None:
            self.script_file.add_line(line)

        if is_help_request(line):
            line = f"{COMMAND_PREFIX}help"

        if line.startswith(COMMAND_PREFIX):
            self._dispatch_command(line[len(COMMAND_PREFIX):], callback)
        else:
            callback.set_to_running()
            execute_sql(self, line, callback)

        return callback

    def _dispatch_command(
        self: Self, line: str, callback: DispatchCallback
    ) -> None:
        tokens = split(line)
        token = tokens[0] if tokens else ""
        candidates = self.commands.resolve(token)

        match candidates:
            case []:
                callback.set_to_failure()
                self.error(f"Unknown command: {line}")

            case [(_, handler)]:
                callback.set_to_running()
                handler.execute(self, line, callback)

            case _:
                exact = [h for _, h in candidates if token in h.names]
                if len(exact) == 1:
                    callback.set_to_running()
                    exact[0].execute(self, line, callback)
                else:
                    callback.set_to_failure()
                    aliases = ", ".join(sorted(a for a, _ in candidates))
                    self.error(f"Multiple matches: [{aliases}]")

    def print_rows(
        self: Self,
        cursor: ResultCursor,
        callback: DispatchCallback | None = None,
        primary_keys: PrimaryKeyLookup | None = None,
    ) -> int:
        """
        Render a result with the configured output format (falling back to
        "table" for an unknown one), buffered or incremental as configured.

        :returns: the number of data rows rendered
        """
        fmt = make_format(self.options.output_format, self)
        if fmt is None:
            self.error(
                f'Unknown output format "{self.options.output_format}". '
                f"Possible values: {', '.join(FORMAT_NAMES)}"
            )
            fmt = TableOutputFormat(self)

        if self.options.incremental:
            rows: Rows = IncrementalRows(
                cursor, self.options, callback, primary_keys
            )
        else:
            rows = BufferedRows(cursor, self.options, primary_keys)

        return fmt.render(rows)

    def run_commands(
        self: Self, cmds: list[str], callback: DispatchCallback
    ) -> int:
        """
        Dispatch a list of lines, announcing each one. Unless "force" is on,
        the first failure stops the run. A canceled line is not a failure.

        :returns: the number of lines that didn't fail
        """
        completed = 0
        for i, cmd in enumerate(cmds, 1):
            prefix = pad(f"{i}/{len(cmds)}", 13)
            self.info(self.color_buffer(prefix).append(cmd))
            self.dispatch(cmd, callback)
            if not callback.is_failure():
                completed += 1
            elif not self.options.force:
                self.error(
                    'Aborting command set because "force" is false and '
                    f'command failed: "{cmd}"'
                )
                break

        return completed

    def run_batch(self: Self, statements: list[str]) -> bool:
        """
        Run a batch of statements on the current connection, and show how
        many rows each one changed. The batch is committed as a whole if
        autocommit is on.

        :returns: True if every statement ran
        """
        conn = self.connections.current()
        if conn is None or not self.assert_connection():
            return False

        counts = []
        try:
            for statement in statements:
                with conn.execute(statement) as result:
                    counts.append(result.rowcount)
            if self.options.auto_commit and conn.in_transaction():
                conn.commit()
        # pylint: disable=broad-except
        except Exception as e:
            self.handle_exception(e)
            if self.options.auto_commit:
                with suppress(sqlalchemy.exc.SQLAlchemyError):
                    conn.rollback()
            return False

        bold = self.color_buffer
        self.output(bold().pad(bold().bold("COUNT"), 8).bold("STATEMENT"))
        for count, statement in zip(counts, statements):
            self.output(bold().pad(str(count), 8).append(statement))
        return True

    # -----------------------------------------------------------------------
    # The session
    # -----------------------------------------------------------------------

    def _interrupt(self: Self, signum: int, frame: FrameType | None) -> None:
        """
        SIGINT handler. A running query is canceled; otherwise, the
        interrupt is raised as usual, to abandon the line being read.
        """
        callback = self._callback
        if callback is not None and callback.is_running():
            try:
                if callback.force_kill_query():
                    return
            except NotImplementedError as e:
                self.error(str(e))
        raise KeyboardInterrupt()

    # pylint: disable=too-many-arguments,too-many-locals
    def begin(
        self: Self,
        url: str | None = None,
        user: str | None = None,
        password: str | None = None,
        driver: str | None = None,
        commands: Iterable[str] = (),
        script: Path | None = None,
        properties: Iterable[str] = (),
        settings: Iterable[tuple[str, str]] = (),
        history: Path | None = None,
    ) -> Status:
        """
        Run a session: apply the command line, then read and dispatch lines
        until the input ends or "!quit".

        :param url: connect to this URL (or configuration section) first
        :param user: the user for `url`
        :param password: the password for `url`
        :param driver: the DBAPI driver for `url`
        :param commands: if given, run these lines and exit
        :param script: if given, read lines from this file, not the console
        :param properties: connection properties files to connect with
        :param settings: (key, value) option settings
        :param history: the history file, if not the configured one

        :returns: the exit status
        """
        commands = list(commands)
        if self.options.options_file.exists():
            try:
                self.options.load()
            except OptionError as e:
                self.error(str(e))

        try:
            for key, value in settings:
                self.options.set(key, value)
        except OptionError as e:
            self.error(str(e))
            return Status.ARGS

        if commands:
            self.options.color = False
            self.options.header_interval = -1

        callback = DispatchCallback()
        if url:
            callback.set_to_running()
            try:
                open_connection(self, url, user, password, driver, callback)
            # pylint: disable=broad-except
            except Exception as e:
                callback.set_to_failure()
                self.handle_exception(e)

        for path in properties:
            self.dispatch(f"{COMMAND_PREFIX}properties {path}", callback)

        try:
            if commands:
                # Continuation lines never come from standard input here.
                self.reader = ScriptReader([])
                ok = self.run_commands(commands, callback) == len(commands)
                return Status.OK if ok else Status.OTHER

            if script is not None:
                echo = None if self.options.silent else self.output
                self.reader = ScriptReader.from_file(script, echo)
            else:
                self._prepare_console(history)

            return self._loop()
        except (AbortError, OSError) as e:
            self.error(str(e))
            return Status.OTHER
        finally:
            self.close_output_files()
            self.dispatch(f"{COMMAND_PREFIX}closeall")

    def close_output_files(self: Self) -> None:
        """
        Close the "!record" and "!script" files, if they're open.
        """
        for f in (self.record_file, self.script_file):
            if f is not None:
                f.close()
        self.record_file = self.script_file = None

    def _prepare_console(self: Self, history: Path | None) -> None:
        history_file = history or self.options.history_file
        init_history(history_file or DEFAULT_HISTORY_FILE)
        init_bindings_and_completion(self.commands.all_names(), self.info)
        self.info(f'Type "{COMMAND_PREFIX}help" for help.')

    def _loop(self: Self) -> Status:
        interactive = isinstance(self.reader, ConsoleReader)
        previous = None
        if threading.current_thread() is threading.main_thread():
            previous = signal.signal(signal.SIGINT, self._interrupt)

        status = Status.OK
        callback = DispatchCallback()
        try:
            while not self.exit:
                callback = DispatchCallback()
                self._callback = callback
                try:
                    line = self.reader.read_line(self.prompt())
                    self.dispatch(line, callback)
                except KeyboardInterrupt:
                    callback.force_kill_query()
                    self.output(COMMAND_CANCELED)
                # pylint: disable=broad-except
                except Exception as e:
                    self.handle_exception(e)
                    callback.set_to_failure()
                    status = Status.OTHER

                if (
                    not interactive
                    and callback.is_failure()
                    and not self.options.force
                ):
                    raise AbortError(
                        "Aborting script because a command failed."
                    )
        finally:
            self._callback = None
            if previous is not None:
                signal.signal(signal.SIGINT, previous)

        if callback.is_failure():
            status = Status.OTHER
        return status
