"""
The pieces the dispatcher works with: the outcome of dispatching one line
(DispatchCallback), the command descriptors (CommandHandler) and the fixed
table of commands they live in (CommandTable).
"""

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Iterable, Protocol, Self
from typing import Sequence as Seq

if TYPE_CHECKING:
    from sqlbang.shell import Shell


class DispatchStatus(StrEnum):
    """
    The states of a dispatched line.
    """

    UNSET = "unset"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"


class Cancellable(Protocol):
    """
    Anything that can abort an in-flight statement.
    """

    def cancel(self) -> None: ...


class DispatchCallback:
    """
    The outcome of dispatching one line, plus the handle of the query it's
    running (if any), so that an interrupt can cancel the query. All access
    goes through a re-entrant lock, because the interrupt handler runs on
    the main thread, in between any two bytecodes of the dispatch code.
    """

    def __init__(self: Self) -> None:
        self._lock = threading.RLock()
        self._status = DispatchStatus.UNSET
        self._query: Cancellable | None = None

    @property
    def status(self: Self) -> DispatchStatus:
        with self._lock:
            return self._status

    def _set(self: Self, status: DispatchStatus) -> None:
        with self._lock:
            self._status = status

    def set_to_running(self: Self) -> None:
        self._set(DispatchStatus.RUNNING)

    def set_to_success(self: Self) -> None:
        self._set(DispatchStatus.SUCCESS)

    def set_to_failure(self: Self) -> None:
        self._set(DispatchStatus.FAILURE)

    def set_to_cancel(self: Self) -> None:
        self._set(DispatchStatus.CANCELED)

    def is_running(self: Self) -> bool:
        return self.status == DispatchStatus.RUNNING

    def is_success(self: Self) -> bool:
        return self.status == DispatchStatus.SUCCESS

    def is_failure(self: Self) -> bool:
        return self.status == DispatchStatus.FAILURE

    def is_canceled(self: Self) -> bool:
        return self.status == DispatchStatus.CANCELED

    def track_query(self: Self, query: Cancellable | None) -> None:
        """
        Record the query being run, or None when it's done.
        """
        with self._lock:
            self._query = query

    def force_kill_query(self: Self) -> bool:
        """
        Cancel the tracked query, if any, and mark the dispatch canceled.

        :returns: True if there was a query to cancel
        """
        with self._lock:
            query = self._query
            self._status = DispatchStatus.CANCELED

        if query is None:
            return False

        query.cancel()
        return True


CommandFunction = Callable[["Shell", str, DispatchCallback], None]


@dataclass(frozen=True)
class CommandHandler:
    """
    A command descriptor. `names` holds the command name first, followed by
    any aliases. The function receives the shell, the full command line
    (without the "!") and the dispatch callback to update.
    """

    names: Seq[str]
    help: str
    function: CommandFunction

    @property
    def name(self: Self) -> str:
        return self.names[0]

    def matches(self: Self, token: str) -> str | None:
        """
        Return the first alias of this command that starts with `token`, or
        None if there isn't one.
        """
        if token == "":
            return None

        for alias in self.names:
            if alias.startswith(token):
                return alias

        return None

    def execute(
        self: Self, shell: "Shell", line: str, callback: DispatchCallback
    ) -> None:
        """
        Run the command. No exception escapes: anything the command raises
        is reported, and the dispatch is marked as failed.
        """
        try:
            self.function(shell, line, callback)
        # pylint: disable=broad-except
        except Exception as e:
            callback.set_to_failure()
            shell.handle_exception(e)


class CommandTable:
    """
    The fixed, ordered list of commands the shell knows about.
    """

    def __init__(self: Self, handlers: Iterable[CommandHandler]) -> None:
        self._handlers = tuple(handlers)

    def __iter__(self: Self):
        return iter(self._handlers)

    def __len__(self: Self) -> int:
        return len(self._handlers)

    def resolve(self: Self, token: str) -> list[tuple[str, CommandHandler]]:
        """
        Find every command with an alias that starts with `token`. Returns
        (alias, handler) pairs, one per matching command; the alias is the
        first of the command's aliases that matched.
        """
        matches: list[tuple[str, CommandHandler]] = []
        for handler in self._handlers:
            if (alias := handler.matches(token)) is not None:
                matches.append((alias, handler))

        return matches

    def lookup(self: Self, name: str) -> CommandHandler | None:
        """
        Find a command by exact name or alias.
        """
        for handler in self._handlers:
            if name in handler.names:
                return handler
        return None

    def sorted_by_name(self: Self) -> list[CommandHandler]:
        """
        The commands, sorted by name, for help output.
        """
        return sorted(self._handlers, key=lambda h: h.name)

    def all_names(self: Self) -> list[str]:
        """
        Every name and alias, sorted. Used for command completion.
        """
        return sorted(n for h in self._handlers for n in h.names)
