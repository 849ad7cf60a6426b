"""
Line sources for the shell: the interactive console, which uses the Python
readline module for history, editing and command completion, and scripts,
which supply lines from a file or a list.
"""

import atexit
import readline
from contextlib import suppress
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol, Self

HISTORY_LENGTH = 10000
# Note that Python's readline library can be based on GNU Readline
# or the BSD Editline library, and it's not selectable. It's whatever
# has been compiled in. They use different initialization files, so we'll
# load whichever one is appropriate.
EDITLINE_BINDINGS_FILE = Path("~/.editrc").expanduser()
READLINE_BINDINGS_FILE = Path("~/.inputrc").expanduser()
DEFAULT_HISTORY_FILE = Path("~/.sqlbang-history").expanduser()


class LineReader(Protocol):
    """
    A source of input lines. read_line() returns None at end of input, and
    may raise KeyboardInterrupt if the user interrupts the read.
    """

    def read_line(self, prompt: str) -> str | None: ...


def init_history(history_path: Path) -> Callable[[], None]:
    """
    Load the local readline history file, and arrange for the history to be
    written back at exit.

    :param history_path: Path of the history file. It doesn't have to exist.

    Returns the registered history function.
    """
    with suppress(FileNotFoundError):
        readline.read_history_file(str(history_path))

    # default history len is -1 (infinite), which may grow unruly
    readline.set_history_length(HISTORY_LENGTH)

    # Use a lambda here to capture the history_path variable.
    # pylint: disable=unnecessary-lambda,unnecessary-lambda-assignment
    f = lambda: readline.write_history_file(str(history_path))
    atexit.register(f)

    return f


def init_bindings_and_completion(
    command_names: Iterable[str], info: Callable[[str], None]
) -> None:
    """
    Initialize readline bindings, and install a completer for the "!"
    commands.

    :param command_names: the names and aliases of every command
    :param info: where to report which line editing library is in use
    """
    commands = sorted(f"!{name}" for name in command_names)

    def command_completer(text: str, state: int) -> str | None:
        """
        A readline completer that completes the command name (the first
        token of a "!" line). SQL isn't completed.
        """
        full_line = readline.get_line_buffer()
        tokens = full_line.lstrip().split()
        match tokens:
            case []:
                options = commands
            case [_] if not full_line.endswith(" "):
                options = [c for c in commands if c.startswith(text)]
            case _:
                options = []

        if state < len(options):
            return options[state]

        return None

    if (readline.__doc__ is not None) and ("libedit" in readline.__doc__):
        init_file = EDITLINE_BINDINGS_FILE
        info("Using editline (libedit).")
        completion_binding = "bind '^I' rl_complete"
    else:
        info("Using GNU readline.")
        init_file = READLINE_BINDINGS_FILE
        completion_binding = "Control-I: rl_complete"

    if init_file.exists():
        info(f'Loading bindings from "{init_file}"')
        readline.read_init_file(init_file)

    # Ensure that tab = complete
    readline.parse_and_bind(completion_binding)
    readline.set_completer(command_completer)


def history_items() -> list[tuple[int, str]]:
    """
    The readline history, as (number, line) pairs. Numbers start at 1.
    """
    return [
        (i, readline.get_history_item(i) or "")
        for i in range(1, readline.get_current_history_length() + 1)
    ]


class ConsoleReader:
    """
    Reads lines from the terminal with input(), which uses readline once
    it's been loaded.
    """

    def read_line(self: Self, prompt: str) -> str | None:
        try:
            return input(prompt)
        except EOFError:
            # Ctrl-D
            print()
            return None


class ScriptReader:
    """
    Supplies lines from a list or a file. If `echo` is given, each line is
    passed to it, after its prompt, as it's read.
    """

    def __init__(
        self: Self,
        lines: Iterable[str],
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self._lines: Iterator[str] = iter(lines)
        self._echo = echo

    @classmethod
    def from_file(
        cls, path: Path, echo: Callable[[str], None] | None = None
    ) -> "ScriptReader":
        """
        Read a script file.

        :raises OSError: if the file can't be read
        """
        text = path.expanduser().read_text(encoding="utf-8")
        return cls(text.splitlines(), echo)

    def read_line(self: Self, prompt: str) -> str | None:
        line = next(self._lines, None)
        if line is not None and self._echo is not None:
            self._echo(f"{prompt}{line}")
        return line
