"""
Identifier quoting and compound-identifier splitting. The metadata commands
(e.g., "!tables", "!columns", "!primarykeys") take arguments such as
`"My Schema"."My Table"`, which have to be split according to the quoting
rules of the connected database.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto

TRAILING_JUNK = re.compile(r"[\s;]+$")
NULL_WORD = "NULL"


@dataclass(frozen=True)
class Quoting:
    """
    A database's identifier quoting convention: the starting and ending quote
    characters, and whether unquoted identifiers fold to upper case.
    """

    start: str
    end: str
    upper: bool


DEFAULT_QUOTING = Quoting(start='"', end='"', upper=True)


class _State(Enum):
    SPACE = auto()
    DOT_SPACE = auto()
    QUOTED = auto()
    UNQUOTED = auto()


def _unquoted_word(word: str, quoting: Quoting) -> str | None:
    if word.upper() == NULL_WORD:
        return None

    return word.upper() if quoting.upper else word


def split_compound(
    line: str, quoting: Quoting = DEFAULT_QUOTING
) -> list[list[str | None]]:
    """
    Split a line into a list of possibly-compound identifiers, observing the
    quoting syntax of the database. For instance, with double-quote quoting,

        !tables "My Schema"."My Table"

    yields `[["!TABLES"], ["My Schema", "My Table"]]`. Unquoted words are
    folded to upper case if the quoting says so, and the unquoted word NULL
    becomes None. A doubled end quote inside a quoted identifier stands for
    one quote character. An unterminated identifier at the end of the line is
    completed leniently.

    :param line: the line to split
    :param quoting: the quoting convention to observe

    :returns: the list of compound words, each a list of its parts
    """
    # pylint: disable=too-many-branches
    line = TRAILING_JUNK.sub("", line)
    n = len(line)

    words: list[list[str | None]] = []
    current: list[str | None] = []
    buf: list[str] = []
    state = _State.SPACE

    def flush_current() -> None:
        if current:
            words.append(list(current))
            current.clear()

    i = 0
    while i < n:
        c = line[i]
        i += 1
        match state:
            case _State.SPACE | _State.DOT_SPACE:
                if c.isspace():
                    pass
                elif c == ".":
                    state = _State.DOT_SPACE
                elif c == quoting.start:
                    if state == _State.SPACE:
                        flush_current()
                    state = _State.QUOTED
                    buf = []
                else:
                    if state == _State.SPACE:
                        flush_current()
                    state = _State.UNQUOTED
                    buf = [c]

            case _State.QUOTED:
                if c == quoting.end:
                    if i < n and line[i] == quoting.end:
                        # Doubled quote: keep one, stay inside the identifier.
                        buf.append(c)
                        i += 1
                    else:
                        current.append("".join(buf))
                        state = _State.SPACE
                else:
                    buf.append(c)

            case _State.UNQUOTED:
                if c.isspace() or c == ".":
                    current.append(_unquoted_word("".join(buf), quoting))
                    state = _State.DOT_SPACE if c == "." else _State.SPACE
                else:
                    buf.append(c)

    match state:
        case _State.QUOTED:
            current.append("".join(buf))
        case _State.UNQUOTED:
            current.append(_unquoted_word("".join(buf), quoting))
        case _:
            pass

    flush_current()
    return words


def build_metadata_args(
    line: str,
    param_name: str,
    defaults: list[str | None],
    quoting: Quoting = DEFAULT_QUOTING,
) -> list[str | None]:
    """
    Build the argument list for a metadata command, such as "!primarykeys",
    from the compound identifier following the command. Missing leading
    parts are filled in from `defaults`, so `!primarykeys emp` and
    `!primarykeys scott.emp` both produce a [schema, table] pair.

    :param line: the full command line, including the command
    :param param_name: the name of the parameter, for the usage message
    :param defaults: the default values, one per argument. If the last one is
        None, the argument is required.
    :param quoting: the quoting convention of the connected database

    :returns: a list the same length as `defaults`

    :raises ValueError: if a required argument is missing
    """
    words = split_compound(line, quoting)
    if len(words) != 2:
        if defaults[-1] is None:
            command = words[0][0] if words else ""
            raise ValueError(f"Usage: {command} <{param_name}>")
        compound: list[str | None] = []
    else:
        compound = words[1]

    if len(compound) <= len(defaults):
        return defaults[: len(defaults) - len(compound)] + compound

    return compound[: len(defaults)]


def like_pattern(pattern: str | None) -> re.Pattern[str]:
    """
    Convert a SQL LIKE pattern ("%" and "_" wildcards) to a compiled,
    case-blind regular expression. None matches everything.
    """
    if pattern is None:
        return re.compile(".*", re.S)

    parts = []
    for c in pattern:
        match c:
            case "%":
                parts.append(".*")
            case "_":
                parts.append(".")
            case _:
                parts.append(re.escape(c))

    return re.compile("".join(parts) + r"\Z", re.I | re.S)
