"""
Small text utilities shared by the commands and the output formats.
"""

import shlex
import textwrap

QUOTES = ("'", '"')


def dequote(s: str | None) -> str | None:
    """
    Remove any number of matching single or double quotes surrounding a
    string.
    """
    if s is None:
        return None

    while len(s) >= 2 and s[0] == s[-1] and s[0] in QUOTES:
        s = s[1:-1]

    return s


def split(line: str, delim: str | None = None) -> list[str]:
    """
    Split a line on a delimiter, dropping empty tokens and dequoting each of
    the others. Without a delimiter, the line is split on whitespace with
    shlex, so a quoted token may contain blanks. Backslashes and "#" have no
    special meaning, and a line with an unbalanced quote is split on the
    blanks alone.
    """
    if delim is None:
        lexer = shlex.shlex(line, posix=True)
        lexer.whitespace_split = True
        lexer.escape = ""
        lexer.commenters = ""
        try:
            tokens = list(lexer)
        except ValueError:
            tokens = line.split()
    else:
        tokens = [t for t in line.split(delim) if t != ""]
    return [dequote(t) or "" for t in tokens]


def spaces(n: int) -> str:
    """Return n blanks (or the empty string, for n <= 0)."""
    return " " * max(n, 0)


def pad(s: str | None, width: int) -> str:
    """
    Pad a string with blanks on the right to at least `width` characters.
    None pads to `width` blanks.
    """
    if s is None:
        return spaces(width)

    return s.ljust(width)


def center(s: str, width: int) -> str:
    """
    Center a string in `width` characters. Any odd blank goes on the right.
    """
    n = width - len(s)
    if n <= 0:
        return s

    left = n // 2
    return spaces(left) + s + spaces(n - left)


def wrap(s: str, width: int, indent: int) -> str:
    """
    Wrap text on blanks into lines of at most `width` characters. Every
    line after the first is indented by `indent` blanks.

    :param s: the text to wrap
    :param width: maximum length of each line, not counting the indentation
    :param indent: number of blanks to put in front of continuation lines
    """
    lines = textwrap.wrap(s, width=width, break_long_words=False) or [""]
    return f"\n{spaces(indent)}".join(lines)


def xml_encode(s: str) -> str:
    """
    Escape a value for use inside an XML attribute or element.
    """
    return s.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;")


def is_comment(line: str) -> bool:
    """
    Whether a line is a comment: "#" or "--" after leading blanks.
    """
    s = line.lstrip()
    return s.startswith("#") or s.startswith("--")


def is_help_request(line: str) -> bool:
    """Whether a line is a bare "?" or "help" (in any case)."""
    s = line.strip()
    return s == "?" or s.lower() == "help"
