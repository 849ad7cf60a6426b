"""
A text buffer made up of styled segments. The buffer knows the visible length
of its text (ignoring the ANSI escape sequences), so the output formats can
pad, center and truncate colored text correctly. Colors are rendered with
termcolor, and only if the buffer was created with color enabled.
"""

from dataclasses import dataclass
from functools import total_ordering
from typing import Self

from termcolor import colored

from sqlbang.text import center, spaces


@dataclass(frozen=True)
class Segment:
    """
    One run of text in a single style. `color` is a termcolor color name,
    or None for the default color. `attrs` are termcolor attributes.
    """

    text: str
    color: str | None = None
    attrs: tuple[str, ...] = ()

    @property
    def plain(self: Self) -> bool:
        """True if the segment carries no styling."""
        return self.color is None and not self.attrs

    def render(self: Self, use_color: bool) -> str:
        """Render the segment, with ANSI styling if `use_color` is set."""
        if self.plain or not use_color or self.text == "":
            return self.text

        return colored(
            self.text,
            self.color,
            attrs=list(self.attrs) or None,
            force_color=True,
        )

    def cut(self: Self, length: int) -> "Segment":
        """Return a copy of this segment holding only `length` characters."""
        return Segment(self.text[:length], self.color, self.attrs)


@total_ordering
class ColorBuffer:
    """
    A buffer of styled text segments. Most methods return the buffer itself,
    so calls can be chained:

        ColorBuffer(True).green("| ").append("value").green(" |")
    """

    def __init__(self: Self, use_color: bool, text: str = "") -> None:
        self.use_color = use_color
        self._segments: list[Segment] = []
        self._visible_length = 0
        if text:
            self.append(text)

    @property
    def visible_length(self: Self) -> int:
        """The number of characters a user will see."""
        return self._visible_length

    @property
    def segments(self: Self) -> tuple[Segment, ...]:
        return tuple(self._segments)

    def append(self: Self, other: "str | ColorBuffer") -> Self:
        """Append plain text or the contents of another buffer."""
        if isinstance(other, ColorBuffer):
            for seg in other.segments:
                self._add(seg)
        else:
            self._add(Segment(other))
        return self

    def _add(self: Self, seg: Segment) -> None:
        self._segments.append(seg)
        self._visible_length += len(seg.text)

    def styled(
        self: Self, text: str, color: str | None, *attrs: str
    ) -> Self:
        """Append text in a particular color and/or with attributes."""
        self._add(Segment(text, color, tuple(attrs)))
        return self

    def bold(self: Self, text: str) -> Self:
        return self.styled(text, None, "bold")

    def underline(self: Self, text: str) -> Self:
        return self.styled(text, None, "underline")

    def grey(self: Self, text: str) -> Self:
        return self.styled(text, "dark_grey", "bold")

    def red(self: Self, text: str) -> Self:
        return self.styled(text, "red", "bold")

    def green(self: Self, text: str) -> Self:
        return self.styled(text, "green", "bold")

    def blue(self: Self, text: str) -> Self:
        return self.styled(text, "blue", "bold")

    def cyan(self: Self, text: str) -> Self:
        return self.styled(text, "cyan", "bold")

    def yellow(self: Self, text: str) -> Self:
        return self.styled(text, "yellow", "bold")

    def magenta(self: Self, text: str) -> Self:
        return self.styled(text, "magenta", "bold")

    def pad(self: Self, other: "str | ColorBuffer", width: int) -> Self:
        """
        Append text (or another buffer), followed by enough blanks to make
        the appended part at least `width` visible characters wide.
        """
        if isinstance(other, ColorBuffer):
            visible = other.visible_length
        else:
            visible = len(other)
        self.append(other)
        if visible < width:
            self.append(spaces(width - visible))
        return self

    def center(self: Self, text: str, width: int) -> Self:
        """Append text centered in `width` characters."""
        return self.append(center(text, width))

    def truncate(self: Self, length: int) -> "ColorBuffer":
        """
        Return a new buffer holding at most `length` visible characters of
        this one. Every segment carries its own reset sequence when rendered,
        so styling is always closed at the cut. A length <= 0 returns this
        buffer unchanged.
        """
        if length <= 0:
            return self

        result = ColorBuffer(self.use_color)
        for seg in self._segments:
            room = length - result.visible_length
            if room <= 0:
                break
            result._add(seg if len(seg.text) <= room else seg.cut(room))

        return result

    def get_color(self: Self) -> str:
        """The text, styled if color is enabled."""
        return "".join(s.render(self.use_color) for s in self._segments)

    def get_mono(self: Self) -> str:
        """The text, without any styling."""
        return "".join(s.text for s in self._segments)

    def __str__(self: Self) -> str:
        return self.get_color()

    def __eq__(self: Self, other: object) -> bool:
        if not isinstance(other, ColorBuffer):
            return NotImplemented
        return self.get_mono() == other.get_mono()

    def __lt__(self: Self, other: "ColorBuffer") -> bool:
        return self.get_mono() < other.get_mono()
