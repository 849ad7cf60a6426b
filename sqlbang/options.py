"""
Session options: the settings consulted by the shell, the commands and the
output formats, and changed with "!set". The options can be saved to, and
loaded from, a small TOML file.

Option keys are the field names with the underscores removed (e.g., the
"max_width" field is the "maxwidth" option), and they're matched case-blind.
"""

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self

DEFAULT_OPTIONS_FILE = Path("~/.sqlbang.toml").expanduser()
TRUE_STRINGS = ("true", "yes", "on", "1")
FALSE_STRINGS = ("false", "no", "off", "0")
DEFAULT_NUMBER_FORMAT = "default"


class OptionError(Exception):
    """
    Thrown to indicate a bad option name or value.
    """


def to_bool(value: str) -> bool:
    """
    Convert a string to a boolean, accepting the usual spellings.

    :raises ValueError: if the string doesn't look like a boolean
    """
    match value.strip().lower():
        case s if s in TRUE_STRINGS:
            return True
        case s if s in FALSE_STRINGS:
            return False
        case _:
            raise ValueError(f'"{value}" is not a boolean value.')


# pylint: disable=too-many-instance-attributes
@dataclass
class ShellOptions:
    """
    The options for one shell session. `options_file` is where "!save" and
    "!load" store and retrieve them; it isn't itself an option.
    """

    allow_multi_line_command: bool = True
    auto_commit: bool = True
    auto_save: bool = False
    color: bool = False
    delimiter_for_dsv: str = "|"
    fast_connect: bool = True
    force: bool = False
    header_interval: int = 100
    history_file: Path | None = None
    incremental: bool = False
    isolation: str = "default"
    max_height: int = 80
    max_width: int = 80
    null_empty_string: bool = False
    number_format: str = DEFAULT_NUMBER_FORMAT
    output_format: str = "table"
    quote_char: str = '"'
    row_limit: int = 0
    show_elapsed_time: bool = True
    show_header: bool = True
    show_nested_errs: bool = False
    show_warnings: bool = True
    silent: bool = False
    timeout: int = -1
    trim_scripts: bool = True
    truncate_table: bool = False
    verbose: bool = False
    options_file: Path = field(
        default=DEFAULT_OPTIONS_FILE, metadata={"option": False}
    )

    @classmethod
    def _option_fields(cls) -> dict[str, str]:
        return {
            f.name.replace("_", ""): f.name
            for f in fields(cls)
            if f.metadata.get("option", True)
        }

    @classmethod
    def keys(cls) -> list[str]:
        """
        The sorted list of option keys.
        """
        return sorted(cls._option_fields())

    def _field_name(self: Self, key: str) -> str:
        name = self._option_fields().get(key.lower().replace("_", ""))
        if name is None:
            raise OptionError(f'Unknown option "{key}".')
        return name

    def get(self: Self, key: str) -> Any:
        """
        Get the value of an option by its key.

        :raises OptionError: if there's no such option
        """
        return getattr(self, self._field_name(key))

    def set(self: Self, key: str, value: str) -> None:
        """
        Set an option from a string value, converting the string to the
        option's type.

        :param key: the option key (e.g., "maxwidth")
        :param value: the string value

        :raises OptionError: on an unknown key or an unconvertible value
        """
        name = self._field_name(key)
        current = getattr(self, name)
        try:
            match name, current:
                case ("history_file", _):
                    converted: Any = Path(value).expanduser() if value else None
                case ("number_format", _):
                    if value != DEFAULT_NUMBER_FORMAT:
                        format(0, value)
                    converted = value
                case (_, bool()):
                    converted = to_bool(value)
                case (_, int()):
                    converted = int(value)
                case _:
                    converted = value
        except ValueError as e:
            # pylint: disable=raise-missing-from
            raise OptionError(f'Bad value for "{key}": {e}')

        setattr(self, name, converted)

    def to_map(self: Self) -> dict[str, str]:
        """
        Return all options, keyed by option key, with their values as
        displayable strings. Options that aren't set are omitted.
        """
        result: dict[str, str] = {}
        for key, name in sorted(self._option_fields().items()):
            match getattr(self, name):
                case None:
                    pass
                case bool() as b:
                    result[key] = str(b).lower()
                case v:
                    result[key] = str(v)
        return result

    def save(self: Self, path: Path | None = None) -> Path:
        """
        Write the options to a TOML file.

        :param path: where to write them, or None for `options_file`

        :returns: the path that was written
        """
        path = path or self.options_file
        lines: list[str] = []
        for key, name in sorted(self._option_fields().items()):
            match getattr(self, name):
                case None:
                    pass
                case bool() as b:
                    lines.append(f"{key} = {str(b).lower()}")
                case int() as n:
                    lines.append(f"{key} = {n}")
                case v:
                    lines.append(f"{key} = {_toml_string(str(v))}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def load(self: Self, path: Path | None = None) -> Path:
        """
        Read options from a TOML file previously written by save().
        Unknown keys in the file are ignored.

        :param path: the file to read, or None for `options_file`

        :returns: the path that was read

        :raises OptionError: if the file can't be read or parsed, or if a
            value is bad
        """
        path = path or self.options_file
        try:
            with open(path, mode="rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            # pylint: disable=raise-missing-from
            raise OptionError(f'Unable to read "{path}": {e}')

        known = self._option_fields()
        for key, value in data.items():
            if key.lower() not in known:
                continue
            if isinstance(value, bool):
                value = str(value).lower()
            self.set(key, str(value))

        return path


def _toml_string(s: str) -> str:
    escaped = s.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
