"""
Configuration classes for sqlbang. The configuration file maps short names
to connection settings, so that "!connect dev" can stand in for a full
SQLAlchemy URL plus credentials. Connection properties files (used by "-r"
and "!properties") describe a single connection.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Self
import tomllib

DEFAULT_CONFIG_FILE = Path("~/.sqlbang.cfg").expanduser()
CONNECTION_KEYS = ("url", "user", "password", "driver")


class SqlBangError(Exception):
    """
    Base class for exceptions thrown by sqlbang. Also thrown explicitly for
    certain errors in the shell.
    """


class ConfigurationError(SqlBangError):
    """
    Thrown to indicate a configuration error.
    """


class TooManyMatchesError(ConfigurationError):
    """
    Thrown to indicate that a connection specification matched too many
    sections in the configuration file.
    """


@dataclass(frozen=True)
class ConnectionConfig:
    """
    A single connection configuration, from either a section of the
    configuration file or a connection properties file.
    """

    name: str
    url: str
    user: str | None = None
    password: str | None = None
    driver: str | None = None


class Configuration:
    """
    Represents the parsed configuration data.
    """

    def __init__(
        self: Self, configs: list[ConnectionConfig], path: Path
    ) -> None:
        self._configs = configs
        self._path = path

    @property
    def path(self: Self) -> Path:
        """
        Returns the path associated with the configuration.
        """
        return self._path

    @property
    def names(self: Self) -> list[str]:
        return [c.name for c in self._configs]

    def lookup(self: Self, spec: str) -> list[ConnectionConfig] | None:
        """
        Uses a string to look up a configuration. Returns a list of matching
        configurations, or None if no match. An exact (case-blind) match on
        a section name wins over any other prefix matches.
        """
        exact = [c for c in self._configs if c.name.lower() == spec.lower()]
        if len(exact) == 1:
            return exact

        matches = [
            c for c in self._configs if c.name.lower().startswith(spec.lower())
        ]

        if len(matches) == 0:
            return None

        return matches

    def find(self: Self, spec: str) -> ConnectionConfig | None:
        """
        Like lookup(), but insists on at most one match.

        :raises TooManyMatchesError: if `spec` matches more than one section
        """
        match self.lookup(spec):
            case None:
                return None

            case [cfg]:
                return cfg

            case configs:
                match_str = ", ".join([c.name for c in configs])
                raise TooManyMatchesError(
                    f'"{spec}" matches more than one section in '
                    f'"{self._path}": {match_str}'
                )


class EnvDict(dict):
    """
    For environment substitution, we want a reference to a non-existent
    variable to substitute "", rather than throw an error (as with
    Template.substitute()) or leave the reference intact (as with
    Template.safe_substitute()). To do that, we simply use a custom
    dictionary class.
    """

    def __init__(self: Self, *args, **kw) -> None:
        self.update(*args, **kw)

    def __getitem__(self: Self, key: Any) -> Any:
        return super().get(key, "")


def _substitute(value: Any, env: EnvDict) -> str | None:
    if value is None:
        return None
    return Template(str(value)).substitute(env)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, mode="rb") as f:
            return tomllib.load(f)
    except Exception as e:
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'Unable to read "{path}": {e}')


def load_configuration(config: Path) -> Configuration:
    """
    Reads the configuration file. Each section must have a "url" setting,
    and may have "user", "password" and "driver" settings. Environment
    variable references (e.g., "${DB_PASSWORD}") are substituted in every
    value. Raises ConfigurationError on error.

    :param config: Path to the configuration file, which must exist
    """
    assert config.exists()

    data = _read_toml(config)
    env = EnvDict(**os.environ)

    configs: list[ConnectionConfig] = []
    for key, values in data.items():
        if not isinstance(values, dict):
            raise ConfigurationError(
                f'"{config}": "{key}" is not a section.'
            )

        url = values.get("url")
        if url is None:
            raise ConfigurationError(
                f'"{config}": Section "{key}" has no "url" setting.'
            )

        configs.append(
            ConnectionConfig(
                name=key,
                url=_substitute(url, env) or "",
                user=_substitute(values.get("user"), env),
                password=_substitute(values.get("password"), env),
                driver=_substitute(values.get("driver"), env),
            )
        )

    return Configuration(configs=configs, path=config)


def load_connection_properties(path: Path) -> ConnectionConfig:
    """
    Reads a connection properties file: a TOML file with top-level "url",
    and optional "user", "password" and "driver" keys. Keys that merely end
    in one of those names (e.g., "sales.url" or "db_url") are accepted too.

    :param path: the path of the properties file

    :returns: the connection settings, named after the file

    :raises ConfigurationError: if the file can't be read or has no URL
    """
    path = path.expanduser()
    if not path.is_file():
        raise ConfigurationError(f'"{path}" does not exist or is not a file.')

    data = _read_toml(path)
    env = EnvDict(**os.environ)

    found: dict[str, str | None] = {}
    for key, value in data.items():
        for name in CONNECTION_KEYS:
            if key.lower().endswith(name) and name not in found:
                found[name] = _substitute(value, env)

    url = found.get("url")
    if not url:
        raise ConfigurationError(f'"{path}" has no "url" property.')

    return ConnectionConfig(
        name=path.stem,
        url=url,
        user=found.get("user"),
        password=found.get("password"),
        driver=found.get("driver"),
    )
