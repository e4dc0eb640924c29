"""
Connection string parsing.

Grammar: ``<scheme>://<path>?<k1>=<v1>&<k2>=<v2>...``

The parser never raises: structural validation (a missing path, missing
credentials) is requested explicitly by the code consuming the descriptor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping
from urllib.parse import unquote

from kvps.exceptions import InvalidOptionError

SCHEME_SEPARATOR = "://"

# Option names shared by several backends
USERNAME = "username"
PASSWORD = "password"
PORT = "port"


def _empty_options() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True)
class ConnectionDescriptor:
    """A parsed connection string.

    Option keys are stored case-folded so lookups are case-insensitive.
    """

    scheme: str
    path: str = ""
    options: Mapping[str, str] = field(default_factory=_empty_options)

    @classmethod
    def parse(cls, text: str) -> ConnectionDescriptor:
        """Parse a connection string into scheme, path and options.

        Args:
            text: The connection string.

        Returns:
            The parsed descriptor. When ``://`` is absent the whole text is
            the scheme and path/options are empty.
        """
        scheme, sep, remainder = text.partition(SCHEME_SEPARATOR)
        if not sep:
            return cls(scheme=scheme.strip())

        path, sep, option_text = remainder.partition("?")
        if not sep:
            return cls(scheme=scheme.strip(), path=path.strip())

        return cls(
            scheme=scheme.strip(),
            path=path.strip(),
            options=MappingProxyType(_parse_options(option_text)),
        )

    def get_option(self, name: str, default: str | None = None) -> str | None:
        """Look up a raw option value by case-insensitive name."""
        return self.options.get(name.lower(), default)

    def require_path(self) -> ConnectionDescriptor:
        """Check that the path is set.

        Returns:
            The descriptor, for chaining calls.

        Raises:
            InvalidOptionError: If the path is blank.
        """
        if not self.path.strip():
            raise InvalidOptionError(
                "The path was not set, but is required",
                context={"scheme": self.scheme},
            )
        return self

    def get_required_credentials(self) -> tuple[str, str]:
        """Get the standard username and password options.

        Raises:
            InvalidOptionError: If either option is missing or blank.
        """
        username = self.get_option(USERNAME)
        password = self.get_option(PASSWORD)
        if not username or not username.strip() or not password or not password.strip():
            raise InvalidOptionError(
                f'The options "{USERNAME}" and "{PASSWORD}" are required',
                context={"scheme": self.scheme},
            )
        return username, password


def _parse_options(option_text: str) -> dict[str, str]:
    """Split ``k1=v1&k2=v2`` into a case-folded dict; the last duplicate wins."""
    options: dict[str, str] = {}
    for fragment in option_text.split("&"):
        fragment = fragment.strip()
        if not fragment:
            continue

        raw_key, _, raw_value = fragment.partition("=")
        key = unquote(raw_key.strip())
        if not key:
            continue

        options[key.lower()] = unquote(raw_value.strip())
    return options


def parse(text: str) -> ConnectionDescriptor:
    """Parse a connection string. See ConnectionDescriptor.parse."""
    return ConnectionDescriptor.parse(text)
