"""
Tests for option binding.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pytest

from kvps.connection import parse
from kvps.exceptions import InvalidOptionError
from kvps.options import (
    REQUIRED,
    OptionField,
    OptionKind,
    OptionSchema,
    bind,
    coerce,
    parse_connection_string,
    supported_options,
)


@dataclass(frozen=True)
class ServerConfig:
    username: str
    password: str
    option: bool = True
    port: int = 3333


SERVER_OPTIONS = OptionSchema(
    ServerConfig,
    (
        OptionField("username", description="The user"),
        OptionField("password", description="The secret"),
        OptionField("option", OptionKind.BOOL, default=True, description="A toggle"),
        OptionField("port", OptionKind.INT, default=3333),
    ),
)


class Mode(Enum):
    FAST = "fast"
    SAFE = "safe"


@dataclass(frozen=True)
class TuningConfig:
    mode: Mode = Mode.SAFE
    ratio: float = 0.5
    label: str = "none"


TUNING_OPTIONS = OptionSchema(
    TuningConfig,
    (
        OptionField("mode", OptionKind.ENUM, default=Mode.SAFE, enum=Mode),
        OptionField("ratio", OptionKind.FLOAT, default=0.5),
        OptionField("label", default="none"),
    ),
)


class TestBind:
    """Tests for binding descriptors onto declared shapes."""

    def test_required_and_defaults(self) -> None:
        """Test binding required fields with defaults filled in."""
        config = bind(SERVER_OPTIONS, parse("x://?username=u&password=p&port=1234"))

        assert config == ServerConfig(username="u", password="p", option=True, port=1234)

    def test_missing_required_option(self) -> None:
        with pytest.raises(InvalidOptionError) as exc_info:
            bind(SERVER_OPTIONS, parse("x://?username=u"))

        assert 'The required option "password" is missing' in str(exc_info.value)
        assert exc_info.value.context["option"] == "password"

    def test_blank_required_option_is_missing(self) -> None:
        with pytest.raises(InvalidOptionError, match="password"):
            bind(SERVER_OPTIONS, parse("x://?username=u&password=%20%20"))

    def test_duplicate_required_option_last_wins(self) -> None:
        config = bind(SERVER_OPTIONS, parse("x://?username=a&password=p&username=b"))

        assert config.username == "b"

    def test_option_names_are_case_insensitive(self) -> None:
        config = bind(SERVER_OPTIONS, parse("x://?USERNAME=u&Password=p&Option=off"))

        assert config.username == "u"
        assert config.option is False

    def test_values_are_trimmed(self) -> None:
        config = bind(SERVER_OPTIONS, parse("x://?username=u&password=p&port=%2042%20"))

        assert config.port == 42

    def test_unknown_options_are_ignored(self) -> None:
        config = bind(SERVER_OPTIONS, parse("x://?username=u&password=p&extra=1"))

        assert config.username == "u"

    def test_numeric_coercion_failure(self) -> None:
        """Test that a failing coercion names the field and its type."""
        with pytest.raises(InvalidOptionError) as exc_info:
            bind(SERVER_OPTIONS, parse("x://?username=u&password=p&port=abc"))

        assert "Option port of type int could not be parsed" in str(exc_info.value)

    def test_blank_optional_bool_fails(self) -> None:
        with pytest.raises(InvalidOptionError, match="option"):
            bind(SERVER_OPTIONS, parse("x://?username=u&password=p&option="))

    def test_enum_and_float(self) -> None:
        config = bind(TUNING_OPTIONS, parse("x://?mode=Fast&ratio=0.25&label=abc"))

        assert config == TuningConfig(mode=Mode.FAST, ratio=0.25, label="abc")

    def test_enum_unknown_member(self) -> None:
        with pytest.raises(InvalidOptionError, match="Mode"):
            bind(TUNING_OPTIONS, parse("x://?mode=turbo"))

    def test_defaults_only(self) -> None:
        assert bind(TUNING_OPTIONS, parse("x://")) == TuningConfig()

    def test_attr_renames_keyword(self) -> None:
        @dataclass(frozen=True)
        class Renamed:
            table_name: str = "kvps"

        schema = OptionSchema(Renamed, (OptionField("table", default="kvps", attr="table_name"),))

        assert bind(schema, parse("x://?table=items")).table_name == "items"

    def test_parse_connection_string(self) -> None:
        descriptor, config = parse_connection_string(
            "db://host?username=u&password=p", SERVER_OPTIONS
        )

        assert descriptor.scheme == "db"
        assert descriptor.path == "host"
        assert config.password == "p"


class TestCoerce:
    """Tests for individual value coercion."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "on", "On", "yes", "YES"])
    def test_bool_true_words(self, value: str) -> None:
        assert coerce(OptionField("flag", OptionKind.BOOL, default=False), value) is True

    @pytest.mark.parametrize("value", ["false", "False", "0", "off", "OFF", "no", "No"])
    def test_bool_false_words(self, value: str) -> None:
        assert coerce(OptionField("flag", OptionKind.BOOL, default=True), value) is False

    @pytest.mark.parametrize("value", ["maybe", "2", "y", "t", ""])
    def test_bool_other_words_fail(self, value: str) -> None:
        with pytest.raises(InvalidOptionError, match="flag"):
            coerce(OptionField("flag", OptionKind.BOOL, default=False), value)

    def test_string_passthrough(self) -> None:
        assert coerce(OptionField("name"), " a b ") == "a b"

    def test_float_failure(self) -> None:
        with pytest.raises(InvalidOptionError, match="float"):
            coerce(OptionField("ratio", OptionKind.FLOAT, default=1.0), "half")

    def test_enum_field_requires_enum_type(self) -> None:
        with pytest.raises(ValueError):
            OptionField("mode", OptionKind.ENUM, default=None)


class TestSupportedOptions:
    """Tests for advertising options."""

    def test_one_spec_per_field_in_order(self) -> None:
        specs = supported_options(SERVER_OPTIONS)

        assert [s.name for s in specs] == ["username", "password", "option", "port"]

    def test_required_flags_and_defaults(self) -> None:
        specs = {s.name: s for s in SERVER_OPTIONS.supported_options()}

        assert specs["username"].required is True
        assert specs["username"].default is None
        assert specs["username"].description == "The user"
        assert specs["port"].required is False
        assert specs["port"].default == 3333

    def test_required_sentinel(self) -> None:
        assert OptionField("x").default is REQUIRED
        assert OptionField("x").required
        assert not OptionField("x", default=None).required
