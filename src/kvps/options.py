"""
Option binding: maps connection string options onto typed configuration.

Each backend declares its configuration shape explicitly as an OptionSchema:
the target class plus an ordered tuple of OptionField descriptors. A single
generic binder interprets any schema.

Example:
    @dataclass(frozen=True)
    class FileConfig:
        pathmapped: bool = False

    FILE_OPTIONS = OptionSchema(
        FileConfig,
        (OptionField("pathmapped", OptionKind.BOOL, default=False,
                     description="Map keys to local paths"),),
    )

    descriptor, config = parse_connection_string("file://data?pathmapped=on", FILE_OPTIONS)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar, cast

from kvps.connection import ConnectionDescriptor
from kvps.exceptions import InvalidOptionError
from kvps.types import OptionSpec

T = TypeVar("T")

TRUE_WORDS = frozenset({"true", "1", "on", "yes"})
FALSE_WORDS = frozenset({"false", "0", "off", "no"})


class _Required:
    """Sentinel marking a field without a default."""

    def __repr__(self) -> str:
        return "REQUIRED"


REQUIRED: Any = _Required()


class OptionKind(str, Enum):
    """Type tags understood by the binder."""

    STRING = "string"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    ENUM = "enum"


@dataclass(frozen=True)
class OptionField:
    """Declaration of one configurable option.

    ``name`` is the option name in the connection string; ``attr`` is the
    keyword passed to the target class (defaults to ``name``).
    """

    name: str
    kind: OptionKind = OptionKind.STRING
    default: Any = REQUIRED
    description: str | None = None
    enum: type[Enum] | None = None
    attr: str | None = None

    def __post_init__(self) -> None:
        if self.kind is OptionKind.ENUM and self.enum is None:
            raise ValueError(f"Option {self.name} is an enumeration but declares no enum type")

    @property
    def required(self) -> bool:
        return self.default is REQUIRED

    @property
    def type_name(self) -> str:
        if self.kind is OptionKind.ENUM and self.enum is not None:
            return self.enum.__name__
        return self.kind.value

    def to_spec(self) -> OptionSpec:
        return OptionSpec(
            name=self.name,
            description=self.description,
            required=self.required,
            default=None if self.required else self.default,
        )


@dataclass(frozen=True)
class OptionSchema(Generic[T]):
    """Declared configuration shape: a target factory and its ordered fields."""

    target: Callable[..., T]
    fields: tuple[OptionField, ...] = ()

    def supported_options(self) -> list[OptionSpec]:
        """One OptionSpec per field, in declaration order."""
        return [f.to_spec() for f in self.fields]


def coerce(option: OptionField, value: str) -> Any:
    """Coerce a raw option string to the field's declared type.

    Raises:
        InvalidOptionError: If the value does not parse as the declared type.
    """
    value = value.strip()
    kind = option.kind

    if kind is OptionKind.STRING:
        return value

    if kind is OptionKind.BOOL:
        lowered = value.lower()
        if lowered in TRUE_WORDS:
            return True
        if lowered in FALSE_WORDS:
            return False
        raise _coercion_error(option, value)

    if kind is OptionKind.ENUM:
        members = cast("type[Enum]", option.enum)
        lowered = value.lower()
        for member in members:
            if member.name.lower() == lowered:
                return member
        raise _coercion_error(option, value)

    try:
        if kind is OptionKind.INT:
            return int(value)
        if kind is OptionKind.FLOAT:
            return float(value)
    except ValueError as e:
        raise _coercion_error(option, value) from e

    raise _coercion_error(option, value)


def _coercion_error(option: OptionField, value: str) -> InvalidOptionError:
    return InvalidOptionError(
        f"Option {option.name} of type {option.type_name} could not be parsed",
        context={"option": option.name, "expected": option.type_name, "value": value},
    )


def bind(schema: OptionSchema[T], descriptor: ConnectionDescriptor) -> T:
    """Bind a descriptor's options onto the schema's target type.

    Fields are processed in declaration order. Absent optional fields take
    their default; absent or blank required fields raise.

    Raises:
        InvalidOptionError: On a missing required option or a coercion failure.
    """
    values: dict[str, Any] = {}
    for option in schema.fields:
        raw = descriptor.get_option(option.name)

        if option.required:
            if raw is None or not raw.strip():
                raise InvalidOptionError(
                    f'The required option "{option.name}" is missing',
                    context={"option": option.name, "expected": option.type_name},
                )
            value = coerce(option, raw)
        elif raw is None:
            value = option.default
        else:
            value = coerce(option, raw)

        values[option.attr or option.name] = value

    return schema.target(**values)


def supported_options(schema: OptionSchema[Any]) -> list[OptionSpec]:
    """Advertise the options a schema accepts."""
    return schema.supported_options()


def parse_connection_string(
    text: str, schema: OptionSchema[T]
) -> tuple[ConnectionDescriptor, T]:
    """Parse a connection string and bind its options in one step."""
    descriptor = ConnectionDescriptor.parse(text)
    return descriptor, bind(schema, descriptor)
