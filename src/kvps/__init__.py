"""kvps: a uniform key-value-pair storage contract over pluggable backends."""

from __future__ import annotations

from kvps.connection import ConnectionDescriptor, parse
from kvps.exceptions import (
    ConfigurationError,
    InvalidConnectionStringError,
    InvalidCursorError,
    InvalidKeyError,
    InvalidOptionError,
    KVPSError,
    ProviderNotFoundError,
)
from kvps.extensions import ExtendedStore, extend
from kvps.keys import KeyMappedStore, KeyTransformer, PrefixKeyTransformer, with_key_prefix
from kvps.logging import setup_logging
from kvps.options import OptionField, OptionKind, OptionSchema, bind, parse_connection_string
from kvps.registry import StoreFactory, StoreRegistry, create_default_registry
from kvps.store import BatchStore, FullStore, KVStore, StructuredStore
from kvps.types import Capability, Entry, OptionSpec, Query

__version__ = "0.3.0"

__all__ = [
    "BatchStore",
    "Capability",
    "ConfigurationError",
    "ConnectionDescriptor",
    "Entry",
    "ExtendedStore",
    "FullStore",
    "InvalidConnectionStringError",
    "InvalidCursorError",
    "InvalidKeyError",
    "InvalidOptionError",
    "KVPSError",
    "KVStore",
    "KeyMappedStore",
    "KeyTransformer",
    "OptionField",
    "OptionKind",
    "OptionSchema",
    "OptionSpec",
    "PrefixKeyTransformer",
    "ProviderNotFoundError",
    "Query",
    "StoreFactory",
    "StoreRegistry",
    "StructuredStore",
    "bind",
    "create_default_registry",
    "extend",
    "open_store",
    "parse",
    "parse_connection_string",
    "setup_logging",
    "with_key_prefix",
]


def open_store(
    registry: StoreRegistry,
    connection_string: str,
    key_prefix: str | None = None,
) -> FullStore:
    """Open a store with the batch and structured extensions available.

    Resolves the scheme through ``registry``, wraps the store so every
    extension is available, and optionally scopes it to ``key_prefix``.

    Raises:
        InvalidConnectionStringError: If the string is malformed.
        ProviderNotFoundError: If no factory handles the scheme.
        InvalidOptionError: If the options do not bind.
    """
    store = extend(registry.create(connection_string))
    if key_prefix:
        return KeyMappedStore(store, PrefixKeyTransformer(key_prefix))
    return store
