"""
Store registry: resolves connection string schemes to store factories.

A registry is an explicit value created at application start and passed to
whatever needs scheme resolution; there is no process-wide default
instance. Use create_default_registry() to get one populated with the
bundled backends.
"""

from __future__ import annotations

import importlib
import inspect
import pkgutil
import threading
from abc import ABC, abstractmethod
from importlib.metadata import entry_points
from types import ModuleType
from typing import Any, Iterable

from kvps.config import Settings, get_settings
from kvps.connection import SCHEME_SEPARATOR
from kvps.exceptions import (
    ConfigurationError,
    InvalidConnectionStringError,
    ProviderNotFoundError,
)
from kvps.logging import get_logger, log_context
from kvps.options import OptionSchema
from kvps.store import KVStore
from kvps.types import OptionSpec

logger = get_logger(__name__)

BACKENDS_PACKAGE = "kvps.backends"


class StoreFactory(ABC):
    """Builds store instances for one or more schemes.

    Subclasses declare their schemes and option schema as class attributes
    and implement ``create``. The factory receives the full connection
    string and parses path and options itself.
    """

    schemes: tuple[str, ...] = ()
    description: str = ""
    usage: str = ""
    options_schema: OptionSchema[Any] | None = None

    @property
    def supported_options(self) -> list[OptionSpec]:
        """Options this factory understands, for help and discovery."""
        if self.options_schema is None:
            return []
        return self.options_schema.supported_options()

    @abstractmethod
    def create(self, connection_string: str) -> KVStore:
        """Create a store from a connection string.

        Raises:
            InvalidOptionError: If the options do not bind.
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(schemes={list(self.schemes)})"


class StoreRegistry:
    """Thread-safe mapping of scheme names to factories.

    Scheme matching is case-insensitive. Registering a scheme again replaces
    the previous factory.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, StoreFactory] = {}

    def register(
        self,
        factory: StoreFactory,
        schemes: Iterable[str] | None = None,
    ) -> StoreRegistry:
        """Register a factory for the given schemes (default: its own).

        Returns:
            The registry, for chaining calls.
        """
        names = [s.strip().lower() for s in (schemes if schemes is not None else factory.schemes)]
        names = [s for s in names if s]
        if not names:
            raise ConfigurationError(f"{factory!r} declares no schemes")

        with self._lock:
            for scheme in names:
                previous = self._factories.get(scheme)
                if previous is not None and previous is not factory:
                    logger.debug(
                        "Replacing factory",
                        scheme=scheme,
                        previous=type(previous).__name__,
                    )
                self._factories[scheme] = factory

        logger.debug("Registered factory", factory=type(factory).__name__, schemes=names)
        return self

    @property
    def providers(self) -> dict[str, StoreFactory]:
        """Snapshot of the registered scheme to factory mapping."""
        with self._lock:
            return dict(self._factories)

    def get_factory(self, scheme: str) -> StoreFactory | None:
        with self._lock:
            return self._factories.get(scheme.strip().lower())

    def create(self, connection_string: str) -> KVStore:
        """Create a store for a connection string.

        Raises:
            InvalidConnectionStringError: If the string has no ``://``.
            ProviderNotFoundError: If no factory handles the scheme.
        """
        scheme, sep, _ = connection_string.partition(SCHEME_SEPARATOR)
        if not sep:
            raise InvalidConnectionStringError(
                "Connection string has no scheme separator",
                context={"expected": f"<scheme>{SCHEME_SEPARATOR}<path>"},
            )

        factory = self.get_factory(scheme)
        if factory is None:
            raise ProviderNotFoundError(
                "No provider registered for scheme",
                context={"scheme": scheme.strip(), "registered": sorted(self.providers)},
            )

        with log_context(store=scheme.strip().lower(), operation="create"):
            logger.debug("Creating store", factory=type(factory).__name__)
            return factory.create(connection_string)

    def register_defaults(
        self,
        discover: bool,
        entry_point_group: str = BACKENDS_PACKAGE,
    ) -> StoreRegistry:
        """Register the bundled backends.

        The memory and file factories are always registered. With
        ``discover`` set, every module of the bundled backends package and
        every factory published under ``entry_point_group`` is registered as
        well; backends whose dependencies fail to import are skipped.
        """
        from kvps.backends.filesystem import FileStoreFactory
        from kvps.backends.memory import MemoryStoreFactory

        self.register(MemoryStoreFactory())
        self.register(FileStoreFactory())

        if discover:
            self._discover_modules()
            self._discover_entry_points(entry_point_group)

        return self

    def _discover_modules(self) -> None:
        package = importlib.import_module(BACKENDS_PACKAGE)
        for info in pkgutil.iter_modules(package.__path__):
            module_name = f"{BACKENDS_PACKAGE}.{info.name}"
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                logger.info("Skipping backend", module=module_name, error=str(e))
                continue

            for factory_cls in _factory_classes(module):
                self.register(factory_cls())

    def _discover_entry_points(self, group: str) -> None:
        for ep in entry_points(group=group):
            try:
                loaded = ep.load()
            except (ImportError, AttributeError) as e:
                logger.warning("Skipping backend entry point", entry_point=ep.name, error=str(e))
                continue

            factory = loaded() if inspect.isclass(loaded) else loaded
            if not isinstance(factory, StoreFactory):
                logger.warning(
                    "Entry point is not a store factory",
                    entry_point=ep.name,
                    type=type(factory).__name__,
                )
                continue
            self.register(factory)


def _factory_classes(module: ModuleType) -> list[type[StoreFactory]]:
    """Concrete StoreFactory subclasses defined in a module."""
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, StoreFactory)
        and obj.__module__ == module.__name__
        and not inspect.isabstract(obj)
    ]


def create_default_registry(settings: Settings | None = None) -> StoreRegistry:
    """Build a registry with the bundled backends.

    Args:
        settings: Library settings. If None, loads from env.
    """
    settings = settings or get_settings()
    return StoreRegistry().register_defaults(
        discover=settings.DISCOVER_BACKENDS,
        entry_point_group=settings.ENTRY_POINT_GROUP,
    )
