"""
Pytest configuration and fixtures for kvps tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncIterator, Generator
from unittest.mock import patch

import pytest

from kvps.backends.memory import MemoryStore
from kvps.config import Settings, clear_settings_cache
from kvps.registry import StoreRegistry


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "KVPS_LOG_LEVEL": "DEBUG",
        "KVPS_DISCOVER_BACKENDS": "false",
        "KVPS_ENTRY_POINT_GROUP": "kvps.test_backends",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Settings:
    """Provide a Settings instance with mock configuration."""
    return Settings(_env_file=None)


@pytest.fixture
def registry() -> StoreRegistry:
    """Registry with the always-on backends only."""
    return StoreRegistry().register_defaults(discover=False)


@pytest.fixture
async def memory_store() -> AsyncIterator[MemoryStore]:
    """Provide an empty in-memory store."""
    store = MemoryStore()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
