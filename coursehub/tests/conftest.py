from __future__ import annotations

import pytest

from coursehub.core.config import get_settings
from coursehub.persistence.repositories import Repositories, memory_repositories
from coursehub.services.cache import MemoryCacheBackend
from coursehub.services.registry import ServiceRegistry
from coursehub.tests.utils.fakes import RecordingBus
from coursehub.tests.utils.seed import World, seed_world


@pytest.fixture(autouse=True)
def reset_settings_cache():
    # Tests that monkeypatch env vars must not leak cached settings into later tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def repos() -> Repositories:
    return memory_repositories()


@pytest.fixture
async def world(repos: Repositories) -> World:
    return await seed_world(repos)


@pytest.fixture
async def registry(repos: Repositories):
    # Full service graph over in-memory repositories with the bus running.
    services = ServiceRegistry.build(repos, cache_backend=MemoryCacheBackend(), bus=RecordingBus())
    await services.start()
    yield services
    await services.stop()
