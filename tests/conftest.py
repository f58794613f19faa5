"""Shared fixtures: settings on a temp dir and planners in both backend modes."""

import pytest
import pytest_asyncio

from planstore.data_init import build_planner
from planstore.kv_store import KeyValueStore
from planstore.relational import RelationalStore
from planstore.settings import Settings
from planstore.storage import StorageSelector


def make_settings(tmp_path, **overrides):
    values = {
        "PLANSTORE_DATA_DIR": str(tmp_path),
        "PLANSTORE_FALLBACK_PATH": ":memory:",
        "PLANSTORE_SEED_PATH": str(tmp_path / "missing-seed.json"),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def relational_store(database_url):
    store = RelationalStore(database_url, probe=lambda: True)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def primary_selector(database_url):
    selector = StorageSelector(KeyValueStore(), RelationalStore(database_url, probe=lambda: True))
    await selector.initialize()
    yield selector
    await selector.reset()


@pytest_asyncio.fixture(params=["relational", "fallback"])
async def planner(request, settings):
    use_relational = request.param == "relational"
    planner = build_planner(settings, probe=lambda: use_relational)
    await planner.initializer.initialize()
    assert planner.selector.is_using_primary() is use_relational
    yield planner
    await planner.close()
