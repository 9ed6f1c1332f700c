# test/rentals/conftest.py - Shared fixtures for the rentals plugin tests

import os

os.environ["DRAMATIQ_BROKER"] = "stub"
os.environ["CACHE_BACKEND"] = "memory"
os.environ.pop("MONGO_URI", None)

import httpx
import pytest

from core.cache import MemoryTTLCache
from core.config import Settings
from plugins.rentals.container import build_services
from plugins.rentals.models.contract import Contract
from plugins.rentals.storage.store import LocalJsonStore

from .factories import contract_doc, unreachable


@pytest.fixture
def make_contract():
    def _make(**overrides) -> Contract:
        return Contract.model_validate(contract_doc(**overrides))
    return _make


@pytest.fixture
def store(tmp_path):
    return LocalJsonStore(str(tmp_path / "data"))


@pytest.fixture
def test_settings(tmp_path):
    config = Settings()
    config.DATA_DIR = str(tmp_path / "data")
    config.DEFAULT_OWNER = "Markov Services"
    return config


@pytest.fixture
def services(store, test_settings):
    return build_services(
        store,
        test_settings,
        transport=httpx.MockTransport(unreachable),
        invoice_cache=MemoryTTLCache(default_ttl=60),
        inflation_cache=MemoryTTLCache(default_ttl=60),
    )
