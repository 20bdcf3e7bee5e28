import pytest

from common.datastore import FileDataStore
from common.state import CursorStore, MetadataStore, WhitelistStore


@pytest.fixture
def data_store(tmp_path):
    return FileDataStore(tmp_path / "data")


@pytest.fixture
def cursors(data_store):
    return CursorStore(data_store)


@pytest.fixture
def metadata(data_store):
    return MetadataStore(data_store)


@pytest.fixture
def whitelist(data_store):
    return WhitelistStore(data_store)
