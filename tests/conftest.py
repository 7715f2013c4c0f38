import pytest

from database import init_db
from page_store import PageStore


@pytest.fixture
def Session(tmp_path):
    return init_db(f"sqlite:///{tmp_path / 'audit.db'}")


@pytest.fixture
def page_store(Session):
    return PageStore(Session)


@pytest.fixture
def site(page_store):
    return page_store.add_site("example.com")
