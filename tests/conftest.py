"""Shared pytest fixtures."""

import logging

import pytest

from contact_sync.storage import ContactStore, SyncDatabase, SyncLogStore


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handler setup done by CLI invocations between tests."""
    yield
    logger = logging.getLogger("contact_sync")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.disabled = False
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def database():
    """Create an initialized in-memory database."""
    db = SyncDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def contacts(database):
    """Create a contact store on the in-memory database."""
    return ContactStore(database)


@pytest.fixture
def sync_log(database):
    """Create a sync log store on the in-memory database."""
    return SyncLogStore(database)
