"""Pytest configuration and fixtures."""

import logging

import pytest

from output_mapping.lib.session import BackendSession
from output_mapping.lib.table_writer import TableWriter
from tests.fakes import FakeMetadataClient, FakeStorageClient


@pytest.fixture
def storage_client():
    """In-memory storage backend."""
    return FakeStorageClient()


@pytest.fixture
def metadata_client():
    """In-memory metadata service."""
    return FakeMetadataClient()


@pytest.fixture
def session(storage_client, metadata_client):
    """Backend session on the default branch."""
    return BackendSession(client=storage_client, metadata=metadata_client)


@pytest.fixture
def branch_session(storage_client, metadata_client):
    """Backend session on development branch 123."""
    return BackendSession(
        client=storage_client, metadata=metadata_client, branch_id="123", branch_name="dev-123"
    )


@pytest.fixture
def writer(session):
    return TableWriter(session)


@pytest.fixture
def tables_dir(tmp_path):
    """Output directory ``out/tables`` under a temporary data root."""
    directory = tmp_path / "out" / "tables"
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and level changed by a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)

