"""Shared fixtures for files app tests."""

from dataclasses import dataclass
from typing import Final

import boto3
import pytest
from django.apps import apps
from django.db import DatabaseError
from moto import mock_aws

from server.apps.files.exceptions import NamespaceError, StoreUnavailableError
from server.apps.files.infrastructure.embedded import DatabaseContentStore
from server.apps.files.infrastructure.memory import InMemoryContentStore
from server.apps.files.infrastructure.metadata import MetadataStore
from server.apps.files.infrastructure.storage import FileStorage, S3ContentStore
from server.apps.files.logic.namespace import NamespaceCoordinator

TEST_BUCKET: Final = 'files'


@dataclass
class _FailureRule:
    successes_left: int
    paths: frozenset[str] | None
    error: type[NamespaceError]


class FlakyContentStore(InMemoryContentStore):
    """In-memory store whose operations fail on demand."""

    def __init__(self) -> None:
        """Initialize store without failures."""
        super().__init__()
        self._rules: dict[str, _FailureRule] = {}

    def fail_on(
        self,
        operation: str,
        *,
        after: int = 0,
        paths: set[str] | None = None,
        error: type[NamespaceError] = StoreUnavailableError,
    ) -> None:
        """Make an operation fail after `after` successful calls.

        Args:
            operation: Name of the store method ('put', 'copy', ...).
            after: Calls allowed to succeed before failures start.
            paths: Only calls for these paths fail (all when None).
            error: Exception class raised on failure.
        """
        self._rules[operation] = _FailureRule(
            successes_left=after,
            paths=frozenset(paths) if paths is not None else None,
            error=error,
        )

    def put(self, path, data, content_type, *, overwrite=True):
        """Write an object unless told to fail."""
        self._check('put', path)
        return super().put(path, data, content_type, overwrite=overwrite)

    def get(self, path):
        """Read an object unless told to fail."""
        self._check('get', path)
        return super().get(path)

    def delete(self, path):
        """Delete an object unless told to fail."""
        self._check('delete', path)
        return super().delete(path)

    def copy(self, source, destination):
        """Copy an object unless told to fail."""
        self._check('copy', source)
        super().copy(source, destination)

    def _check(self, operation: str, path: str) -> None:
        rule = self._rules.get(operation)
        if rule is None:
            return
        if rule.paths is not None and path not in rule.paths:
            return
        if rule.successes_left > 0:
            rule.successes_left -= 1
            return
        raise rule.error(f'Simulated {operation} failure', path=path)


class BrokenMetadataStore(MetadataStore):
    """Metadata store whose chosen mutations raise `DatabaseError`."""

    def __init__(self, *broken: str) -> None:
        """Initialize store.

        Args:
            broken: Names of the methods that should fail.
        """
        self.broken = set(broken)

    def insert_file(self, **kwargs):
        """Insert a file record unless broken."""
        self._check('insert_file')
        return super().insert_file(**kwargs)

    def delete_file(self, file_id):
        """Delete a file record unless broken."""
        self._check('delete_file')
        return super().delete_file(file_id)

    def delete_subtree(self, path):
        """Delete a subtree unless broken."""
        self._check('delete_subtree')
        return super().delete_subtree(path)

    def update_file_path(self, *args, **kwargs):
        """Update a file path unless broken."""
        self._check('update_file_path')
        return super().update_file_path(*args, **kwargs)

    def update_directory_path(self, *args, **kwargs):
        """Update a directory path unless broken."""
        self._check('update_directory_path')
        return super().update_directory_path(*args, **kwargs)

    def _check(self, name: str) -> None:
        if name in self.broken:
            raise DatabaseError(f'Simulated {name} failure')


@pytest.fixture
def mock_s3():
    """Mock S3 service with files bucket.

    Yields:
        boto3 S3 resource with files bucket created.
    """
    with mock_aws():
        # Create S3 resource
        conn = boto3.resource('s3', region_name='us-east-1')

        # Create bucket
        conn.create_bucket(Bucket=TEST_BUCKET)

        yield conn


@pytest.fixture
def file_storage(mock_s3):
    """FileStorage bound to the mocked bucket.

    Returns:
        Fresh FileStorage instance.
    """
    return FileStorage(
        bucket_name=TEST_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
        file_overwrite=True,
        querystring_auth=True,
    )


@pytest.fixture
def s3_store(file_storage):
    """S3 content store with fast copy polling.

    Returns:
        S3ContentStore instance.
    """
    return S3ContentStore(file_storage, poll_interval=0.01, max_attempts=5)


@pytest.fixture
def memory_store():
    """Empty in-memory content store.

    Returns:
        InMemoryContentStore instance.
    """
    return InMemoryContentStore()


@pytest.fixture
def database_store(db):
    """Content store embedding bytes in the database.

    Returns:
        DatabaseContentStore instance.
    """
    return DatabaseContentStore('/api/files/content/')


@pytest.fixture
def flaky_store():
    """In-memory content store that fails on demand.

    Returns:
        FlakyContentStore instance.
    """
    return FlakyContentStore()


@pytest.fixture
def metadata_store(db):
    """Metadata store over the test database.

    Returns:
        MetadataStore instance.
    """
    return MetadataStore()


@pytest.fixture
def coordinator(memory_store, metadata_store):
    """Coordinator over an in-memory content store.

    Returns:
        NamespaceCoordinator instance.
    """
    return NamespaceCoordinator(memory_store, metadata_store)


@pytest.fixture
def flaky_coordinator(flaky_store, metadata_store):
    """Coordinator whose content store fails on demand.

    Returns:
        NamespaceCoordinator instance.
    """
    return NamespaceCoordinator(flaky_store, metadata_store)


@pytest.fixture
def broken_metadata(db):
    """Factory for metadata stores with failing mutations.

    Returns:
        Callable taking the names of the methods that should fail.
    """
    return BrokenMetadataStore


@pytest.fixture
def files_app_config(settings):
    """Files app config with the memory backend and no cached store.

    Yields:
        The files AppConfig.
    """
    settings.FILES_CONTENT_BACKEND = 'memory'
    config = apps.get_app_config('files')
    config.__dict__.pop('content_store', None)
    yield config
    config.__dict__.pop('content_store', None)
