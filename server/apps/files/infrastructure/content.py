"""Content store contract shared by every backend.

A content store keeps file bytes under full slash-delimited paths. It has
no notion of directories beyond prefix listing and offers no multi-object
transactions, so every mutation must be safe to retry: `put` and `copy`
overwrite, `delete` is a no-op for missing objects.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Final, Protocol, runtime_checkable

from server.apps.files.exceptions import NamespaceError
from server.apps.files.infrastructure.paths import placeholder_path

logger = logging.getLogger(__name__)

_PLACEHOLDER_CONTENT_TYPE: Final = 'application/octet-stream'


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    """One entry of a prefix listing."""

    path: str
    size: int
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ObjectRef:
    """Reference to an object that was just written."""

    path: str
    size: int
    content_type: str


@dataclass(frozen=True, slots=True)
class StoredObject:
    """Object bytes together with their stored content type."""

    path: str
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        """Size of the content in bytes."""
        return len(self.data)


@runtime_checkable
class ContentStore(Protocol):
    """Capability set every content backend provides.

    Implementations raise `PathNotFoundError` for missing objects,
    `CopyTimeoutError` when a copy does not complete in time and
    `StoreUnavailableError` for transport failures.
    """

    # Whether empty directories need a placeholder object to be listable
    uses_placeholders: bool

    def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = True,
    ) -> ObjectRef:
        """Write an object with the given content type.

        With overwrite off the write only succeeds if no object exists at
        path yet; otherwise `PathAlreadyExistsError` is raised.
        """

    def get(self, path: str) -> StoredObject:
        """Read an object."""

    def delete(self, path: str) -> bool:
        """Delete an object, returning True if something was deleted."""

    def copy(self, source: str, destination: str) -> None:
        """Copy an object and wait until the copy is durably committed."""

    def exists(self, path: str) -> bool:
        """Check whether an object exists."""

    def list_by_prefix(self, prefix: str) -> Iterator[ObjectInfo]:
        """Lazily list every object whose path starts with prefix."""

    def download_url(self, path: str, ttl: int) -> str:
        """Build a read-only URL, expiring after ttl seconds if supported."""


def write_placeholder(store: ContentStore, directory_path: str) -> bool:
    """Make a directory visible to prefix listings of the store.

    Placeholders are a derived view of the directory records, so a
    failed write is logged and reported but never raised.

    Returns:
        True if a placeholder was written.
    """
    if not store.uses_placeholders:
        return False
    try:
        store.put(
            placeholder_path(directory_path),
            b'',
            _PLACEHOLDER_CONTENT_TYPE,
        )
    except NamespaceError:
        logger.warning(
            'Could not write placeholder for %s',
            directory_path,
            exc_info=True,
        )
        return False
    return True
