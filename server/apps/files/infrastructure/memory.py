"""In-process content store.

Holds objects in an explicit ``path -> object`` map owned by the store
instance. Construct one per process and pass it to whoever needs it.
"""

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Final
from urllib.parse import quote

from django.utils import timezone

from server.apps.files.exceptions import (
    PathAlreadyExistsError,
    PathNotFoundError,
)
from server.apps.files.infrastructure.content import (
    ObjectInfo,
    ObjectRef,
    StoredObject,
)

logger = logging.getLogger(__name__)

_URL_SCHEME: Final = 'memory://'


@dataclass(slots=True)
class _MemoryObject:
    data: bytes
    content_type: str
    last_modified: datetime


class InMemoryContentStore:
    """Content store keeping every object in memory."""

    uses_placeholders = True

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._objects: dict[str, _MemoryObject] = {}
        self._lock = threading.Lock()

    def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = True,
    ) -> ObjectRef:
        """Write an object, replacing any previous version if allowed.

        Raises:
            PathAlreadyExistsError: If overwrite is off and path is taken.
        """
        with self._lock:
            if not overwrite and path in self._objects:
                raise PathAlreadyExistsError(
                    f'Content already exists at {path}',
                    path=path,
                )
            self._objects[path] = _MemoryObject(
                data=bytes(data),
                content_type=content_type,
                last_modified=timezone.now(),
            )
        logger.debug('Stored object in memory: %s', path)
        return ObjectRef(path=path, size=len(data), content_type=content_type)

    def get(self, path: str) -> StoredObject:
        """Read an object.

        Raises:
            PathNotFoundError: If no object is stored at path.
        """
        with self._lock:
            stored = self._objects.get(path)
        if stored is None:
            raise PathNotFoundError(f'Object not found: {path}', path=path)
        return StoredObject(
            path=path,
            data=stored.data,
            content_type=stored.content_type,
        )

    def delete(self, path: str) -> bool:
        """Delete an object if present."""
        with self._lock:
            removed = self._objects.pop(path, None)
        return removed is not None

    def copy(self, source: str, destination: str) -> None:
        """Copy an object; completes immediately.

        Raises:
            PathNotFoundError: If the source object is missing.
        """
        with self._lock:
            stored = self._objects.get(source)
            if stored is None:
                raise PathNotFoundError(
                    f'Copy source not found: {source}',
                    path=source,
                )
            self._objects[destination] = _MemoryObject(
                data=stored.data,
                content_type=stored.content_type,
                last_modified=timezone.now(),
            )

    def exists(self, path: str) -> bool:
        """Check whether an object exists."""
        with self._lock:
            return path in self._objects

    def list_by_prefix(self, prefix: str) -> Iterator[ObjectInfo]:
        """List objects under prefix from a snapshot taken at call time."""
        with self._lock:
            snapshot = sorted(
                (path, stored)
                for path, stored in self._objects.items()
                if path.startswith(prefix)
            )
        for path, stored in snapshot:
            yield ObjectInfo(
                path=path,
                size=len(stored.data),
                last_modified=stored.last_modified,
            )

    def download_url(self, path: str, ttl: int) -> str:
        """Plain URL for an object; memory objects cannot be signed."""
        return f'{_URL_SCHEME}{quote(path)}'
