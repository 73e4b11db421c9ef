"""Content store keeping file bytes inside the database.

Content is stored as base64 text in `EmbeddedContent`. This mode exists
for environments without object storage and is a poor fit for large
files: every read decodes the whole object in memory.
"""

import base64
import binascii
import logging
from collections.abc import Iterator
from urllib.parse import quote

from django.db import DatabaseError, IntegrityError, transaction

from server.apps.files.exceptions import (
    PathAlreadyExistsError,
    PathNotFoundError,
    StoreUnavailableError,
)
from server.apps.files.infrastructure.content import (
    ObjectInfo,
    ObjectRef,
    StoredObject,
)
from server.apps.files.models import EmbeddedContent

logger = logging.getLogger(__name__)


class DatabaseContentStore:
    """Content store backed by the `EmbeddedContent` table.

    Directories are modelled in the metadata tables, so no placeholder
    objects are needed to keep empty directories visible.
    """

    uses_placeholders = False

    def __init__(self, url_base: str) -> None:
        """Initialize store.

        Args:
            url_base: Base of the plain, non-expiring download URLs.
        """
        self._url_base = url_base

    def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = True,
    ) -> ObjectRef:
        """Encode and store an object.

        Raises:
            PathAlreadyExistsError: If overwrite is off and a row exists.
            StoreUnavailableError: If the database write fails.
        """
        fields = {
            'content_base64': base64.b64encode(data).decode('ascii'),
            'content_type': content_type,
            'size_bytes': len(data),
        }
        try:
            if overwrite:
                EmbeddedContent.objects.update_or_create(
                    path=path,
                    defaults=fields,
                )
            else:
                with transaction.atomic():
                    EmbeddedContent.objects.create(path=path, **fields)
        except IntegrityError as error:
            raise PathAlreadyExistsError(
                f'Content already exists at {path}',
                path=path,
            ) from error
        except DatabaseError as error:
            logger.exception('Failed to store embedded content: %s', path)
            raise StoreUnavailableError(
                f'Could not store content for {path}',
                path=path,
            ) from error
        return ObjectRef(path=path, size=len(data), content_type=content_type)

    def get(self, path: str) -> StoredObject:
        """Load and decode an object.

        Raises:
            PathNotFoundError: If no content is stored at path.
            StoreUnavailableError: If the row cannot be read or its text
                is not valid base64.
        """
        try:
            row = EmbeddedContent.objects.get(path=path)
        except EmbeddedContent.DoesNotExist as error:
            raise PathNotFoundError(
                f'Object not found: {path}',
                path=path,
            ) from error
        except DatabaseError as error:
            logger.exception('Failed to load embedded content: %s', path)
            raise StoreUnavailableError(
                f'Could not load content for {path}',
                path=path,
            ) from error

        try:
            data = base64.b64decode(row.content_base64, validate=True)
        except binascii.Error as error:
            logger.exception('Corrupt embedded content: %s', path)
            raise StoreUnavailableError(
                f'Stored content for {path} is corrupt',
                path=path,
            ) from error
        return StoredObject(path=path, data=data, content_type=row.content_type)

    def delete(self, path: str) -> bool:
        """Delete an object if present."""
        try:
            deleted, _ = EmbeddedContent.objects.filter(path=path).delete()
        except DatabaseError as error:
            logger.exception('Failed to delete embedded content: %s', path)
            raise StoreUnavailableError(
                f'Could not delete content for {path}',
                path=path,
            ) from error
        return deleted > 0

    def copy(self, source: str, destination: str) -> None:
        """Copy an object row; committed once the transaction ends.

        Raises:
            PathNotFoundError: If the source object is missing.
            StoreUnavailableError: If the database copy fails.
        """
        try:
            with transaction.atomic():
                row = EmbeddedContent.objects.get(path=source)
                EmbeddedContent.objects.update_or_create(
                    path=destination,
                    defaults={
                        'content_base64': row.content_base64,
                        'content_type': row.content_type,
                        'size_bytes': row.size_bytes,
                    },
                )
        except EmbeddedContent.DoesNotExist as error:
            raise PathNotFoundError(
                f'Copy source not found: {source}',
                path=source,
            ) from error
        except DatabaseError as error:
            logger.exception('Copy failed: %s -> %s', source, destination)
            raise StoreUnavailableError(
                f'Could not copy {source} to {destination}',
                path=source,
            ) from error

    def exists(self, path: str) -> bool:
        """Check whether an object exists."""
        try:
            return EmbeddedContent.objects.filter(path=path).exists()
        except DatabaseError as error:
            raise StoreUnavailableError(
                f'Could not check {path}',
                path=path,
            ) from error

    def list_by_prefix(self, prefix: str) -> Iterator[ObjectInfo]:
        """List stored objects whose path starts with prefix."""
        rows = (
            EmbeddedContent.objects
            .under_prefix(prefix)
            .order_by('path')
            .values_list('path', 'size_bytes', 'modified_at')
        )
        try:
            for path, size_bytes, modified_at in rows.iterator():
                yield ObjectInfo(
                    path=path,
                    size=size_bytes,
                    last_modified=modified_at,
                )
        except DatabaseError as error:
            logger.exception('Failed to list embedded content: %s', prefix)
            raise StoreUnavailableError(
                f'Could not list {prefix!r}',
                path=prefix,
            ) from error

    def download_url(self, path: str, ttl: int) -> str:
        """Plain URL served by the HTTP layer; cannot expire."""
        return f'{self._url_base}{quote(path)}'
