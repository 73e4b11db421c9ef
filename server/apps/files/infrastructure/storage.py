"""Custom storage backend and content store for S3-compatible storage."""

import logging
from collections.abc import Iterator
from typing import Any, Final, final

from typing_extensions import override

from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from django.core.files.uploadedfile import SimpleUploadedFile
from storages.backends.s3 import S3Storage

from server.apps.files.exceptions import (
    CopyTimeoutError,
    PathAlreadyExistsError,
    PathNotFoundError,
    StoreUnavailableError,
)
from server.apps.files.infrastructure.content import (
    ObjectInfo,
    ObjectRef,
    StoredObject,
)
from server.apps.files.infrastructure.paths import leaf_name

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))
_KEY_TAKEN_CODES: Final = frozenset(('412', 'PreconditionFailed'))
_DEFAULT_CONTENT_TYPE: Final = 'application/octet-stream'


def _error_code(error: ClientError) -> str | None:
    return error.response.get('Error', {}).get('Code')


def _is_missing_key(error: ClientError) -> bool:
    return _error_code(error) in _MISSING_KEY_CODES


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend for file content.

    Extends django-storages S3Storage with:
    - Enhanced error logging
    - Server-side copy that waits until the destination is visible
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file to S3 with error handling and logging.

        Args:
            name: Storage path for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage path used.

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.info('Uploading file to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.info('Successfully uploaded file: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload file to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete file from S3 with error handling and logging.

        Args:
            name: Storage path of file to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting file from storage: %s', name)
            super().delete(name)
            logger.info('Successfully deleted file: %s', name)
        except Exception:
            logger.exception('Failed to delete file from storage: %s', name)
            raise

    def create_object(self, name: str, data: bytes, content_type: str) -> None:
        """Upload an object only if no object exists under that key yet.

        Args:
            name: Storage path for the object.
            data: Object content.
            content_type: MIME type stored with the object.

        Raises:
            ClientError: 'PreconditionFailed' if the key already exists.
        """
        logger.info('Creating object in storage: %s', name)
        self.connection.meta.client.put_object(
            Bucket=self.bucket_name,
            Key=name,
            Body=data,
            ContentType=content_type,
            IfNoneMatch='*',
        )
        logger.info('Successfully created object: %s', name)

    def copy_object(
        self,
        source: str,
        destination: str,
        *,
        poll_interval: float,
        max_attempts: int,
    ) -> None:
        """Copy an object inside the bucket and wait for it to appear.

        S3 doesn't support native rename, so renames and moves are a
        server-side copy followed by deletion of the source. The copy is
        only reported done once the destination answers HEAD requests.

        Args:
            source: Source storage path.
            destination: Destination storage path.
            poll_interval: Seconds between completion checks.
            max_attempts: Completion checks before giving up.

        Raises:
            WaiterError: If the destination never became visible.
            Exception: If the copy itself fails.
        """
        logger.info('Copying file: %s -> %s', source, destination)
        copy_source = {
            'Bucket': self.bucket_name,
            'Key': source,
        }
        self.bucket.copy(copy_source, destination)
        waiter = self.connection.meta.client.get_waiter('object_exists')
        waiter.wait(
            Bucket=self.bucket_name,
            Key=destination,
            WaiterConfig={'Delay': poll_interval, 'MaxAttempts': max_attempts},
        )
        logger.info('Copied file: %s -> %s', source, destination)


class S3ContentStore:
    """Content store on top of `FileStorage`.

    Maps botocore failures onto the namespace error taxonomy so callers
    never see transport exceptions.
    """

    uses_placeholders = True

    def __init__(
        self,
        storage: FileStorage,
        *,
        poll_interval: float,
        max_attempts: int,
    ) -> None:
        """Initialize store.

        Args:
            storage: Configured storage backend.
            poll_interval: Seconds between copy completion checks.
            max_attempts: Copy completion checks before timing out.
        """
        self._storage = storage
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts

    def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = True,
    ) -> ObjectRef:
        """Upload an object with an explicit content type.

        Without overwrite the upload is conditional on the key being
        absent, decided by S3 itself.

        Raises:
            PathAlreadyExistsError: If overwrite is off and the key exists.
            StoreUnavailableError: On any other S3 failure.
        """
        try:
            if overwrite:
                self._storage.save(
                    path,
                    SimpleUploadedFile(
                        leaf_name(path),
                        data,
                        content_type=content_type,
                    ),
                )
            else:
                self._storage.create_object(path, data, content_type)
        except ClientError as error:
            if _error_code(error) in _KEY_TAKEN_CODES:
                raise PathAlreadyExistsError(
                    f'Content already exists at {path}',
                    path=path,
                ) from error
            raise StoreUnavailableError(
                f'Could not upload {path}',
                path=path,
            ) from error
        except BotoCoreError as error:
            raise StoreUnavailableError(
                f'Could not upload {path}',
                path=path,
            ) from error
        return ObjectRef(path=path, size=len(data), content_type=content_type)

    def get(self, path: str) -> StoredObject:
        """Download an object.

        Raises:
            PathNotFoundError: If the key does not exist.
            StoreUnavailableError: On any other S3 failure.
        """
        try:
            response = self._storage.bucket.Object(path).get()
            data = response['Body'].read()
        except ClientError as error:
            if _is_missing_key(error):
                raise PathNotFoundError(
                    f'Object not found: {path}',
                    path=path,
                ) from error
            logger.exception('Failed to download object: %s', path)
            raise StoreUnavailableError(
                f'Could not download {path}',
                path=path,
            ) from error
        except BotoCoreError as error:
            logger.exception('Failed to download object: %s', path)
            raise StoreUnavailableError(
                f'Could not download {path}',
                path=path,
            ) from error
        return StoredObject(
            path=path,
            data=data,
            content_type=response.get('ContentType') or _DEFAULT_CONTENT_TYPE,
        )

    def delete(self, path: str) -> bool:
        """Delete an object if present."""
        if not self.exists(path):
            return False
        try:
            self._storage.delete(path)
        except (BotoCoreError, ClientError) as error:
            raise StoreUnavailableError(
                f'Could not delete {path}',
                path=path,
            ) from error
        return True

    def copy(self, source: str, destination: str) -> None:
        """Server-side copy, waiting until the destination is committed.

        Raises:
            PathNotFoundError: If the source key does not exist.
            CopyTimeoutError: If completion was not observed in time.
            StoreUnavailableError: On any other S3 failure.
        """
        try:
            self._storage.copy_object(
                source,
                destination,
                poll_interval=self._poll_interval,
                max_attempts=self._max_attempts,
            )
        except WaiterError as error:
            logger.exception('Copy did not complete: %s', destination)
            raise CopyTimeoutError(
                f'Copy of {source} to {destination} did not complete '
                f'after {self._max_attempts} checks',
                path=destination,
            ) from error
        except ClientError as error:
            if _is_missing_key(error):
                raise PathNotFoundError(
                    f'Copy source not found: {source}',
                    path=source,
                ) from error
            logger.exception('Copy failed: %s -> %s', source, destination)
            raise StoreUnavailableError(
                f'Could not copy {source} to {destination}',
                path=source,
            ) from error
        except BotoCoreError as error:
            logger.exception('Copy failed: %s -> %s', source, destination)
            raise StoreUnavailableError(
                f'Could not copy {source} to {destination}',
                path=source,
            ) from error

    def exists(self, path: str) -> bool:
        """Check whether an object exists with a HEAD request."""
        client = self._storage.connection.meta.client
        try:
            client.head_object(Bucket=self._storage.bucket_name, Key=path)
        except ClientError as error:
            if _is_missing_key(error):
                return False
            raise StoreUnavailableError(
                f'Could not check {path}',
                path=path,
            ) from error
        except BotoCoreError as error:
            raise StoreUnavailableError(
                f'Could not check {path}',
                path=path,
            ) from error
        return True

    def list_by_prefix(self, prefix: str) -> Iterator[ObjectInfo]:
        """Page lazily through every object under prefix."""
        summaries = self._storage.bucket.objects.filter(Prefix=prefix)
        try:
            for summary in summaries:
                yield ObjectInfo(
                    path=summary.key,
                    size=summary.size,
                    last_modified=summary.last_modified,
                )
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to list objects under: %s', prefix)
            raise StoreUnavailableError(
                f'Could not list {prefix!r}',
                path=prefix,
            ) from error

    def download_url(self, path: str, ttl: int) -> str:
        """Presigned URL, or the plain object URL when signing is off."""
        try:
            return self._storage.url(path, expire=ttl)
        except (BotoCoreError, ClientError) as error:
            raise StoreUnavailableError(
                f'Could not build a download URL for {path}',
                path=path,
            ) from error
