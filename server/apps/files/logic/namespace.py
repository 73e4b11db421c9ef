"""Coordination of file and directory operations across both stores.

File bytes live in a content store, hierarchy and metadata live in the
relational metadata store. The two have no shared transaction, so every
operation here runs a fixed sequence of store calls with an explicit
policy for what happens when a later step fails:

- upload writes content first, never over an existing object, and
  deletes it again if the metadata insert fails;
- deletes remove content first, then metadata, so a leftover record
  resolves to NotFound on the next read;
- renames and moves copy content, delete the sources and only then
  rewrite metadata. Copies already made are never rolled back; a failure
  after the first mutation is reported as a partial failure.

Public operations never raise store errors. They return an
`OperationResult` carrying either a payload or an error kind.
"""

import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

from django.apps import apps
from django.conf import settings
from django.db import DatabaseError

from server.apps.files.exceptions import (
    ErrorKind,
    InvalidOperationError,
    NamespaceError,
    PartialFailureError,
    PathAlreadyExistsError,
    PathNotFoundError,
    StoreUnavailableError,
)
from server.apps.files.infrastructure.content import (
    ContentStore,
    StoredObject,
    write_placeholder,
)
from server.apps.files.infrastructure.metadata import MetadataStore
from server.apps.files.infrastructure.paths import (
    detect_mime_type,
    directory_chain,
    is_placeholder,
    is_within,
    join_path,
    leaf_name,
    normalize_path,
    parent_of,
    replace_prefix,
    subtree_prefix,
    validate_name,
    validate_path,
)
from server.apps.files.logic.tree import (
    DirectoryItem,
    FileView,
    build_tree_from_objects,
    build_tree_from_records,
    file_view_from_record,
)
from server.apps.files.models import Directory, File

logger = logging.getLogger(__name__)


class Role(enum.IntEnum):
    """Access tier of the caller, as assigned by the authorization layer."""

    GUEST = 0
    FRIEND = 1
    OWNER = 2


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller attached to coordinator calls.

    Authorization happens before the coordinator is reached; the
    principal is only recorded in log lines.
    """

    user_id: int | None = None
    role: Role = Role.GUEST

    def __str__(self) -> str:
        """Compact form for log lines."""
        user = 'anonymous' if self.user_id is None else self.user_id
        return f'{user}:{self.role.name.lower()}'


ANONYMOUS: Final = Principal()


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a namespace operation.

    Exactly one of `payload` (on success) or `error` (on failure) is
    meaningful. `message` is human readable in both cases.
    """

    success: bool
    payload: Any = None
    error: ErrorKind | None = None
    message: str = ''

    @classmethod
    def ok(cls, payload: Any = None, message: str = '') -> 'OperationResult':
        """Successful result."""
        return cls(success=True, payload=payload, message=message)

    @classmethod
    def failure(cls, error: NamespaceError) -> 'OperationResult':
        """Failed result for a namespace error."""
        return cls(success=False, error=error.kind, message=error.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the HTTP layer."""
        return {
            'success': self.success,
            'message': self.message,
            'error': self.error.value if self.error else None,
            'payload': _serialize(self.payload),
        }

    def upload_response(self) -> dict[str, Any]:
        """Upload response shape: success, message and optional fileInfo."""
        response: dict[str, Any] = {
            'success': self.success,
            'message': self.message,
        }
        if self.success and isinstance(self.payload, FileView):
            response['fileInfo'] = self.payload.to_dict()
        return response


def _serialize(payload: Any) -> Any:
    if hasattr(payload, 'to_dict'):
        return payload.to_dict()
    if isinstance(payload, list):
        return [_serialize(item) for item in payload]
    if isinstance(payload, StoredObject):
        return {
            'path': payload.path,
            'size': payload.size,
            'contentType': payload.content_type,
        }
    return payload


_Operation = Callable[..., OperationResult]


def _namespace_operation(name: str) -> Callable[[_Operation], _Operation]:
    """Convert failures of a coordinator method into results.

    Namespace errors keep their kind. Database errors escaping the
    metadata store become StoreUnavailable. Each failure is logged once,
    partial failures with every affected path.
    """
    def decorator(method: _Operation) -> _Operation:
        @functools.wraps(method)
        def wrapper(
            self: 'NamespaceCoordinator',
            *args: Any,
            **kwargs: Any,
        ) -> OperationResult:
            try:
                return method(self, *args, **kwargs)
            except PartialFailureError as error:
                logger.error(
                    '%s by %s left stores inconsistent: %s (affected: %s)',
                    name,
                    self.principal,
                    error.message,
                    ', '.join(error.affected_paths) or '-',
                )
                return OperationResult.failure(error)
            except NamespaceError as error:
                logger.info(
                    '%s by %s failed: %s [%s]',
                    name,
                    self.principal,
                    error.message,
                    error.kind,
                )
                return OperationResult.failure(error)
            except DatabaseError:
                logger.exception(
                    '%s by %s failed: metadata store unavailable',
                    name,
                    self.principal,
                )
                return OperationResult.failure(StoreUnavailableError(
                    'Metadata store is unavailable',
                ))

        return wrapper

    return decorator


class NamespaceCoordinator:
    """File system operations over a content store and metadata store."""

    def __init__(
        self,
        content: ContentStore,
        metadata: MetadataStore,
        *,
        principal: Principal = ANONYMOUS,
        download_url_ttl: int | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            content: Store holding file bytes.
            metadata: Store holding files and directories.
            principal: Caller the operations are performed for.
            download_url_ttl: Default lifetime of download URLs in
                seconds (``FILES_DOWNLOAD_URL_TTL`` when omitted).
        """
        self.content = content
        self.metadata = metadata
        self.principal = principal
        self._download_url_ttl = download_url_ttl

    # Reads

    @_namespace_operation('list_directory')
    def list_directory(self, path: str = '') -> OperationResult:
        """List a directory: its files and one level of subdirectories.

        Args:
            path: Directory path, '' for the root.

        Returns:
            Result whose payload is a `DirectoryItem`.
        """
        path = normalize_path(path)
        directory = self._require_directory(path)
        directory_id = directory.id if directory else None

        files = self.metadata.list_files_under(directory_id)
        subdirectories = self.metadata.list_directories_under(directory_id)
        files_by_directory = {
            subdirectory.id: self.metadata.list_files_under(subdirectory.id)
            for subdirectory in subdirectories
        }
        total_sizes = {path: self.metadata.total_size(path)}
        for subdirectory in subdirectories:
            total_sizes[subdirectory.path] = self.metadata.total_size(
                subdirectory.path,
            )

        listing = build_tree_from_records(
            path,
            directory,
            files,
            subdirectories,
            files_by_directory=files_by_directory,
            total_sizes=total_sizes,
        )
        return OperationResult.ok(listing)

    @_namespace_operation('list_files')
    def list_files(self, path: str = '') -> OperationResult:
        """List the immediate files of a directory.

        Returns:
            Result whose payload is a list of `FileView`.
        """
        path = normalize_path(path)
        directory = self._require_directory(path)
        records = self.metadata.list_files_under(
            directory.id if directory else None,
        )
        return OperationResult.ok([
            file_view_from_record(record)
            for record in records
            if not is_placeholder(record.path)
        ])

    @_namespace_operation('browse_content')
    def browse_content(self, path: str = '') -> OperationResult:
        """List a directory straight from the content store.

        Hierarchy is derived from object names. A directory with neither
        a metadata record nor any object under it is reported missing.

        Returns:
            Result whose payload is a `DirectoryItem`.
        """
        path = normalize_path(path)
        listing = build_tree_from_objects(
            path,
            self.content.list_by_prefix(subtree_prefix(path)),
        )
        is_empty = not listing.files and not listing.subdirectories
        if path and is_empty and not self.metadata.find_directory_by_path(path):
            raise PathNotFoundError(f'Directory not found: {path}', path=path)
        return OperationResult.ok(listing)

    @_namespace_operation('download')
    def download(self, path: str) -> OperationResult:
        """Fetch the bytes and content type of a file.

        A record whose content is gone, or whose content is empty, is
        reported as NotFound.

        Returns:
            Result whose payload is a `StoredObject`.
        """
        path = self._require_path(path)
        record = self._require_file(path)
        try:
            stored = self.content.get(path)
        except PathNotFoundError:
            logger.warning('File record without content: %s', path)
            raise
        if not stored.data:
            raise PathNotFoundError(f'File is empty: {path}', path=path)
        if not stored.content_type:
            stored = StoredObject(
                path=path,
                data=stored.data,
                content_type=record.content_type,
            )
        return OperationResult.ok(stored)

    @_namespace_operation('download_url')
    def download_url(self, path: str, ttl: int | None = None) -> OperationResult:
        """Build a time-limited, read-only URL for a file.

        Args:
            path: File path.
            ttl: Lifetime in seconds, defaults to the configured TTL.

        Returns:
            Result whose payload is the URL string.
        """
        path = self._require_path(path)
        self._require_file(path)
        if not self.content.exists(path):
            logger.warning('File record without content: %s', path)
            raise PathNotFoundError(f'Content not found: {path}', path=path)
        url = self.content.download_url(path, ttl or self._default_ttl())
        return OperationResult.ok(url)

    # Writes

    @_namespace_operation('upload')
    def upload(
        self,
        data: bytes,
        name: str,
        directory_path: str = '',
        content_type: str | None = None,
    ) -> OperationResult:
        """Store a new file.

        Nothing is ever overwritten: the content write is conditional on
        the path being free in the content store too, so of two concurrent
        uploads only one stores bytes. Content left without a record must
        be deleted before the path can be uploaded again. The metadata
        record is inserted only after the content write succeeded, and
        missing parent directories are created on the way.

        Args:
            data: File content.
            name: Leaf name of the file.
            directory_path: Target directory, '' for the root.
            content_type: MIME type; guessed from the name when omitted.

        Returns:
            Result whose payload is the new file's `FileView`.
        """
        name = validate_name(name)
        directory_path = validate_path(normalize_path(directory_path))
        path = join_path(directory_path, name)

        self._ensure_path_free(path)
        self._ensure_no_file_ancestors(directory_path)
        content_type = content_type or detect_mime_type(name)

        try:
            self.content.put(path, data, content_type, overwrite=False)
        except PathAlreadyExistsError:
            # Either an upload in flight or content left without a record
            logger.warning('Content without a file record blocks %s', path)
            raise PathAlreadyExistsError(
                f'Content already exists at {path}; delete it first',
                path=path,
            ) from None

        try:
            parent = self._ensure_directories(directory_path)
            record = self.metadata.insert_file(
                name=name,
                path=path,
                size_bytes=len(data),
                content_type=content_type,
                directory=parent,
            )
        except (NamespaceError, DatabaseError) as error:
            # The conditional write above means the object is ours alone
            self._discard_uploaded_content(path, error)
            raise

        logger.info(
            '%s uploaded %s (%d bytes)',
            self.principal,
            path,
            len(data),
        )
        return OperationResult.ok(
            file_view_from_record(record),
            message=f'Uploaded {path}',
        )

    @_namespace_operation('mkdir')
    def mkdir(self, path: str) -> OperationResult:
        """Create a directory, and any missing parents.

        Returns:
            Result whose payload is the new `DirectoryItem`.
        """
        path = validate_path(normalize_path(path))
        if not path:
            raise InvalidOperationError('The root directory always exists')
        self._ensure_path_free(path)
        self._ensure_no_file_ancestors(parent_of(path))

        parent = self._ensure_directories(parent_of(path))
        directory = self.metadata.insert_directory(
            name=leaf_name(path),
            path=path,
            parent=parent,
        )
        write_placeholder(self.content, path)

        logger.info('%s created directory %s', self.principal, path)
        return OperationResult.ok(
            self._directory_node(directory),
            message=f'Created {path}',
        )

    @_namespace_operation('delete_file')
    def delete_file(self, path: str) -> OperationResult:
        """Delete a file's content and then its record.

        Content without a record is removed as well; a record without
        content is removed without complaint.
        """
        path = self._require_path(path)
        record = self.metadata.find_file_by_path(path)

        if record is None:
            if not is_placeholder(path) and self.content.delete(path):
                logger.warning('Deleted content without a file record: %s', path)
                return OperationResult.ok(message=f'Deleted {path}')
            raise PathNotFoundError(f'File not found: {path}', path=path)

        content_deleted = self.content.delete(path)
        if not content_deleted:
            logger.warning('File record without content: %s', path)

        try:
            record_deleted = self.metadata.delete_file(record.id)
        except DatabaseError as error:
            if not content_deleted:
                raise
            raise PartialFailureError(
                'delete_file',
                path,
                'content was deleted but the file record remains',
                affected_paths=(path,),
            ) from error

        if not (content_deleted or record_deleted):
            raise PathNotFoundError(f'File not found: {path}', path=path)

        logger.info('%s deleted file %s', self.principal, path)
        return OperationResult.ok(message=f'Deleted {path}')

    @_namespace_operation('delete_directory')
    def delete_directory(self, path: str) -> OperationResult:
        """Delete a directory with everything below it.

        Content of every descendant file goes first, then any remaining
        objects under the prefix (placeholders included), then every
        metadata row of the subtree in one transaction.
        """
        path = normalize_path(path)
        if not path:
            raise InvalidOperationError('The root directory cannot be deleted')
        self._require_directory(path)

        deleted: list[str] = []
        file_paths = list(
            self.metadata.files_in_subtree(path).values_list('path', flat=True),
        )
        for file_path in file_paths:
            self._delete_subtree_object(path, file_path, deleted)
        leftovers = [
            info.path
            for info in self.content.list_by_prefix(subtree_prefix(path))
        ]
        for object_path in leftovers:
            self._delete_subtree_object(path, object_path, deleted)

        try:
            files_removed, directories_removed = self.metadata.delete_subtree(
                path,
            )
        except DatabaseError as error:
            if not deleted:
                raise
            raise PartialFailureError(
                'delete_directory',
                path,
                f'{len(deleted)} objects deleted but metadata rows remain',
                affected_paths=deleted,
            ) from error

        logger.info(
            '%s deleted directory %s (%d files, %d directories, %d objects)',
            self.principal,
            path,
            files_removed,
            directories_removed,
            len(deleted),
        )
        return OperationResult.ok(message=f'Deleted {path}')

    @_namespace_operation('rename_file')
    def rename_file(self, path: str, new_name: str) -> OperationResult:
        """Rename a file within its directory.

        Returns:
            Result whose payload is the renamed file's `FileView`.
        """
        path = self._require_path(path)
        new_name = validate_name(new_name)
        record = self._require_file(path)
        new_path = join_path(parent_of(path), new_name)
        return OperationResult.ok(
            self._relocate_file(record, new_path, record.directory, 'rename_file'),
            message=f'Renamed {path} to {new_path}',
        )

    @_namespace_operation('move_file')
    def move_file(self, path: str, destination: str) -> OperationResult:
        """Move a file into another directory, keeping its name.

        Returns:
            Result whose payload is the moved file's `FileView`.
        """
        path = self._require_path(path)
        destination = normalize_path(destination)
        record = self._require_file(path)
        target = self._require_directory(destination)
        new_path = join_path(destination, record.name)
        return OperationResult.ok(
            self._relocate_file(record, new_path, target, 'move_file'),
            message=f'Moved {path} to {new_path}',
        )

    @_namespace_operation('rename_directory')
    def rename_directory(self, path: str, new_name: str) -> OperationResult:
        """Rename a directory, rewriting every descendant path.

        Returns:
            Result whose payload is the renamed `DirectoryItem`.
        """
        path = self._require_path(path)
        new_name = validate_name(new_name)
        directory = self._require_directory(path)
        new_path = join_path(parent_of(path), new_name)
        moved = self._relocate_directory(
            directory,
            new_path,
            directory.parent,
            'rename_directory',
        )
        return OperationResult.ok(
            self._directory_node(moved),
            message=f'Renamed {path} to {new_path}',
        )

    @_namespace_operation('move_directory')
    def move_directory(self, path: str, destination: str) -> OperationResult:
        """Move a directory with its subtree into another directory.

        Moving a directory into itself or one of its descendants is
        rejected before anything is touched.

        Returns:
            Result whose payload is the moved `DirectoryItem`.
        """
        path = self._require_path(path)
        destination = normalize_path(destination)
        if is_within(destination, path):
            raise InvalidOperationError(
                f'Cannot move {path} into itself or its subtree',
                path=destination,
            )
        directory = self._require_directory(path)
        target = self._require_directory(destination)
        new_path = join_path(destination, directory.name)
        moved = self._relocate_directory(
            directory,
            new_path,
            target,
            'move_directory',
        )
        return OperationResult.ok(
            self._directory_node(moved),
            message=f'Moved {path} to {new_path}',
        )

    # Helpers

    def _default_ttl(self) -> int:
        if self._download_url_ttl:
            return self._download_url_ttl
        return settings.FILES_DOWNLOAD_URL_TTL

    def _require_path(self, path: str) -> str:
        path = normalize_path(path)
        if not path:
            raise InvalidOperationError('Path cannot be empty')
        return path

    def _require_file(self, path: str) -> File:
        record = self.metadata.find_file_by_path(path)
        if record is None:
            raise PathNotFoundError(f'File not found: {path}', path=path)
        return record

    def _require_directory(self, path: str) -> Directory | None:
        """Directory record for path; None stands for the root."""
        if not path:
            return None
        directory = self.metadata.find_directory_by_path(path)
        if directory is None:
            raise PathNotFoundError(f'Directory not found: {path}', path=path)
        return directory

    def _ensure_path_free(self, path: str) -> None:
        if self.metadata.find_file_by_path(path) is not None:
            raise PathAlreadyExistsError(
                f'A file already exists at {path}',
                path=path,
            )
        if self.metadata.find_directory_by_path(path) is not None:
            raise PathAlreadyExistsError(
                f'A directory already exists at {path}',
                path=path,
            )

    def _ensure_no_file_ancestors(self, directory_path: str) -> None:
        for ancestor in directory_chain(directory_path):
            if self.metadata.find_file_by_path(ancestor) is not None:
                raise PathAlreadyExistsError(
                    f'A file already exists at {ancestor}',
                    path=ancestor,
                )

    def _ensure_directories(self, path: str) -> Directory | None:
        """Return the directory at path, creating missing ones top-down."""
        directory, created = self.metadata.ensure_directories(path)
        for created_path in created:
            logger.info('Created missing parent directory: %s', created_path)
            write_placeholder(self.content, created_path)
        return directory

    def _discard_uploaded_content(
        self,
        path: str,
        cause: NamespaceError | DatabaseError,
    ) -> None:
        logger.warning(
            'File record for %s not created (%s); deleting uploaded content',
            path,
            cause,
        )
        try:
            self.content.delete(path)
        except NamespaceError as error:
            raise PartialFailureError(
                'upload',
                path,
                'content was stored, the file record was not created and '
                f'deleting the content failed: {error.message}',
                affected_paths=(path,),
            ) from error

    def _delete_subtree_object(
        self,
        root_path: str,
        object_path: str,
        deleted: list[str],
    ) -> None:
        try:
            self.content.delete(object_path)
        except NamespaceError as error:
            if not deleted:
                raise
            raise PartialFailureError(
                'delete_directory',
                root_path,
                f'deleting {object_path} failed after {len(deleted)} '
                f'objects: {error.message}',
                affected_paths=deleted,
            ) from error
        deleted.append(object_path)

    def _relocate_file(
        self,
        record: File,
        new_path: str,
        directory: Directory | None,
        operation: str,
    ) -> FileView:
        """Copy content to new_path, delete the source, then update metadata."""
        path = record.path
        if new_path == path:
            raise InvalidOperationError(
                f'{path} is already at that location',
                path=path,
            )
        self._ensure_path_free(new_path)

        # A failed copy leaves the source untouched
        self.content.copy(path, new_path)
        try:
            self.content.delete(path)
        except NamespaceError as error:
            raise PartialFailureError(
                operation,
                path,
                f'content copied to {new_path} but the source was not deleted',
                affected_paths=(path, new_path),
            ) from error

        try:
            updated = self.metadata.update_file_path(
                record.id,
                new_path,
                leaf_name(new_path),
                directory,
            )
        except (NamespaceError, DatabaseError) as error:
            raise PartialFailureError(
                operation,
                path,
                f'content moved to {new_path} but the file record '
                f'still points at {path}',
                affected_paths=(path, new_path),
            ) from error

        logger.info('%s moved file %s -> %s', self.principal, path, new_path)
        return file_view_from_record(updated)

    def _relocate_directory(
        self,
        directory: Directory,
        new_path: str,
        parent: Directory | None,
        operation: str,
    ) -> Directory:
        """Copy every object of the subtree, delete sources, rewrite rows."""
        old_path = directory.path
        if new_path == old_path:
            raise InvalidOperationError(
                f'{old_path} is already at that location',
                path=old_path,
            )
        self._ensure_path_free(new_path)

        sources = [
            info.path
            for info in self.content.list_by_prefix(subtree_prefix(old_path))
        ]
        copied: list[str] = []
        for source in sources:
            destination = replace_prefix(source, old_path, new_path)
            try:
                self.content.copy(source, destination)
            except NamespaceError as error:
                # Nothing copied yet means nothing changed
                if not copied:
                    raise
                raise PartialFailureError(
                    operation,
                    old_path,
                    f'copying {source} failed after {len(copied)} '
                    f'objects: {error.message}',
                    affected_paths=copied,
                ) from error
            copied.append(destination)

        for index, source in enumerate(sources):
            try:
                self.content.delete(source)
            except NamespaceError as error:
                raise PartialFailureError(
                    operation,
                    old_path,
                    f'all objects copied but deleting {source} failed',
                    affected_paths=[*copied, *sources[index:]],
                ) from error

        try:
            self.metadata.update_directory_path(
                directory.id,
                new_path,
                leaf_name(new_path),
                parent,
            )
        except (NamespaceError, DatabaseError) as error:
            if not sources:
                raise
            raise PartialFailureError(
                operation,
                old_path,
                f'content moved to {new_path} but metadata still '
                f'points at {old_path}',
                affected_paths=copied,
            ) from error

        logger.info(
            '%s moved directory %s -> %s (%d objects)',
            self.principal,
            old_path,
            new_path,
            len(sources),
        )
        return self._require_directory(new_path)

    def _directory_node(self, directory: Directory) -> DirectoryItem:
        return DirectoryItem(
            name=directory.name,
            path=directory.path,
            created_at=directory.created_at,
            modified_at=directory.modified_at,
            total_size=self.metadata.total_size(directory.path),
        )


def build_coordinator(principal: Principal | None = None) -> NamespaceCoordinator:
    """Coordinator over the process-wide content store.

    Args:
        principal: Caller of the operations, anonymous when omitted.

    Returns:
        Ready to use coordinator.
    """
    files_config = apps.get_app_config('files')
    return NamespaceCoordinator(
        files_config.content_store,
        MetadataStore(),
        principal=principal or ANONYMOUS,
    )
