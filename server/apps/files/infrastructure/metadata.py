"""Relational metadata store for files and directories.

The metadata store is the source of truth for hierarchy and listings.
Multi-row mutations for one logical operation run inside a single
transaction: either every row changes or none does.
"""

import logging

from django.db import IntegrityError, transaction
from django.db.models import QuerySet, Sum

from server.apps.files.exceptions import (
    DuplicatePathError,
    InvalidOperationError,
    PathNotFoundError,
)
from server.apps.files.infrastructure.paths import (
    directory_chain,
    leaf_name,
    replace_prefix,
    subtree_prefix,
)
from server.apps.files.models import Directory, File

logger = logging.getLogger(__name__)


class MetadataStore:
    """Repository over the `File` and `Directory` tables."""

    # Lookups

    def find_file_by_path(self, path: str) -> File | None:
        """Get file record by path, or None."""
        return File.objects.filter(path=path).first()

    def find_directory_by_path(self, path: str) -> Directory | None:
        """Get directory record by path, or None."""
        return Directory.objects.filter(path=path).first()

    def path_taken(self, path: str) -> bool:
        """Check whether any file or directory already uses path."""
        return (
            File.objects.filter(path=path).exists()
            or Directory.objects.filter(path=path).exists()
        )

    def list_files_under(self, directory_id: int | None) -> list[File]:
        """Immediate files of a directory (None for the root)."""
        return list(File.objects.filter(directory_id=directory_id))

    def list_directories_under(self, parent_id: int | None) -> list[Directory]:
        """Immediate subdirectories of a directory (None for the root)."""
        return list(Directory.objects.filter(parent_id=parent_id))

    def files_in_subtree(self, path: str) -> QuerySet[File]:
        """Every file below a directory ('' selects all files)."""
        return File.objects.under_prefix(subtree_prefix(path))

    def directories_in_subtree(self, path: str) -> QuerySet[Directory]:
        """Every strict descendant directory ('' selects all)."""
        return Directory.objects.under_prefix(subtree_prefix(path))

    def total_size(self, path: str) -> int:
        """Recursive sum of file sizes below a directory."""
        aggregate = self.files_in_subtree(path).aggregate(
            total=Sum('size_bytes'),
        )
        return aggregate['total'] or 0

    # Inserts

    def insert_file(
        self,
        *,
        name: str,
        path: str,
        size_bytes: int,
        content_type: str,
        directory: Directory | None,
    ) -> File:
        """Create a file record.

        Raises:
            DuplicatePathError: If path is taken by a file or directory.
        """
        try:
            with transaction.atomic():
                if Directory.objects.filter(path=path).exists():
                    raise DuplicatePathError(
                        f'A directory already exists at {path}',
                        path=path,
                    )
                file_instance = File.objects.create(
                    name=name,
                    path=path,
                    size_bytes=size_bytes,
                    content_type=content_type,
                    directory=directory,
                )
        except IntegrityError as error:
            raise DuplicatePathError(
                f'A file already exists at {path}',
                path=path,
            ) from error
        logger.info(
            'File record created: %s (ID: %d)',
            path,
            file_instance.id,
        )
        return file_instance

    def insert_directory(
        self,
        *,
        name: str,
        path: str,
        parent: Directory | None,
    ) -> Directory:
        """Create a directory record.

        Raises:
            DuplicatePathError: If path is taken by a file or directory.
        """
        try:
            with transaction.atomic():
                if File.objects.filter(path=path).exists():
                    raise DuplicatePathError(
                        f'A file already exists at {path}',
                        path=path,
                    )
                directory = Directory.objects.create(
                    name=name,
                    path=path,
                    parent=parent,
                )
        except IntegrityError as error:
            raise DuplicatePathError(
                f'A directory already exists at {path}',
                path=path,
            ) from error
        logger.info(
            'Directory record created: %s (ID: %d)',
            path,
            directory.id,
        )
        return directory

    def ensure_directories(
        self,
        path: str,
    ) -> tuple[Directory | None, list[str]]:
        """Get the directory at path, creating missing ancestors top-down.

        Args:
            path: Directory path ('' for the root).

        Returns:
            Tuple of (directory record or None for the root, paths of
            the directories that had to be created).

        Raises:
            DuplicatePathError: If a file occupies one of the paths.
        """
        parent: Directory | None = None
        created: list[str] = []
        for directory_path in directory_chain(path):
            existing = self.find_directory_by_path(directory_path)
            if existing is None:
                try:
                    existing = self.insert_directory(
                        name=leaf_name(directory_path),
                        path=directory_path,
                        parent=parent,
                    )
                except DuplicatePathError:
                    # Lost a race against a concurrent create of the path
                    existing = self.find_directory_by_path(directory_path)
                    if existing is None:
                        raise
                else:
                    created.append(directory_path)
            parent = existing
        return parent, created

    # Path updates

    def update_file_path(
        self,
        file_id: int,
        new_path: str,
        new_name: str,
        directory: Directory | None,
    ) -> File:
        """Point a file record at a new path.

        Raises:
            PathNotFoundError: If the record no longer exists.
            DuplicatePathError: If new_path is taken.
        """
        try:
            with transaction.atomic():
                file_instance = self._lock_file(file_id)
                if Directory.objects.filter(path=new_path).exists():
                    raise DuplicatePathError(
                        f'A directory already exists at {new_path}',
                        path=new_path,
                    )
                file_instance.path = new_path
                file_instance.name = new_name
                file_instance.directory = directory
                file_instance.save(update_fields=[
                    'path',
                    'name',
                    'directory',
                    'modified_at',
                ])
        except IntegrityError as error:
            raise DuplicatePathError(
                f'A file already exists at {new_path}',
                path=new_path,
            ) from error
        logger.info('File record updated: ID=%d -> %s', file_id, new_path)
        return file_instance

    def update_directory_path(
        self,
        directory_id: int,
        new_path: str,
        new_name: str,
        parent: Directory | None,
    ) -> int:
        """Move a directory record and rewrite every descendant path.

        The directory row and all descendant file and directory rows are
        updated in one transaction by substituting the old subtree root
        with the new one.

        Args:
            directory_id: ID of the directory to move.
            new_path: New full path of the directory.
            new_name: New leaf name of the directory.
            parent: New parent directory (None for the root).

        Returns:
            Number of rows rewritten, the directory itself included.

        Raises:
            PathNotFoundError: If the directory no longer exists.
            DuplicatePathError: If any rewritten path is taken.
        """
        try:
            with transaction.atomic():
                directory = self._lock_directory(directory_id)
                old_path = directory.path
                if File.objects.filter(path=new_path).exists():
                    raise DuplicatePathError(
                        f'A file already exists at {new_path}',
                        path=new_path,
                    )
                descendants = list(
                    self.directories_in_subtree(old_path)
                    .select_for_update()
                    .order_by('path'),
                )
                files = list(
                    self.files_in_subtree(old_path)
                    .select_for_update()
                    .order_by('path'),
                )

                directory.path = new_path
                directory.name = new_name
                directory.parent = parent
                directory.save(update_fields=[
                    'path',
                    'name',
                    'parent',
                    'modified_at',
                ])
                for child in descendants:
                    child.path = replace_prefix(child.path, old_path, new_path)
                    child.save(update_fields=['path', 'modified_at'])
                for file_instance in files:
                    file_instance.path = replace_prefix(
                        file_instance.path,
                        old_path,
                        new_path,
                    )
                    file_instance.save(update_fields=['path', 'modified_at'])
        except IntegrityError as error:
            raise DuplicatePathError(
                f'Rewriting {new_path} collides with an existing path',
                path=new_path,
            ) from error
        except ValueError as error:
            raise InvalidOperationError(
                f'Cannot rewrite {old_path} to {new_path}: {error}',
                path=old_path,
            ) from error

        rewritten = 1 + len(descendants) + len(files)
        logger.info(
            'Directory records rewritten: %s -> %s (%d rows)',
            old_path,
            new_path,
            rewritten,
        )
        return rewritten

    # Deletes

    def delete_file(self, file_id: int) -> bool:
        """Delete a file record; True if a row was removed."""
        deleted, _ = File.objects.filter(id=file_id).delete()
        return deleted > 0

    def delete_directory(self, directory_id: int) -> bool:
        """Delete a single, empty directory record.

        Raises:
            InvalidOperationError: If the directory still has children.
        """
        with transaction.atomic():
            has_children = (
                File.objects.filter(directory_id=directory_id).exists()
                or Directory.objects.filter(parent_id=directory_id).exists()
            )
            if has_children:
                raise InvalidOperationError(
                    'Directory is not empty; delete its subtree instead',
                )
            deleted, _ = Directory.objects.filter(id=directory_id).delete()
        return deleted > 0

    def delete_subtree(self, path: str) -> tuple[int, int]:
        """Delete a directory with every descendant in one transaction.

        Args:
            path: Path of the directory to remove.

        Returns:
            Tuple of (files removed, directories removed).
        """
        with transaction.atomic():
            files = self.files_in_subtree(path)
            descendants = self.directories_in_subtree(path)
            root = Directory.objects.filter(path=path)
            files_removed = files.count()
            directories_removed = descendants.count() + root.count()
            files.delete()
            descendants.delete()
            root.delete()
        logger.info(
            'Directory subtree deleted: %s (%d files, %d directories)',
            path,
            files_removed,
            directories_removed,
        )
        return files_removed, directories_removed

    def _lock_file(self, file_id: int) -> File:
        try:
            return File.objects.select_for_update().get(id=file_id)
        except File.DoesNotExist as error:
            raise PathNotFoundError(
                f'File record {file_id} no longer exists',
            ) from error

    def _lock_directory(self, directory_id: int) -> Directory:
        try:
            return Directory.objects.select_for_update().get(id=directory_id)
        except Directory.DoesNotExist as error:
            raise PathNotFoundError(
                f'Directory record {directory_id} no longer exists',
            ) from error
