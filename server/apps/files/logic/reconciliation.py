"""Detection and repair of drift between the content and metadata stores.

Operations on the two stores are not atomic together, so crashes and
partial failures leave entries in one store only:

- metadata only: a file record whose content object is gone;
- content only: an object with no file record, or a placeholder whose
  directory record is gone.

Repairs recreate the missing side where the data still exists and drop
what cannot be recovered.
"""

import logging
from dataclasses import dataclass

from django.db import DatabaseError

from server.apps.files.exceptions import NamespaceError, StoreUnavailableError
from server.apps.files.infrastructure.content import (
    ContentStore,
    write_placeholder,
)
from server.apps.files.infrastructure.metadata import MetadataStore
from server.apps.files.infrastructure.paths import (
    is_placeholder,
    leaf_name,
    parent_of,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    """Paths present in only one of the two stores."""

    metadata_only: tuple[str, ...] = ()
    content_only: tuple[str, ...] = ()
    orphan_placeholders: tuple[str, ...] = ()

    @property
    def is_consistent(self) -> bool:
        """True when both stores agree."""
        return not (
            self.metadata_only or self.content_only or self.orphan_placeholders
        )


@dataclass(frozen=True, slots=True)
class RepairSummary:
    """Outcome of `repair`."""

    adopted: int = 0
    removed_records: int = 0
    removed_placeholders: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class MigrationSummary:
    """Outcome of `migrate_content`."""

    migrated: int = 0
    failed: int = 0
    skipped: int = 0


def find_inconsistencies(
    content: ContentStore,
    metadata: MetadataStore,
) -> ConsistencyReport:
    """Compare every file record with every stored object.

    Args:
        content: Store holding file bytes.
        metadata: Store holding files and directories.

    Returns:
        Sorted paths found in only one store.
    """
    file_paths = set(
        metadata.files_in_subtree('').values_list('path', flat=True),
    )
    directory_paths = set(
        metadata.directories_in_subtree('').values_list('path', flat=True),
    )
    object_paths = {info.path for info in content.list_by_prefix('')}

    placeholders = {path for path in object_paths if is_placeholder(path)}
    report = ConsistencyReport(
        metadata_only=tuple(sorted(file_paths - object_paths)),
        content_only=tuple(sorted(object_paths - placeholders - file_paths)),
        orphan_placeholders=tuple(sorted(
            path
            for path in placeholders
            if parent_of(path) not in directory_paths
        )),
    )
    logger.info(
        'Consistency check: %d metadata only, %d content only, '
        '%d orphan placeholders',
        len(report.metadata_only),
        len(report.content_only),
        len(report.orphan_placeholders),
    )
    return report


def repair(
    report: ConsistencyReport,
    content: ContentStore,
    metadata: MetadataStore,
) -> RepairSummary:
    """Resolve the inconsistencies of a report.

    Content without a record is adopted: a file record (and any missing
    parent directories) is created for it. Records without content are
    deleted, as are orphan placeholders. Each path is rechecked before it
    is touched; a failing path is logged and counted, the rest proceed.

    Args:
        report: Result of `find_inconsistencies`.
        content: Store holding file bytes.
        metadata: Store holding files and directories.

    Returns:
        Counts of what was repaired and what failed.
    """
    adopted = removed_records = removed_placeholders = failed = 0

    for path in report.content_only:
        try:
            adopted += _adopt(path, content, metadata)
        except (NamespaceError, DatabaseError):
            logger.exception('Failed to adopt content: %s', path)
            failed += 1

    for path in report.metadata_only:
        try:
            removed_records += _drop_record(path, content, metadata)
        except (NamespaceError, DatabaseError):
            logger.exception('Failed to remove dangling record: %s', path)
            failed += 1

    for path in report.orphan_placeholders:
        try:
            removed_placeholders += _drop_placeholder(path, content, metadata)
        except (NamespaceError, DatabaseError):
            logger.exception('Failed to remove placeholder: %s', path)
            failed += 1

    summary = RepairSummary(
        adopted=adopted,
        removed_records=removed_records,
        removed_placeholders=removed_placeholders,
        failed=failed,
    )
    logger.info('Repair finished: %s', summary)
    return summary


def migrate_content(
    source: ContentStore,
    target: ContentStore,
    metadata: MetadataStore,
) -> MigrationSummary:
    """Move the bytes of every file record from one store to another.

    Each file is written to the target and checked there before its
    source copy is deleted, so an interrupted run can simply be repeated.
    Files whose content is already gone from the source are skipped.

    Args:
        source: Store currently holding the content.
        target: Store the content moves to.
        metadata: Store holding files and directories.

    Returns:
        Counts of migrated, failed and skipped files.
    """
    migrated = failed = skipped = 0

    file_paths = metadata.files_in_subtree('').order_by('path').values_list(
        'path',
        flat=True,
    )
    for path in file_paths:
        try:
            if not source.exists(path):
                skipped += 1
                continue
            stored = source.get(path)
            target.put(path, stored.data, stored.content_type)
            if not target.exists(path):
                raise StoreUnavailableError(
                    f'Migrated content not found in target: {path}',
                    path=path,
                )
            source.delete(path)
        except NamespaceError:
            logger.exception('Failed to migrate file: %s', path)
            failed += 1
        else:
            logger.info('Migrated file: %s', path)
            migrated += 1

    directory_paths = metadata.directories_in_subtree('').values_list(
        'path',
        flat=True,
    )
    for directory_path in directory_paths:
        write_placeholder(target, directory_path)

    logger.info(
        'Migration completed. Migrated: %d, Failed: %d, Skipped: %d',
        migrated,
        failed,
        skipped,
    )
    return MigrationSummary(migrated=migrated, failed=failed, skipped=skipped)


def _adopt(path: str, content: ContentStore, metadata: MetadataStore) -> int:
    if metadata.find_file_by_path(path) is not None:
        return 0
    stored = content.get(path)
    directory, created = metadata.ensure_directories(parent_of(path))
    for directory_path in created:
        write_placeholder(content, directory_path)
    metadata.insert_file(
        name=leaf_name(path),
        path=path,
        size_bytes=stored.size,
        content_type=stored.content_type,
        directory=directory,
    )
    logger.warning('Adopted content without a file record: %s', path)
    return 1


def _drop_record(
    path: str,
    content: ContentStore,
    metadata: MetadataStore,
) -> int:
    record = metadata.find_file_by_path(path)
    if record is None or content.exists(path):
        return 0
    logger.warning('Removing file record without content: %s', path)
    return int(metadata.delete_file(record.id))


def _drop_placeholder(
    path: str,
    content: ContentStore,
    metadata: MetadataStore,
) -> int:
    if metadata.find_directory_by_path(parent_of(path)) is not None:
        return 0
    logger.warning('Removing placeholder without a directory: %s', path)
    return int(content.delete(path))
