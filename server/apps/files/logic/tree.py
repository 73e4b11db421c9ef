"""Directory tree views for navigation.

A listing covers one level: the target directory, its immediate files and
its immediate subdirectories. Deeper levels are fetched by listing again
with the subdirectory's path.

Two sources are supported:
- metadata rows (`Directory`/`File` records), the normal case;
- a flat prefix listing of the content store, where hierarchy has to be
  derived from object names.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from server.apps.files.infrastructure.content import ObjectInfo
from server.apps.files.infrastructure.paths import (
    PATH_SEPARATOR,
    detect_mime_type,
    is_placeholder,
    join_path,
    leaf_name,
    subtree_prefix,
)
from server.apps.files.models import Directory, File


def _isoformat(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


@dataclass(frozen=True, slots=True)
class FileView:
    """File as shown in a directory listing."""

    name: str
    path: str
    size: int
    content_type: str
    created_at: datetime | None = None
    modified_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the HTTP layer."""
        return {
            'name': self.name,
            'path': self.path,
            'size': self.size,
            'contentType': self.content_type,
            'createdAt': _isoformat(self.created_at),
            'lastModifiedAt': _isoformat(self.modified_at),
        }


@dataclass(slots=True)
class DirectoryItem:
    """Directory node of a listing.

    `total_size` is the recursive size of every file below the directory.
    Subdirectory nodes are one level deep: their own `subdirectories`
    are left empty.
    """

    name: str
    path: str
    created_at: datetime | None = None
    modified_at: datetime | None = None
    total_size: int = 0
    files: list[FileView] = field(default_factory=list)
    subdirectories: list['DirectoryItem'] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        """Number of files attributed to this node."""
        return len(self.files)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the HTTP layer."""
        return {
            'name': self.name,
            'path': self.path,
            'createdAt': _isoformat(self.created_at),
            'lastModifiedAt': _isoformat(self.modified_at),
            'totalSize': self.total_size,
            'fileCount': self.file_count,
            'files': [file_view.to_dict() for file_view in self.files],
            'subdirectories': [
                subdirectory.to_dict() for subdirectory in self.subdirectories
            ],
        }


def file_view_from_record(record: File) -> FileView:
    """Build a listing entry from a file record."""
    return FileView(
        name=record.name,
        path=record.path,
        size=record.size_bytes,
        content_type=record.content_type,
        created_at=record.created_at,
        modified_at=record.modified_at,
    )


def build_tree_from_records(  # noqa: WPS211
    path: str,
    directory: Directory | None,
    files: Iterable[File],
    subdirectories: Iterable[Directory],
    *,
    files_by_directory: Mapping[int, Iterable[File]],
    total_sizes: Mapping[str, int],
) -> DirectoryItem:
    """Build a listing from metadata rows.

    Args:
        path: Path of the listed directory ('' for the root).
        directory: Record of the listed directory, None for the root.
        files: Immediate files of the listed directory.
        subdirectories: Immediate subdirectories of the listed directory.
        files_by_directory: Immediate files of each subdirectory, by ID.
        total_sizes: Recursive size per directory path, the listed
            directory included.

    Returns:
        Directory node with its files and one level of subdirectories.
    """
    item = DirectoryItem(
        name=directory.name if directory else '',
        path=path,
        created_at=directory.created_at if directory else None,
        modified_at=directory.modified_at if directory else None,
        total_size=total_sizes.get(path, 0),
        files=_visible_file_views(files),
    )
    for subdirectory in subdirectories:
        item.subdirectories.append(DirectoryItem(
            name=subdirectory.name,
            path=subdirectory.path,
            created_at=subdirectory.created_at,
            modified_at=subdirectory.modified_at,
            total_size=total_sizes.get(subdirectory.path, 0),
            files=_visible_file_views(
                files_by_directory.get(subdirectory.id, ()),
            ),
        ))
    return item


def build_tree_from_objects(
    path: str,
    objects: Iterable[ObjectInfo],
) -> DirectoryItem:
    """Build a listing from a flat content store listing.

    Every object under ``path/`` is attributed either to the directory
    itself (no separator left after stripping the prefix) or to the
    immediate subdirectory named by its first remaining segment. Files
    nested deeper are counted against that immediate subdirectory.
    Placeholder objects make a subdirectory visible but are never listed
    or counted.

    An empty listing yields an empty node; whether the directory exists
    has to be decided by the caller.

    Args:
        path: Path of the listed directory ('' for the root).
        objects: Objects whose path starts with the subtree prefix.

    Returns:
        Directory node with its files and one level of subdirectories.
    """
    prefix = subtree_prefix(path)
    item = DirectoryItem(name=leaf_name(path) if path else '', path=path)
    # Insertion order is kept so subdirectories appear as first listed
    children: dict[str, DirectoryItem] = {}

    for info in objects:
        if not info.path.startswith(prefix):
            continue
        relative = info.path[len(prefix):]
        if not relative:
            continue
        head, separator, rest = relative.partition(PATH_SEPARATOR)

        if not separator:
            if is_placeholder(head):
                continue
            _attach(item, _file_view_from_object(info))
            continue

        child = children.get(head)
        if child is None:
            child = DirectoryItem(name=head, path=join_path(path, head))
            children[head] = child
        if not rest or is_placeholder(rest):
            continue
        file_view = _file_view_from_object(info)
        _attach(child, file_view)
        item.total_size += file_view.size
        item.modified_at = _latest(item.modified_at, file_view.modified_at)

    item.subdirectories = list(children.values())
    return item


def _attach(node: DirectoryItem, file_view: FileView) -> None:
    node.files.append(file_view)
    node.total_size += file_view.size
    node.modified_at = _latest(node.modified_at, file_view.modified_at)


def _latest(
    current: datetime | None,
    candidate: datetime | None,
) -> datetime | None:
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


def _file_view_from_object(info: ObjectInfo) -> FileView:
    name = leaf_name(info.path)
    return FileView(
        name=name,
        path=info.path,
        size=info.size,
        content_type=detect_mime_type(name),
        modified_at=info.last_modified,
    )


def _visible_file_views(records: Iterable[File]) -> list[FileView]:
    return [
        file_view_from_record(record)
        for record in records
        if not is_placeholder(record.path)
    ]
