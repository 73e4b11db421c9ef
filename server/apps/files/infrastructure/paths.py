"""Path and metadata helpers for the file namespace.

Paths are slash-delimited, relative, and never carry leading or trailing
separators. The root directory is the empty string.
"""

import mimetypes
from typing import Final

from server.apps.files.exceptions import InvalidOperationError

PATH_SEPARATOR: Final = '/'

# Sentinel object keeping empty directories visible in prefix listings
PLACEHOLDER_NAME: Final = '.placeholder'

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_FORBIDDEN_SEGMENTS: Final = frozenset(('.', '..'))


def normalize_path(raw_path: str | None) -> str:
    """Normalize a user-supplied path.

    Backslashes become separators, surrounding whitespace and separators
    are dropped and empty segments are collapsed.

    Args:
        raw_path: Path as received (e.g., '/docs//reports/').

    Returns:
        Normalized path (e.g., 'docs/reports'), '' for the root.

    Raises:
        InvalidOperationError: If a segment is '.' or '..'.
    """
    if not raw_path:
        return ''
    candidate = raw_path.strip().replace('\\', PATH_SEPARATOR)
    segments = [
        segment.strip()
        for segment in candidate.split(PATH_SEPARATOR)
        if segment.strip()
    ]
    for segment in segments:
        if segment in _FORBIDDEN_SEGMENTS:
            raise InvalidOperationError(
                f'Relative segment {segment!r} is not allowed',
                path=raw_path,
            )
    return PATH_SEPARATOR.join(segments)


def validate_name(name: str | None) -> str:
    """Validate a single file or directory name.

    Args:
        name: Proposed leaf name.

    Returns:
        The name with surrounding whitespace removed.

    Raises:
        InvalidOperationError: If the name is empty, contains a separator,
            is a relative segment or is the reserved placeholder name.
    """
    cleaned = (name or '').strip()
    if not cleaned:
        raise InvalidOperationError('Name cannot be empty')
    if PATH_SEPARATOR in cleaned or '\\' in cleaned:
        raise InvalidOperationError(
            f'Name {cleaned!r} must not contain a path separator',
        )
    if cleaned in _FORBIDDEN_SEGMENTS:
        raise InvalidOperationError(f'Name {cleaned!r} is not allowed')
    if cleaned == PLACEHOLDER_NAME:
        raise InvalidOperationError(f'Name {cleaned!r} is reserved')
    return cleaned


def join_path(directory_path: str, name: str) -> str:
    """Join a directory path and a leaf name.

    Args:
        directory_path: Normalized directory path ('' for root).
        name: Leaf name.

    Returns:
        Full path (e.g., 'docs/a.txt', or 'a.txt' at the root).
    """
    if not directory_path:
        return name
    return f'{directory_path}{PATH_SEPARATOR}{name}'


def parent_of(path: str) -> str:
    """Extract the parent directory path.

    Example: 'docs/reports/file.pdf' -> 'docs/reports', 'file.pdf' -> ''.
    """
    if PATH_SEPARATOR not in path:
        return ''
    return path.rsplit(PATH_SEPARATOR, 1)[0]


def leaf_name(path: str) -> str:
    """Extract the final segment of a path."""
    return path.rsplit(PATH_SEPARATOR, 1)[-1]


def subtree_prefix(path: str) -> str:
    """Prefix shared by every descendant of a directory.

    Args:
        path: Directory path.

    Returns:
        'path/' for a directory, '' for the root.
    """
    if not path:
        return ''
    return f'{path}{PATH_SEPARATOR}'


def placeholder_path(directory_path: str) -> str:
    """Path of the placeholder object for a directory."""
    return join_path(directory_path, PLACEHOLDER_NAME)


def is_placeholder(path: str) -> bool:
    """Check whether a path names a placeholder object."""
    return leaf_name(path) == PLACEHOLDER_NAME


def is_within(path: str, ancestor: str) -> bool:
    """Check whether path equals ancestor or lies below it.

    Args:
        path: Candidate path.
        ancestor: Directory path ('' for root contains everything).

    Returns:
        True if path is ancestor itself or one of its descendants.
    """
    if not ancestor:
        return True
    return path == ancestor or path.startswith(subtree_prefix(ancestor))


def replace_prefix(path: str, old_root: str, new_root: str) -> str:
    """Rewrite a path after its ancestor moved from old_root to new_root.

    Only the leading subtree root is substituted; later occurrences of the
    same text are left untouched.

    Raises:
        ValueError: If path is not within old_root.
    """
    if path == old_root:
        return new_root
    old_prefix = subtree_prefix(old_root)
    if not path.startswith(old_prefix):
        raise ValueError(f'{path!r} is not within {old_root!r}')
    return join_path(new_root, path[len(old_prefix):])


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from a filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def validate_path(path: str) -> str:
    """Validate every segment of a normalized path.

    Raises:
        InvalidOperationError: If any segment is not a valid name.
    """
    if path:
        for segment in path.split(PATH_SEPARATOR):
            validate_name(segment)
    return path


def directory_chain(path: str) -> list[str]:
    """Every directory path from the top level down to path itself.

    Example: 'docs/reports/2024' -> ['docs', 'docs/reports',
    'docs/reports/2024']; the root yields an empty list.
    """
    if not path:
        return []
    segments = path.split(PATH_SEPARATOR)
    return [
        PATH_SEPARATOR.join(segments[:depth])
        for depth in range(1, len(segments) + 1)
    ]
