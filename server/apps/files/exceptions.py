"""Exceptions for files app.

Every failure of a namespace operation maps to one stable error kind.
Stores raise these exceptions; the coordinator converts them into
structured results at its public boundary.
"""

import enum
from collections.abc import Sequence
from typing import ClassVar


class ErrorKind(enum.StrEnum):
    """Stable error kinds reported to callers of the namespace layer."""

    NOT_FOUND = 'not_found'
    ALREADY_EXISTS = 'already_exists'
    INVALID_OPERATION = 'invalid_operation'
    TIMEOUT = 'timeout'
    PARTIAL_FAILURE = 'partial_failure'
    STORE_UNAVAILABLE = 'store_unavailable'


class NamespaceError(Exception):
    """Base class for failures of file and directory operations."""

    kind: ClassVar[ErrorKind]

    def __init__(self, message: str, path: str = '') -> None:
        """Initialize NamespaceError.

        Args:
            message: Human-readable description of the failure.
            path: Path the failure refers to, if any.
        """
        self.message = message
        self.path = path
        super().__init__(message)


class PathNotFoundError(NamespaceError):
    """Raised when the target path does not exist."""

    kind = ErrorKind.NOT_FOUND


class PathAlreadyExistsError(NamespaceError):
    """Raised when the destination path is already taken."""

    kind = ErrorKind.ALREADY_EXISTS


class DuplicatePathError(PathAlreadyExistsError):
    """Raised by the metadata store on a unique-path violation."""


class InvalidOperationError(NamespaceError):
    """Raised for malformed input or forbidden operations."""

    kind = ErrorKind.INVALID_OPERATION


class CopyTimeoutError(NamespaceError):
    """Raised when a content copy did not complete in time."""

    kind = ErrorKind.TIMEOUT


class StoreUnavailableError(NamespaceError):
    """Raised on transport or connectivity failures of a backing store."""

    kind = ErrorKind.STORE_UNAVAILABLE


class PartialFailureError(NamespaceError):
    """Raised when only part of a two-store operation took effect."""

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        operation: str,
        root_path: str,
        detail: str,
        affected_paths: Sequence[str] = (),
    ) -> None:
        """Initialize PartialFailureError.

        Args:
            operation: Name of the operation that failed partway.
            root_path: Root path the operation was applied to.
            detail: What succeeded and what did not.
            affected_paths: Paths left in an inconsistent state.
        """
        self.operation = operation
        self.root_path = root_path
        self.affected_paths = tuple(affected_paths)
        super().__init__(
            f'{operation} partially failed for {root_path!r}: {detail}',
            path=root_path,
        )
