"""Database models for files app."""

from typing import Final, final

from typing_extensions import override

from django.db import models
from django.db.models.functions import Left
from django.db.models.lookups import Exact

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_PATH_MAX_LENGTH: Final = 1000
_CONTENT_TYPE_MAX_LENGTH: Final = 255


@final
class PathQuerySet(models.QuerySet):
    """QuerySet over rows keyed by a slash-delimited `path`."""

    def under_prefix(self, prefix: str) -> 'PathQuerySet':
        """Rows whose path starts with prefix, compared case-sensitively.

        ``startswith`` compiles to ``LIKE`` on SQLite, which ignores ASCII
        case, so the leading characters are also compared with ``=``.
        """
        if not prefix:
            return self.all()
        return self.filter(path__startswith=prefix).filter(
            Exact(Left('path', len(prefix)), prefix),
        )


@final
class Directory(models.Model):
    """Directory in the file namespace.

    Directories form a forest under `parent`. The `path` is materialized:
    it is the full slash-delimited path and must be rewritten explicitly
    whenever an ancestor is renamed or moved.
    """

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        unique=True,
        help_text='Full path, e.g. docs/reports',
    )

    # Null parent means the directory lives at the root
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='subdirectories',
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    objects = PathQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'Directory'  # type: ignore[mutable-override]
        verbose_name_plural = 'Directories'  # type: ignore[mutable-override]
        ordering = ['name']

    @override
    def __str__(self) -> str:
        """String representation."""
        return self.path


@final
class File(models.Model):
    """Metadata of a file whose bytes live in the content store.

    The `path` is the join key with the content store; the two stores
    have no foreign key between them, only this convention.
    """

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        unique=True,
        help_text='Full path in the content store, e.g. docs/a.txt',
    )

    size_bytes = models.BigIntegerField(
        help_text='File size in bytes',
    )

    content_type = models.CharField(
        max_length=_CONTENT_TYPE_MAX_LENGTH,
        help_text='MIME type supplied on upload or guessed from the name',
    )

    # Null directory means the file lives at the root
    directory = models.ForeignKey(
        Directory,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='files',
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    objects = PathQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['name']

        constraints = [
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='files_size_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return self.path


@final
class EmbeddedContent(models.Model):
    """File bytes stored in the database as base64 text.

    Backs the database content store for environments without object
    storage. Discouraged for large files.
    """

    path = models.CharField(max_length=_PATH_MAX_LENGTH, unique=True)

    content_base64 = models.TextField(blank=True, default='')

    content_type = models.CharField(max_length=_CONTENT_TYPE_MAX_LENGTH)

    size_bytes = models.BigIntegerField(default=0)

    modified_at = models.DateTimeField(auto_now=True)

    objects = PathQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'Embedded Content'  # type: ignore[mutable-override]
        verbose_name_plural = 'Embedded Contents'  # type: ignore[mutable-override]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.path} ({self.size_bytes} bytes)'
