"""Django app configuration for files app."""

from functools import cached_property
from typing import TYPE_CHECKING

from django.apps import AppConfig

if TYPE_CHECKING:
    from server.apps.files.infrastructure.content import ContentStore


class FilesConfig(AppConfig):
    """Configuration for files app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.files'
    label = 'files'
    verbose_name = 'Files'

    @cached_property
    def content_store(self) -> 'ContentStore':
        """Process-wide content store for ``FILES_CONTENT_BACKEND``.

        Built on first use so settings and storages are fully loaded.
        """
        from server.apps.files.infrastructure.backends import (  # noqa: WPS433
            build_content_store,
        )

        return build_content_store()
