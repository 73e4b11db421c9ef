"""Content store selection by configured backend name."""

import logging
from typing import Final

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.files.storage import storages

from server.apps.files.infrastructure.content import ContentStore
from server.apps.files.infrastructure.embedded import DatabaseContentStore
from server.apps.files.infrastructure.memory import InMemoryContentStore
from server.apps.files.infrastructure.storage import FileStorage, S3ContentStore

logger = logging.getLogger(__name__)

BACKEND_S3: Final = 's3'
BACKEND_DATABASE: Final = 'database'
BACKEND_MEMORY: Final = 'memory'

BACKEND_NAMES: Final = (BACKEND_S3, BACKEND_DATABASE, BACKEND_MEMORY)


def build_content_store(backend: str | None = None) -> ContentStore:
    """Build the content store for a backend name.

    Args:
        backend: One of 's3', 'database' or 'memory'. Defaults to the
            ``FILES_CONTENT_BACKEND`` setting.

    Returns:
        A new content store instance.

    Raises:
        ImproperlyConfigured: If the backend name is unknown or the
            default storage is not a `FileStorage`.
    """
    name = backend or settings.FILES_CONTENT_BACKEND
    logger.info('Building content store: %s', name)

    if name == BACKEND_S3:
        storage = storages['default']
        if not isinstance(storage, FileStorage):
            raise ImproperlyConfigured(
                'The s3 content backend needs STORAGES["default"] to be '
                'server.apps.files.infrastructure.storage.FileStorage',
            )
        return S3ContentStore(
            storage,
            poll_interval=settings.FILES_COPY_POLL_INTERVAL,
            max_attempts=settings.FILES_COPY_MAX_ATTEMPTS,
        )
    if name == BACKEND_DATABASE:
        return DatabaseContentStore(settings.FILES_EMBEDDED_URL_BASE)
    if name == BACKEND_MEMORY:
        return InMemoryContentStore()

    raise ImproperlyConfigured(
        f'Unknown FILES_CONTENT_BACKEND {name!r}; '
        f'expected one of {", ".join(BACKEND_NAMES)}',
    )
